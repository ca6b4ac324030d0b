from pydantic import BaseModel, ConfigDict, Field
from typing import Optional

class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: Optional[str] = Field(None, description="The user's question")
    conversation_id: Optional[str] = Field(
        None,
        alias="conversationId",
        description="Conversation to continue; a new one is started when omitted"
    )
    user_id: Optional[str] = Field(None, alias="userId", description="User asking the question")

class ChatResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    response: str = Field(..., description="Generated response")
    conversation_id: str = Field(..., alias="conversationId")
    context_used: bool = Field(..., alias="contextUsed", description="Whether knowledge base context was injected")
    urls_extracted: int = Field(..., alias="urlsExtracted", description="Number of URLs queued for ingestion")

class IngestRequest(BaseModel):
    text: Optional[str] = Field(None, description="Raw text to add to the knowledge base")

class UserInfoRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(None, alias="userId")
    info: Optional[str] = Field(None, description="Free-form information about the user")

class UserInfoResponse(BaseModel):
    success: bool
    message: str
