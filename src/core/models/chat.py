from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field

class Chunk(BaseModel):
    id: int
    text: str
    source_url: Optional[str] = None

class VectorMatch(BaseModel):
    id: str
    score: Optional[float] = None

class UserProfile(BaseModel):
    user_id: str
    info: str
    updated_at: Optional[datetime] = None

class ConversationTurn(BaseModel):
    conversation_id: str
    user_id: str
    role: str
    content: str
    created_at: Optional[datetime] = None

class ChatMessage(BaseModel):
    role: str
    content: str

class GenerationResult(BaseModel):
    text: str
    model: str

class RetrievedContext(BaseModel):
    """Chunks selected for a question and how they were found."""
    chunks: List[str] = Field(default_factory=list)
    via_fallback: bool = False

    @property
    def used(self) -> bool:
        return len(self.chunks) > 0

class ChatResult(BaseModel):
    response: str
    conversation_id: str
    context_used: bool
    urls_extracted: int
    model: str

class IngestionReport(BaseModel):
    instance_id: str
    total_chunks: int
    chunk_ids: List[int] = Field(default_factory=list)
    failed_chunks: List[int] = Field(default_factory=list)

    @property
    def status(self) -> str:
        if not self.failed_chunks:
            return "completed"
        if len(self.failed_chunks) == self.total_chunks:
            return "failed"
        return "partial"
