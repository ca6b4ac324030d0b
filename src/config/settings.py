from pathlib import Path
from typing import List
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # API Settings
    API_VERSION: str = "0.1.0"
    API_TITLE: str = "Knowledge Assistant API"
    API_DESCRIPTION: str = "Personal assistant API with a durable ingestion workflow and RAG-powered chat"

    # Identity
    OWNER_NAME: str = "Syed Danish Hussain"
    DEFAULT_USER_ID: str = "syed-danish-hussain"

    # Google AI Settings (preferred backend and embeddings)
    GOOGLE_API_KEY: str = ""
    LLM_MODEL: str = "gemini-1.5-flash-latest"
    EMBEDDING_MODEL: str = "text-embedding-004"
    EMBEDDING_DIMENSIONS: int = 768

    # OpenAI-compatible fallback backend
    FALLBACK_LLM_BASE_URL: str = "http://localhost:11434/v1"
    FALLBACK_LLM_API_KEY: str = "not-needed"
    FALLBACK_LLM_MODEL: str = "llama-3.1-8b-instruct"

    # Model routing
    LLM_BACKEND: str = "preferred"
    LLM_MAX_OUTPUT_TOKENS: int = 2048
    LLM_CROSS_BACKEND_FALLBACK: bool = False

    # PostgreSQL Settings
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "knowledge_assistant"
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_POOL_MAX_SIZE: int = 10

    # Security
    BEARER_TOKEN: str = ""
    CORS_ORIGINS: str = "*"

    # Chunking
    CHUNK_SIZE: int = 1000
    CHUNK_OVERLAP: int = 200

    # Retrieval
    RETRIEVAL_TOP_K: int = 10
    RETRIEVAL_MIN_SCORE: float = 0.2
    HISTORY_LIMIT: int = 10
    CONTEXT_CHUNK_CHARS: int = 500
    KEYWORD_TRIGGERS: str = "resume,about me,about yourself,understand,danish"
    KEYWORD_TERMS: str = "resume,Danish,Syed Danish Hussain"
    KEYWORD_LIMIT: int = 10

    # Content extraction
    EXTRACT_MAX_CHARS: int = 50000
    EXTRACT_MIN_HTML_CHARS: int = 100
    EXTRACT_TIMEOUT: float = 30.0
    EXTRACT_USER_AGENT: str = "Mozilla/5.0 (compatible; RAG-AI-Bot/1.0)"

    # Ingestion workflow
    WORKFLOW_STEP_ATTEMPTS: int = 3
    WORKFLOW_RETRY_MIN_WAIT: float = 1.0
    WORKFLOW_RETRY_MAX_WAIT: float = 10.0
    INGEST_CONCURRENCY: int = 4

    # Chat Settings
    SYSTEM_PROMPT: str = (
        "When answering questions, use the context provided from the knowledge base if it is relevant. "
        "Remember previous parts of the conversation and maintain context. "
        "Be helpful, accurate, and personalized. "
        "If the context doesn't contain relevant information, say so but still try to be helpful."
    )

    # Paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent.parent
    LOGS_DIR: Path = PROJECT_ROOT / "logs"

    @property
    def bearer_tokens_list(self) -> List[str]:
        if not self.BEARER_TOKEN:
            return []
        return [x.strip() for x in self.BEARER_TOKEN.split(',') if x.strip()]

    @property
    def cors_origins_list(self) -> List[str]:
        if self.CORS_ORIGINS == "*":
            return ["*"]
        return [x.strip() for x in self.CORS_ORIGINS.split(',') if x.strip()]

    @property
    def keyword_triggers_list(self) -> List[str]:
        return [x.strip().lower() for x in self.KEYWORD_TRIGGERS.split(',') if x.strip()]

    @property
    def keyword_terms_list(self) -> List[str]:
        return [x.strip() for x in self.KEYWORD_TERMS.split(',') if x.strip()]

    @property
    def postgres_conninfo(self) -> str:
        conn_params = {
            "dbname": self.POSTGRES_DB,
            "user": self.POSTGRES_USER,
            "password": self.POSTGRES_PASSWORD,
            "host": self.POSTGRES_HOST,
            "port": self.POSTGRES_PORT,
        }
        return " ".join([f"{k}={v}" for k, v in conn_params.items()])

    class Config:
        env_file = ".env"

settings = Settings()
