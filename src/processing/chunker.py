from typing import List, Optional
from langchain_text_splitters import RecursiveCharacterTextSplitter
from src.config.settings import settings

class TextChunker:
    """Split free-form text into overlapping chunks sized for the embedding model.

    Paragraph breaks are preferred over line breaks, line breaks over sentence
    ends, and sentence ends over word boundaries; a hard character cut is only
    used when a single word exceeds ``chunk_size``.
    """

    separators = ["\n\n", "\n", ". ", " ", ""]

    def __init__(self, chunk_size: Optional[int] = None, chunk_overlap: Optional[int] = None):
        self.chunk_size = chunk_size or settings.CHUNK_SIZE
        self.chunk_overlap = settings.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be smaller than chunk_size ({self.chunk_size})"
            )
        self.splitter = RecursiveCharacterTextSplitter(
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
            length_function=len,
            separators=self.separators,
        )

    def split(self, text: str) -> List[str]:
        if not text or not text.strip():
            return []
        return [chunk for chunk in self.splitter.split_text(text) if chunk.strip()]
