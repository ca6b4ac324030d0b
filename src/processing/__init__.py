from .chunker import TextChunker
from .content_extractor import ContentExtractor, extract_urls

__all__ = ['TextChunker', 'ContentExtractor', 'extract_urls']
