# src/utils/errors.py
class AppError(Exception):
    """Base error class for application exceptions."""
    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidRequestError(AppError):
    """A required input field is missing or malformed."""
    status_code = 400


class StorageError(AppError):
    """The relational store is unavailable or rejected a read/write."""
    status_code = 503


class EmbeddingError(AppError):
    """The embedding service returned no vector."""
    status_code = 502


class VectorIndexError(AppError):
    """The vector index rejected an upsert, query or delete."""
    status_code = 502


class GenerationError(AppError):
    """No generation backend produced usable output."""
    status_code = 502


class ExtractionError(AppError):
    """Fetching or parsing URL content failed. Never fatal to a chat request."""
    status_code = 502


class ConversationOwnershipError(AppError):
    """A conversation id is bound to a different user."""
    status_code = 403


class BackendUnavailableError(GenerationError):
    """A generation backend could not be reached or refused the request."""


class ChunkCleanupError(StorageError):
    """An abandoned chunk's row or vector could not be removed; the run must be resumed."""
