from fastapi import HTTPException
from src.utils.errors import AppError

def http_error(e: Exception) -> HTTPException:
    """Map an exception raised by a service to the HTTP error returned to the caller."""
    if isinstance(e, HTTPException):
        return e
    if isinstance(e, AppError):
        return HTTPException(status_code=e.status_code, detail=e.message)
    return HTTPException(status_code=500, detail=str(e) or "Internal server error")
