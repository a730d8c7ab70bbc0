"""
Error taxonomy for the ReGive API.

Services raise these; main.py renders them as JSON with the matching status code.
"""
from typing import Optional


class ReGiveError(Exception):
    """Base exception for all ReGive errors."""

    status_code = 500

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self):
        return {
            "error": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(ReGiveError):
    """Raised when input is malformed or a required field is missing."""
    status_code = 400


class AuthenticationError(ReGiveError):
    """Raised when the identity token is missing, invalid or expired."""
    status_code = 401


class PermissionDeniedError(ReGiveError):
    """Raised when an authenticated account lacks the admin claim."""
    status_code = 403


class NotFoundError(ReGiveError):
    """Raised when a referenced record or account does not exist."""
    status_code = 404


class StorageError(ReGiveError):
    """Raised when a database call fails."""
    status_code = 500


class ExternalServiceError(ReGiveError):
    """Raised when Firebase or Cloudinary fails."""
    status_code = 502
