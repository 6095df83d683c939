"""
Custom exceptions for the Media Upload Orchestrator.
Every upload error carries a machine-checkable category so callers can
decide between offering a retry and asking the user to re-authenticate.
"""
from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    """Machine-checkable error categories recorded on sessions."""
    VALIDATION = "validation"
    TRANSIENT_NETWORK = "transient_network"
    AUTH = "auth"
    PROTOCOL = "protocol"
    NOT_FOUND = "not_found"
    CANCELLED = "cancelled"
    STORAGE = "storage"


class MediaUploadException(Exception):
    """Base exception for all application errors."""
    category = ErrorCategory.PROTOCOL

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ValidationException(MediaUploadException):
    """Raised for a bad file type, size, chunk index or chunk length."""
    category = ErrorCategory.VALIDATION


class FileTooLargeException(ValidationException):
    """Raised when the declared file size exceeds the platform limit."""
    pass


class TransientNetworkException(MediaUploadException):
    """Raised for connection resets, timeouts and remote 5xx responses."""
    category = ErrorCategory.TRANSIENT_NETWORK

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class AuthException(MediaUploadException):
    """Raised when a platform credential is missing, expired or rejected."""
    category = ErrorCategory.AUTH


class ProtocolException(MediaUploadException):
    """Raised when a platform rejects a request for a non-transient reason."""
    category = ErrorCategory.PROTOCOL

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class RetryExhaustedException(MediaUploadException):
    """Raised when a retried operation failed on every allowed attempt."""

    def __init__(self, last_error: MediaUploadException, attempts: int):
        self.last_error = last_error
        self.attempts = attempts
        self.category = last_error.category
        self.exhausted = True
        super().__init__(f"Gave up after {attempts} attempts: {last_error.message}")


class SessionNotFoundException(MediaUploadException):
    """Raised when a session id is unknown or its record has expired."""
    category = ErrorCategory.NOT_FOUND


class UploadCancelledException(MediaUploadException):
    """Raised when a session is cancelled while an operation is in flight."""
    category = ErrorCategory.CANCELLED


class DynamoDBException(MediaUploadException):
    """Raised when DynamoDB operation fails."""
    category = ErrorCategory.STORAGE


class ConcurrentUpdateException(DynamoDBException):
    """Raised when a conditional session write keeps losing to other writers."""
    pass


class S3Exception(MediaUploadException):
    """Raised when S3 operation fails."""
    category = ErrorCategory.STORAGE
