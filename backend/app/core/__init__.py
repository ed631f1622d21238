"""Core utilities for the Murmur backend."""

from .errors import (
    AuthError,
    AuthorizationError,
    ChatError,
    ConflictError,
    NotFoundError,
    StorageError,
    ValidationError,
)

__all__ = [
    "ChatError",
    "AuthError",
    "ValidationError",
    "AuthorizationError",
    "NotFoundError",
    "ConflictError",
    "StorageError",
]
