"""Domain errors raised by the chat services and their HTTP rendering."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException


class ChatError(Exception):
    """Base class for failures surfaced to the caller with a readable reason."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Chat operation failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthError(ChatError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Could not validate credentials"


class ValidationError(ChatError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class AuthorizationError(ChatError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "You are not allowed to perform this action"


class NotFoundError(ChatError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class ConflictError(ChatError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Request conflicts with the current state"


class StorageError(ChatError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Storage is temporarily unavailable, please retry"


def error_payload(message: str) -> dict[str, object]:
    return {"success": False, "message": message}


async def _chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthError) else None
    return JSONResponse(status_code=exc.status_code, content=error_payload(exc.message), headers=headers)


async def _http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


def describe_validation_errors(errors: Sequence[Mapping[str, Any]]) -> str:
    """Summarise the first pydantic error as ``"field: reason"``."""

    if not errors:
        return "Invalid request payload"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    message = describe_validation_errors(exc.errors())
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=error_payload(message))


def install_exception_handlers(app: FastAPI) -> None:
    """Render every failure as ``{"success": false, "message": ...}``."""

    app.add_exception_handler(ChatError, _chat_error_handler)
    app.add_exception_handler(HTTPException, _http_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)


__all__ = [
    "ChatError",
    "AuthError",
    "ValidationError",
    "AuthorizationError",
    "NotFoundError",
    "ConflictError",
    "StorageError",
    "describe_validation_errors",
    "error_payload",
    "install_exception_handlers",
]
