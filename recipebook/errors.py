"""Error taxonomy shared by the services and the HTTP layer.

Services raise these; `register_exception_handlers` renders them as
`{"code": ..., "message": ...}` with the matching status code.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger("recipebook.errors")


class RecipeBookError(Exception):
    """Base exception for domain errors."""

    status_code: int = 500
    code: str = "internal_error"
    message: str = "Internal Server Error"

    def __init__(self, message: Optional[str] = None, **details: Any) -> None:
        if message is not None:
            self.message = message
        self.details = details
        super().__init__(self.message)


# --- Authentication / authorization ---

class AuthFailure(RecipeBookError):
    status_code = 401
    code = "unauthenticated"
    message = "Authentication required"


class CredentialsMissing(AuthFailure):
    code = "credentials_missing"
    message = "Authorization header is not present"


class CredentialsInvalid(AuthFailure):
    status_code = 403
    code = "invalid_token"
    message = "Authorization token was rejected"

    def __init__(self, reason: str) -> None:
        super().__init__(reason=reason)
        self.reason = reason


class InvalidCredentials(RecipeBookError):
    status_code = 401
    code = "invalid_credentials"
    message = "Invalid user name or password"


class Forbidden(RecipeBookError):
    status_code = 403
    code = "forbidden"
    message = "Forbidden"


# --- Lookup / input ---

class NotFound(RecipeBookError):
    status_code = 404
    code = "not_found"
    message = "Not found"


class NoSuchUser(NotFound):
    code = "no_such_user"
    message = "User does not exist"


class Conflict(RecipeBookError):
    status_code = 409
    code = "conflict"
    message = "Conflict"


class BadRequest(RecipeBookError):
    status_code = 400
    code = "bad_request"
    message = "Bad request"


class PayloadTooLarge(RecipeBookError):
    status_code = 413
    code = "payload_too_large"
    message = "Payload too large"


# --- Storage ---

class StorageFailure(RecipeBookError):
    """Relational or blob I/O failed. The message never leaves the server."""

    code = "storage_failure"


class MalformedPayload(StorageFailure):
    """A stored row or blob could not be decoded."""

    code = "malformed_payload"


def _error_response(exc: RecipeBookError) -> JSONResponse:
    if isinstance(exc, StorageFailure):
        # Detail stays in the log
        content = {"code": "internal_error", "message": RecipeBookError.message}
    else:
        content = {"code": exc.code, "message": exc.message}
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, CredentialsMissing) else None
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


async def recipebook_error_handler(request: Request, exc: RecipeBookError) -> JSONResponse:
    if isinstance(exc, StorageFailure):
        logger.error(f"{request.method} {request.url.path} failed: {exc} {exc.details}")
    return _error_response(exc)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "code": BadRequest.code,
            "message": "Request validation failed",
            "details": jsonable_errors(exc),
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RecipeBookError, recipebook_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
