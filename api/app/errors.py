from __future__ import annotations

from fastapi import HTTPException


class AppError(Exception):
    """Base class for domain errors surfaced by the API layer."""

    status_code: int = 500
    code: str = "INTERNAL"

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint


class ValidationFailure(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"


class AuthenticationFailure(AppError):
    status_code = 502
    code = "VENDOR_AUTH_FAILED"


class VendorUnavailable(AppError):
    status_code = 502
    code = "VENDOR_UNAVAILABLE"


class StorageFailure(AppError):
    status_code = 500
    code = "STORAGE_FAILURE"


def error_detail(code: str, message: str, *, hint: str | None = None) -> dict:
    """Error envelope used as HTTPException.detail; the app handler adds request_id."""
    err: dict = {"code": code, "message": message}
    if hint:
        err["hint"] = hint
    return {"error": err}


def to_http(exc: AppError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=error_detail(exc.code, exc.message, hint=exc.hint))


def vendor_failure_to_http(kind: str, message: str) -> HTTPException:
    exc_type = AuthenticationFailure if kind == "authentication_failed" else VendorUnavailable
    return to_http(exc_type(message))
