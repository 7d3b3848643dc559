"""Utilities for consistent API error responses."""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status

from .exceptions import IncompleteLines, LotpickError, NotFound, OptimisticLockFailure


def api_error(
    status_code: int,
    code: str,
    detail: str,
    *,
    headers: dict[str, str] | None = None,
) -> HTTPException:
    """Create an :class:`HTTPException` with a normalized payload."""

    payload = {"code": code, "detail": detail}
    return HTTPException(status_code=status_code, detail=payload, headers=headers)


def status_for(exc: LotpickError) -> int:
    if isinstance(exc, NotFound):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, OptimisticLockFailure):
        return status.HTTP_409_CONFLICT
    return status.HTTP_400_BAD_REQUEST


def error_payload(exc: LotpickError) -> dict[str, Any]:
    payload: dict[str, Any] = {"code": exc.code, "detail": exc.detail}
    if isinstance(exc, IncompleteLines):
        payload["line_ids"] = exc.line_ids
    return payload


def http_error_payload(exc: HTTPException) -> dict[str, Any]:
    """``{"code", "detail"}`` for HTTPExceptions raised by FastAPI or :func:`api_error`."""

    detail = exc.detail
    if isinstance(detail, dict):
        return {
            "code": str(detail.get("code", f"http.{exc.status_code}")),
            "detail": str(detail.get("detail", "Internal error")),
        }
    if isinstance(detail, str):
        return {"code": f"http.{exc.status_code}", "detail": detail}
    return {"code": "http.unexpected", "detail": "Unexpected error"}


def validation_error_payload(errors: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "code": "validation_error",
        "detail": "Validation error",
        "errors": [
            {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
            for error in errors
        ],
    }
