"""Translate core errors into HTTP errors."""

from __future__ import annotations

import math

from fastapi import HTTPException

from prompt_vault.core.errors import (
    DuplicateTagError,
    EncodeError,
    NotFoundError,
    PartialApplyError,
    RemoteError,
    ThrottledError,
    ValidationError,
    VaultError,
)


def http_error(exc: VaultError) -> HTTPException:
    """Map a core error onto the status code the front end reacts to."""
    if isinstance(exc, ThrottledError):
        return HTTPException(
            status_code=429,
            detail=str(exc),
            headers={"Retry-After": str(max(1, math.ceil(exc.retry_after)))},
        )
    if isinstance(exc, DuplicateTagError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, (ValidationError, EncodeError)):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, PartialApplyError):
        return HTTPException(
            status_code=502,
            detail={"message": str(exc), "step": exc.step, "completed": exc.completed},
        )
    if isinstance(exc, RemoteError):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
