"""
api/errors.py -- HTTPException builders shared by the v1 routers.

Every builder returns (not raises) an HTTPException whose detail is an
ErrorDetail dict, so handlers read as `raise not_found()` and the global
HTTPException handler in api/main.py can pass the dict straight through as the
"error" field.
"""

from fastapi import HTTPException

from api.models import ErrorDetail


def not_found() -> HTTPException:
    return HTTPException(
        status_code=404,
        detail=ErrorDetail(
            code="not_found",
            message="the requested resource could not be found",
        ).model_dump(exclude_none=True),
    )


def edit_conflict() -> HTTPException:
    return HTTPException(
        status_code=409,
        detail=ErrorDetail(
            code="edit_conflict",
            message="unable to update the record due to an edit conflict, please try again",
        ).model_dump(exclude_none=True),
    )


def parse_id(raw: str) -> int:
    """Parse a path id. Anything that is not a positive integer is a 404."""
    if not (raw.isascii() and raw.isdigit()):
        raise not_found()
    value = int(raw)
    if value < 1:
        raise not_found()
    return value
