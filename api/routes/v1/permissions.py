"""
api/routes/v1/permissions.py -- Grant and revoke permission codes.

Routes:
  GET    /users/{user_id}/permissions  -- current codes (permissions:read)
  PUT    /users/{user_id}/permissions  -- grant codes (permissions:write)
  DELETE /users/{user_id}/permissions  -- revoke codes (permissions:write)

PUT and DELETE take a JSON array of codes as the body, e.g.
["movies:write", "users:read"]. Both are all-or-nothing: a grant that
includes an already-held code, or a revoke that includes a code the user does
not hold, changes nothing.

Changes take effect on the target user's next request. The permission gate
reads the set from the store every time; there is nothing to invalidate.
"""

import logging

from fastapi import APIRouter, Body, Depends, Request

from api.errors import not_found, parse_id
from api.models import PermissionsEnvelope
from auth.dependencies import require_permission
from auth.models import User
from auth.permissions import Permission, validate_permissions
from auth.store import CredentialStore
from core.errors import DuplicatePermission, RecordNotFound
from core.validation import ValidationFailed, Validator

logger = logging.getLogger("marquee.api")

router = APIRouter()


def _parse_codes(codes: list[str]) -> list[Permission]:
    v = Validator()
    parsed = validate_permissions(v, codes)
    v.raise_if_invalid()
    return parsed


@router.get("/users/{user_id}/permissions", response_model=PermissionsEnvelope)
def show_permissions(
    request: Request,
    user_id: str,
    user: User = Depends(require_permission(Permission.PERMISSIONS_READ)),
) -> PermissionsEnvelope:
    store: CredentialStore = request.app.state.credentials
    target = store.get_by_id(parse_id(user_id))
    if target is None:
        raise not_found()
    return PermissionsEnvelope(permissions=store.get_all_for_user(target.id).to_list())


@router.put("/users/{user_id}/permissions", response_model=PermissionsEnvelope)
def grant_permissions(
    request: Request,
    user_id: str,
    codes: list[str] = Body(...),
    user: User = Depends(require_permission(Permission.PERMISSIONS_WRITE)),
) -> PermissionsEnvelope:
    target_id = parse_id(user_id)
    parsed = _parse_codes(codes)

    store: CredentialStore = request.app.state.credentials
    try:
        store.add_for_user(target_id, *parsed)
    except RecordNotFound:
        raise not_found() from None
    except DuplicatePermission:
        raise ValidationFailed({"permission": "user already has one or more of these permissions"}) from None

    logger.info("User %d granted %s to user %d", user.id, ", ".join(p.value for p in parsed), target_id)
    return PermissionsEnvelope(permissions=store.get_all_for_user(target_id).to_list())


@router.delete("/users/{user_id}/permissions", response_model=PermissionsEnvelope)
def revoke_permissions(
    request: Request,
    user_id: str,
    codes: list[str] = Body(...),
    user: User = Depends(require_permission(Permission.PERMISSIONS_WRITE)),
) -> PermissionsEnvelope:
    target_id = parse_id(user_id)
    parsed = _parse_codes(codes)

    store: CredentialStore = request.app.state.credentials
    try:
        store.delete_for_user(target_id, *parsed)
    except RecordNotFound:
        raise not_found() from None

    logger.info("User %d revoked %s from user %d", user.id, ", ".join(p.value for p in parsed), target_id)
    return PermissionsEnvelope(permissions=store.get_all_for_user(target_id).to_list())
