"""
auth/dependencies.py -- FastAPI Depends() gates for authentication and authorization.

Gate chain (each gate depends on the one before it, so the order is fixed and
cannot be rearranged per route):

  authenticate               -> Principal (Anonymous | Authenticated)
  require_authenticated_user -> User       401 authentication_required
  require_activated_user     -> User       403 inactive_account
  require_permission(code)   -> User       403 not_permitted

authenticate is registered as an app-wide dependency in api/main.py, so every
route resolves the bearer token even when it has no further gate. FastAPI
caches dependency results per request, so routes that also depend on a gate
do not look the token up twice.

The resolved Principal / User is handed to the handler as a dependency value.
Handlers receive it explicitly; nothing is read back from request.state.

Token failures (malformed header, wrong length, unknown hash, expired, wrong
scope) all produce the same 401 invalid_authentication_token. A caller cannot
tell a token that never existed from one that expired.

The Vary: Authorization header is emitted by middleware in api/main.py on
every response, including the error responses raised here.

Layer rule: no imports from api/ or catalog/.
  auth/dependencies.py may import from fastapi because this module is part of
  the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import Depends, HTTPException, Request

from auth.models import ANONYMOUS, Anonymous, Authenticated, Principal, Scope, User
from auth.permissions import Permission
from auth.store import CredentialStore
from auth.tokens import hash_token, validate_token_plaintext
from core.validation import Validator

logger = logging.getLogger("marquee.auth")


def _invalid_authentication_token() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": "invalid_authentication_token", "message": "invalid or missing authentication token"},
        headers={"WWW-Authenticate": "Bearer"},
    )


def authenticate(request: Request) -> Principal:
    """Resolve the Authorization header to a Principal.

    No header -> Anonymous. Anything other than "Bearer <26-char token>" that
    matches a live authentication-scoped token -> 401.
    """
    header = request.headers.get("Authorization", "")
    if header == "":
        return ANONYMOUS

    parts = header.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer":
        raise _invalid_authentication_token()

    plaintext = parts[1]
    v = Validator()
    validate_token_plaintext(v, plaintext)
    if not v.valid:
        raise _invalid_authentication_token()

    store: CredentialStore = request.app.state.credentials
    user = store.get_for_token(Scope.AUTHENTICATION, hash_token(plaintext))
    if user is None:
        raise _invalid_authentication_token()
    return Authenticated(user)


def require_authenticated_user(principal: Principal = Depends(authenticate)) -> User:
    match principal:
        case Authenticated(user=user):
            return user
        case Anonymous():
            raise HTTPException(
                status_code=401,
                detail={"code": "authentication_required", "message": "you must be authenticated to access this resource"},
            )
    # Unreachable unless a new Principal variant is added without a case here.
    raise TypeError(f"unexpected principal {principal!r}")


def require_activated_user(user: User = Depends(require_authenticated_user)) -> User:
    if not user.activated:
        raise HTTPException(
            status_code=403,
            detail={"code": "inactive_account", "message": "your user account must be activated to access this resource"},
        )
    return user


def require_permission(code: Permission) -> Callable[..., User]:
    """Build a gate that requires an activated user holding code.

    The user's permission set is read from the store on every request. There
    is no cache to invalidate: a revoke is effective on the next request.
    """

    def permission_gate(request: Request, user: User = Depends(require_activated_user)) -> User:
        store: CredentialStore = request.app.state.credentials
        if not store.get_all_for_user(user.id).include(code):
            logger.info("Denied %s to user %d", code.value, user.id)
            raise HTTPException(
                status_code=403,
                detail={
                    "code": "not_permitted",
                    "message": "your user account doesn't have the necessary permissions to access this resource",
                },
            )
        return user

    permission_gate.__name__ = f"require_{code.name.lower()}"
    return permission_gate
