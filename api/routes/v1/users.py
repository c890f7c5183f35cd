"""
api/routes/v1/users.py -- Registration, activation, and user listing.

Routes:
  POST /users                -- register (public, rate limited)
  PUT  /users/{id}/activated -- redeem an activation token (public, rate limited)
  GET  /users                -- list users (users:read)

Registration flow:
  1. RegisterRequest validates name, email, and password; hash the
     password with bcrypt.
  2. Insert the user (activated=False) and grant comments:write.
  3. Issue an activation-scoped token valid for ACTIVATION_TOKEN_TTL_SECONDS.
  4. Hand the welcome email (carrying the token plaintext) to the
     BackgroundRunner and return 201 without waiting for delivery.

Activation consumes the token: after the version-checked update succeeds,
every activation token the user holds is deleted, so the same plaintext
cannot be redeemed twice.
"""

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, Request

from api.errors import edit_conflict, parse_id
from api.limiter import limiter
from api.models import ActivateRequest, PageMetadata, RegisterRequest, UserEnvelope, UserListEnvelope, UserOut
from auth.dependencies import require_permission
from auth.models import Scope, User
from auth.permissions import Permission
from auth.store import CredentialStore
from auth.tokens import hash_password, hash_token, validate_token_plaintext
from core.background import BackgroundRunner
from core.config import get_settings
from core.errors import DuplicateEmail, EditConflict
from core.filters import parse_filters, read_string
from core.mailer import Mailer, describe_duration
from core.validation import ValidationFailed, Validator

logger = logging.getLogger("marquee.api")

router = APIRouter()

USER_SORT_SAFELIST = ("id", "name", "email", "created_at", "-id", "-name", "-email", "-created_at")


# ---------------------------------------------------------------------------
# POST /users -- register
# ---------------------------------------------------------------------------


@limiter.limit(get_settings().register_rate_limit)
@router.post("/users", response_model=UserEnvelope, status_code=201)
def register_user(request: Request, body: RegisterRequest) -> UserEnvelope:
    store: CredentialStore = request.app.state.credentials
    try:
        user = store.create_user(
            User(name=body.name, email=body.email, password_hash=hash_password(body.password), activated=False)
        )
    except DuplicateEmail:
        raise ValidationFailed({"email": "a user with this email address already exists"}) from None

    store.add_for_user(user.id, Permission.COMMENTS_WRITE)

    settings = get_settings()
    token = store.new_token(user.id, timedelta(seconds=settings.activation_token_ttl_seconds), Scope.ACTIVATION)

    mailer: Mailer = request.app.state.mailer
    background: BackgroundRunner = request.app.state.background
    background.submit(
        mailer.send,
        user.email,
        "user_welcome",
        {
            "user_id": user.id,
            "activation_token": token.plaintext,
            "expires_in": describe_duration(settings.activation_token_ttl_seconds),
        },
    )
    logger.info("Registered user %d", user.id)
    return UserEnvelope(user=UserOut.from_domain(user))


# ---------------------------------------------------------------------------
# PUT /users/{user_id}/activated -- activate
# ---------------------------------------------------------------------------


@limiter.limit(get_settings().activate_rate_limit)
@router.put("/users/{user_id}/activated", response_model=UserEnvelope)
def activate_user(request: Request, user_id: str, body: ActivateRequest) -> UserEnvelope:
    target_id = parse_id(user_id)

    v = Validator()
    validate_token_plaintext(v, body.token)
    v.raise_if_invalid()

    store: CredentialStore = request.app.state.credentials
    user = store.get_for_token(Scope.ACTIVATION, hash_token(body.token))
    # A token for another account is reported exactly like an unknown one.
    if user is None or user.id != target_id:
        raise ValidationFailed({"token": "invalid or expired activation token"})

    user.activated = True
    try:
        user = store.update_user(user)
    except EditConflict:
        raise edit_conflict() from None

    store.delete_all_for_user(Scope.ACTIVATION, user.id)
    logger.info("Activated user %d", user.id)
    return UserEnvelope(user=UserOut.from_domain(user))


# ---------------------------------------------------------------------------
# GET /users -- list
# ---------------------------------------------------------------------------


@router.get("/users", response_model=UserListEnvelope, response_model_exclude_none=True)
def list_users(
    request: Request,
    user: User = Depends(require_permission(Permission.USERS_READ)),
) -> UserListEnvelope:
    """List users. Query params: name, email (substring), page, page_size, sort."""
    qs = request.query_params
    filters, errors = parse_filters(qs, USER_SORT_SAFELIST)
    if errors:
        raise ValidationFailed(errors)
    store: CredentialStore = request.app.state.credentials
    users, meta = store.list_users(read_string(qs, "name", ""), read_string(qs, "email", ""), filters)
    return UserListEnvelope(
        users=[UserOut.from_domain(u) for u in users],
        metadata=PageMetadata.from_metadata(meta),
    )
