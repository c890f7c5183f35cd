"""
auth/store.py -- SQLAlchemy Core persistence layer for credentials.

Pattern: Repository + Data Mapper. CredentialStore is the repository for
users, tokens, and user-permission associations; _row_to_user is the mapper.
Route and gate code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Token lookups compare SHA-256 hashes only; the plaintext never reaches
  this module.

Optimistic concurrency:
  update_user() writes with "WHERE id = :id AND version = :version" and
  bumps version in the same statement. Zero matching rows raises
  EditConflict. There is no lock and no retry here; the predicate evaluated
  atomically by the database is the only guard.

Error translation:
  IntegrityError never escapes. Unique violations become DuplicateEmail or
  DuplicatePermission, foreign key violations become RecordNotFound.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, func, insert, literal, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import Scope, Token, User
from auth.permissions import PERMISSION_LIST, Permission, PermissionSet, parse_permission
from auth.tokens import generate_token
from core.database import is_foreign_key_violation, now_iso, permissions, to_iso, tokens, users, users_permissions
from core.errors import DuplicateEmail, DuplicatePermission, EditConflict, RecordNotFound
from core.filters import Filters, Metadata, calculate_metadata

logger = logging.getLogger("marquee.store")


class CredentialStore:
    """Repository for User, Token, and permission grant records.

    Usage:
        store = CredentialStore(create_db_engine("sqlite:///marquee.db"))
        user = store.create_user(User(name="Alice", email="alice@example.com", password_hash=h))
        token = store.new_token(user.id, timedelta(days=3), Scope.ACTIVATION)
        store.add_for_user(user.id, Permission.MOVIES_WRITE)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._seed_permissions()

    def _seed_permissions(self) -> None:
        """Insert any registry code missing from the permissions table.

        Idempotent: existing rows are left alone, so this runs on every startup.
        """
        with self.engine.connect() as conn:
            existing = set(conn.execute(select(permissions.c.code)).scalars())
            missing = [p.value for p in PERMISSION_LIST if p.value not in existing]
            if missing:
                conn.execute(insert(permissions), [{"code": code} for code in missing])
                conn.commit()

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> User:
        """Insert a new user and return it with id, created_at, and version set.

        Raises DuplicateEmail if the email address is already registered.
        """
        created_at = now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    insert(users).values(
                        created_at=created_at,
                        name=user.name,
                        email=user.email,
                        password_hash=user.password_hash,
                        activated=user.activated,
                        version=1,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise DuplicateEmail(user.email) from exc
        return replace(user, id=result.inserted_primary_key[0], created_at=created_at, version=1)

    def get_by_id(self, user_id: int) -> User | None:
        if user_id < 1:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(select(users).where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(select(users).where(users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self, name: str, email: str, filters: Filters) -> tuple[list[User], Metadata]:
        """Return one page of users plus pagination metadata.

        name and email are case-insensitive substring filters; an empty string
        disables the filter. Ordering comes from the validated Filters.
        """
        stmt = select(func.count().over().label("total_records"), users)
        if name:
            stmt = stmt.where(users.c.name.icontains(name, autoescape=True))
        if email:
            stmt = stmt.where(users.c.email.icontains(email, autoescape=True))
        stmt = (
            stmt.order_by(*filters.order_by(users))
            .limit(filters.limit())
            .offset(filters.offset())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        total = rows[0].total_records if rows else 0
        return [_row_to_user(r) for r in rows], calculate_metadata(total, filters.page, filters.page_size)

    def update_user(self, user: User) -> User:
        """Write all mutable fields if the stored version still equals user.version.

        Returns the user with the new version. Raises EditConflict when the row
        was changed or deleted since it was read, DuplicateEmail when the new
        email is taken.
        """
        stmt = (
            users.update()
            .where((users.c.id == user.id) & (users.c.version == user.version))
            .values(
                name=user.name,
                email=user.email,
                password_hash=user.password_hash,
                activated=user.activated,
                version=users.c.version + 1,
            )
            .returning(users.c.version)
        )
        try:
            with self.engine.connect() as conn:
                new_version = conn.execute(stmt).scalar_one_or_none()
                conn.commit()
        except IntegrityError as exc:
            raise DuplicateEmail(user.email) from exc
        if new_version is None:
            raise EditConflict(f"user {user.id} at version {user.version}")
        return replace(user, version=new_version)

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def get_for_token(self, scope: Scope, token_hash: bytes, now: datetime | None = None) -> User | None:
        """Return the user owning an unexpired token with this hash and scope.

        Expired tokens, tokens of another scope, and unknown hashes are all
        reported the same way: None.
        """
        now = now or datetime.now(timezone.utc)
        stmt = (
            select(users)
            .join(tokens, users.c.id == tokens.c.user_id)
            .where(
                (tokens.c.hash == token_hash)
                & (tokens.c.scope == scope.value)
                & (tokens.c.expiry > to_iso(now))
            )
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_user(row) if row is not None else None

    def insert_token(self, token: Token) -> None:
        """Persist the hash, owner, expiry, and scope. The plaintext is not stored."""
        with self.engine.connect() as conn:
            conn.execute(
                insert(tokens).values(
                    hash=token.hash,
                    user_id=token.user_id,
                    expiry=to_iso(token.expiry),
                    scope=token.scope.value,
                )
            )
            conn.commit()

    def new_token(self, user_id: int, ttl: timedelta, scope: Scope) -> Token:
        """Generate and store a token, returning it with its plaintext."""
        token = generate_token(user_id, ttl, scope)
        self.insert_token(token)
        return token

    def delete_all_for_user(self, scope: Scope, user_id: int) -> int:
        """Delete every token of scope owned by user_id. Returns rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(
                delete(tokens).where((tokens.c.scope == scope.value) & (tokens.c.user_id == user_id))
            )
            conn.commit()
        return result.rowcount

    def purge_expired_tokens(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(delete(tokens).where(tokens.c.expiry <= now_iso()))
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def get_all_for_user(self, user_id: int) -> PermissionSet:
        """Return the user's current permission set, read fresh from the database."""
        stmt = (
            select(permissions.c.code)
            .join(users_permissions, users_permissions.c.permission_id == permissions.c.id)
            .where(users_permissions.c.user_id == user_id)
        )
        with self.engine.connect() as conn:
            codes = conn.execute(stmt).scalars().all()
        held: list[Permission] = []
        for code in codes:
            permission = parse_permission(code)
            if permission is None:
                # Row left behind by a code since removed from the registry.
                logger.warning("Ignoring unknown permission code %r for user %d", code, user_id)
                continue
            held.append(permission)
        return PermissionSet.of(held)

    def add_for_user(self, user_id: int, *codes: Permission) -> None:
        """Grant codes to user_id in one statement.

        Raises RecordNotFound if the user does not exist, DuplicatePermission
        if any code is already held. Either way nothing is granted.
        """
        stmt = insert(users_permissions).from_select(
            ["user_id", "permission_id"],
            select(literal(user_id), permissions.c.id).where(permissions.c.code.in_([c.value for c in codes])),
        )
        try:
            with self.engine.connect() as conn:
                conn.execute(stmt)
                conn.commit()
        except IntegrityError as exc:
            if is_foreign_key_violation(exc):
                raise RecordNotFound(f"user {user_id}") from exc
            raise DuplicatePermission(", ".join(c.value for c in codes)) from exc

    def delete_for_user(self, user_id: int, *codes: Permission) -> None:
        """Revoke codes from user_id, all or nothing.

        If fewer rows are deleted than codes requested (the user does not exist
        or does not hold one of them) the transaction is rolled back and
        RecordNotFound is raised.
        """
        stmt = delete(users_permissions).where(
            (users_permissions.c.user_id == user_id)
            & users_permissions.c.permission_id.in_(
                select(permissions.c.id).where(permissions.c.code.in_([c.value for c in codes]))
            )
        )
        with self.engine.begin() as conn:
            result = conn.execute(stmt)
            if result.rowcount < len(codes):
                # Raising inside begin() rolls the partial delete back.
                raise RecordNotFound(f"user {user_id} does not hold all of the requested permissions")

# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        created_at=row.created_at,
        name=row.name,
        email=row.email,
        password_hash=row.password_hash,
        activated=bool(row.activated),
        version=row.version,
    )
