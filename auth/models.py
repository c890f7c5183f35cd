"""
auth/models.py -- Domain dataclasses for identity entities.

Pattern: Data class (pure data container, zero logic). Stores and gates do
the work.

Principal is a tagged variant, not a User with a sentinel value:
  Anonymous          -- no Authorization header was sent. Has no id and holds
                        no permissions.
  Authenticated(user) -- a bearer token resolved to a stored user.
Both are frozen, so a principal shared across requests cannot be mutated
through an alias.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Union


class Scope(str, Enum):
    """Purpose a token is valid for. Tokens of one scope never satisfy another."""

    ACTIVATION = "activation"
    AUTHENTICATION = "authentication"


@dataclass
class User:
    """A registered account.

    password_hash is the bcrypt hash; the plaintext password is never kept.
    version starts at 1 and is bumped by every successful update_user().
    id is None before the record is written to the database.
    """

    name: str
    email: str
    password_hash: str
    activated: bool = False
    id: int | None = None
    version: int = 1
    created_at: str = ""  # ISO 8601, set by store on insert


@dataclass
class Token:
    """An issued token.

    plaintext is shown to the client exactly once (email or CLI output) and is
    never stored. hash = SHA-256(plaintext) is the stored lookup key.
    """

    plaintext: str
    hash: bytes
    user_id: int
    expiry: datetime
    scope: Scope


@dataclass(frozen=True)
class Anonymous:
    @property
    def is_anonymous(self) -> bool:
        return True


@dataclass(frozen=True)
class Authenticated:
    user: User

    @property
    def is_anonymous(self) -> bool:
        return False


Principal = Union[Anonymous, Authenticated]

ANONYMOUS = Anonymous()
