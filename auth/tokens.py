"""
auth/tokens.py -- Opaque token codec and password hashing.

Security design decisions:
  Tokens: 16 bytes from secrets.token_bytes() (128 bits of entropy) encoded
       as unpadded base32, which is always 26 characters. The plaintext is
       handed to the client once and never stored or logged. The store keeps
       SHA-256(plaintext) and looks tokens up by hash equality only, so a
       leaked tokens table cannot be turned back into usable tokens. An
       unkeyed fast hash is enough here: the input is random, not a
       low-entropy secret, so there is nothing to brute-force.

  Plaintext pre-check: validate_token_plaintext() only checks presence and
       length. It deliberately does not check the base32 alphabet; a bad
       string of the right length just misses the lookup.

  Passwords: bcrypt directly (no passlib wrapper). Bcrypt silently truncates
       input beyond 72 bytes, so RegisterRequest in api/models.py rejects
       longer passwords rather than letting two different ones collide.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from datetime import datetime, timedelta, timezone

import bcrypt

from auth.models import Scope, Token
from core.validation import Validator

TOKEN_BYTES = 16
TOKEN_LENGTH = 26

_BCRYPT_ROUNDS = 12


# ---------------------------------------------------------------------------
# Token codec
# ---------------------------------------------------------------------------


def hash_token(plaintext: str) -> bytes:
    """Return the 32-byte SHA-256 digest used as the stored lookup key."""
    return hashlib.sha256(plaintext.encode("utf-8")).digest()


def generate_token(user_id: int, ttl: timedelta, scope: Scope) -> Token:
    """Create a new token for user_id that expires ttl from now.

    Any failure of the OS entropy source propagates; there is no fallback to
    a weaker generator.
    """
    random_bytes = secrets.token_bytes(TOKEN_BYTES)
    plaintext = base64.b32encode(random_bytes).decode("ascii").rstrip("=")
    return Token(
        plaintext=plaintext,
        hash=hash_token(plaintext),
        user_id=user_id,
        expiry=datetime.now(timezone.utc) + ttl,
        scope=scope,
    )


def validate_token_plaintext(v: Validator, plaintext: str) -> None:
    v.check(plaintext.strip() != "", "token", "must be provided")
    v.check(len(plaintext) == TOKEN_LENGTH, "token", "must be 26 bytes long")


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=_BCRYPT_ROUNDS)).decode("utf-8")
