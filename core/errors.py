"""
core/errors.py -- Store-level error taxonomy.

Stores translate driver errors (sqlalchemy IntegrityError, empty RETURNING)
into these exceptions at the boundary. Route handlers translate them again into
HTTP responses. The same underlying "no rows" signal becomes RecordNotFound or
EditConflict depending on what the caller asked for.

Layer rule: no imports from api/, auth/, or catalog/.
"""


class StoreError(Exception):
    """Base class for domain errors raised by the stores."""


class RecordNotFound(StoreError):
    """The target row does not exist (or a referenced row is gone)."""


class EditConflict(StoreError):
    """A version-predicated write matched zero rows.

    The row may still exist at a newer version. Callers re-fetch and retry;
    the store never retries on its own.
    """


class DuplicateEmail(StoreError):
    """A user with this email address already exists."""


class DuplicatePermission(StoreError):
    """The user already holds at least one of the requested permission codes."""
