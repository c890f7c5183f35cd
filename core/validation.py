"""
core/validation.py -- Field-scoped validation that collects every violation.

Validator gathers messages keyed by field name. The first message recorded for
a field wins, so a parse error ("must be an integer value") is not masked by a
later range check on the fallback value. Nothing here raises until the caller
asks: validate everything, then call raise_if_invalid(). Request bodies are
checked by the Pydantic models in api/models.py; Validator covers query
strings, permission code lists and the activation token.

Usage:
    v = Validator()
    v.check(page > 0, "page", "must be greater than zero")
    v.check(page_size <= 100, "page_size", "must be a maximum of 100")
    v.raise_if_invalid()

Layer rule: no imports from api/, auth/, or catalog/.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence


class ValidationFailed(Exception):
    """Raised with the complete field -> message map. Rendered as HTTP 422."""

    def __init__(self, errors: dict[str, str]) -> None:
        super().__init__(", ".join(f"{k}: {v}" for k, v in errors.items()))
        self.errors = dict(errors)


class Validator:
    def __init__(self) -> None:
        self.errors: dict[str, str] = {}

    @property
    def valid(self) -> bool:
        return not self.errors

    def add_error(self, key: str, message: str) -> None:
        """Record message for key unless the key already has one."""
        self.errors.setdefault(key, message)

    def check(self, ok: bool, key: str, message: str) -> None:
        if not ok:
            self.add_error(key, message)

    def raise_if_invalid(self) -> None:
        if self.errors:
            raise ValidationFailed(self.errors)


def permitted_value(value, permitted: Iterable) -> bool:
    return value in set(permitted)


def unique(values: Sequence) -> bool:
    return len(set(values)) == len(values)
