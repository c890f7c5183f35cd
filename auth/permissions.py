"""
auth/permissions.py -- The closed permission registry.

Permission is an Enum, so every code the application can check or grant is
listed here and nowhere else. Wire strings ("movies:write") exist only as the
enum values; incoming codes are parsed into members before anything else
touches them.

PermissionSet.include() is the single source of truth for the permission
gate. The gate fetches a fresh set from the store on every request; nothing
here caches, so a grant or revoke takes effect on the very next request.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum

from core.validation import Validator, unique

MIN_CODES_PER_REQUEST = 1
MAX_CODES_PER_REQUEST = 5


class Permission(str, Enum):
    COMMENTS_WRITE = "comments:write"
    MOVIES_WRITE = "movies:write"
    USERS_READ = "users:read"
    PERMISSIONS_READ = "permissions:read"
    PERMISSIONS_WRITE = "permissions:write"


# Registry order. Used for seeding the permissions table and for stable output.
PERMISSION_LIST: tuple[Permission, ...] = tuple(Permission)

_BY_CODE: dict[str, Permission] = {p.value: p for p in PERMISSION_LIST}


def parse_permission(code: str) -> Permission | None:
    return _BY_CODE.get(code)


@dataclass(frozen=True)
class PermissionSet:
    """The permission codes one user holds, in registry order."""

    codes: tuple[Permission, ...] = ()

    @classmethod
    def of(cls, codes: Iterable[Permission]) -> "PermissionSet":
        held = set(codes)
        return cls(tuple(p for p in PERMISSION_LIST if p in held))

    def include(self, code: Permission) -> bool:
        for held in self.codes:
            if held is code:
                return True
        return False

    def to_list(self) -> list[str]:
        return [p.value for p in self.codes]


def validate_permissions(v: Validator, requested: Sequence[str]) -> list[Permission]:
    """Check a requested list of codes and return it parsed into members.

    Rules (all checked, all reported):
      - between 1 and 5 codes,
      - no duplicates,
      - every code is in the registry.
    Unknown codes are dropped from the returned list; callers must not use
    the result unless v.valid is True.
    """
    v.check(len(requested) >= MIN_CODES_PER_REQUEST, "permissions", "must contain at least 1 code")
    v.check(len(requested) <= MAX_CODES_PER_REQUEST, "permissions", "must not contain more than 5 codes")
    v.check(unique(requested), "permissions", "must not contain duplicate values")
    parsed: list[Permission] = []
    for code in requested:
        permission = parse_permission(code)
        v.check(permission is not None, "permission", "invalid permission code value")
        if permission is not None:
            parsed.append(permission)
    return parsed
