"""
core/filters.py -- Sort, filter, and pagination parameters for list endpoints.

Security:
  The sort value is accepted only if it is an exact, literal member of the
  endpoint's safelist. Column objects for ORDER BY are looked up on the
  SQLAlchemy Table after that check, so raw query-string text never reaches
  the SQL compiler. Matching the column name alone is not enough: "-title"
  and "title" are separate safelist entries.

Pagination:
  Page and page_size are parsed as integers and bounds-checked; out-of-range
  or non-integer values are validation errors, never clamped. Ties in the
  requested order are broken by the primary key ascending so that paging is
  deterministic.

Layer rule: no imports from api/, auth/, or catalog/.
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from sqlalchemy import Table

from core.validation import Validator, permitted_value

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 20
MAX_PAGE = 10_000_000
MAX_PAGE_SIZE = 100

_INT_RX = re.compile(r"-?[0-9]+")  # ASCII digits only, no "_" separators or padding


@dataclass
class Filters:
    page: int = DEFAULT_PAGE
    page_size: int = DEFAULT_PAGE_SIZE
    sort: str = "id"
    sort_safelist: Sequence[str] = field(default_factory=tuple)

    def sort_column(self) -> str:
        """Return the column name for the validated sort value.

        Reaching this with a sort value outside the safelist means the caller
        skipped validate_filters() -- that is a programming error, not a client
        error, so it raises instead of returning a fallback.
        """
        if self.sort in self.sort_safelist:
            return self.sort.removeprefix("-")
        raise ValueError(f"unsafe sort parameter: {self.sort!r}")

    def sort_direction(self) -> str:
        self.sort_column()
        return "DESC" if self.sort.startswith("-") else "ASC"

    def order_by(self, table: Table) -> tuple:
        """Return ORDER BY clauses: the requested column, then id ascending."""
        column = table.c[self.sort_column()]
        primary = column.desc() if self.sort_direction() == "DESC" else column.asc()
        return (primary, table.c.id.asc())

    def limit(self) -> int:
        return self.page_size

    def offset(self) -> int:
        return (self.page - 1) * self.page_size


@dataclass(frozen=True)
class Metadata:
    """Pagination summary returned alongside a paged listing.

    The zero value (all fields 0) means "no records"; it is what
    calculate_metadata() returns for an empty result.
    """

    current_page: int = 0
    page_size: int = 0
    first_page: int = 0
    last_page: int = 0
    total_records: int = 0


def calculate_metadata(total_records: int, page: int, page_size: int) -> Metadata:
    if total_records == 0:
        # Empty result: zero-value metadata, last_page is not computed.
        return Metadata()
    return Metadata(
        current_page=page,
        page_size=page_size,
        first_page=1,
        last_page=math.ceil(total_records / page_size),
        total_records=total_records,
    )


def validate_sort(v: Validator, f: Filters) -> None:
    v.check(permitted_value(f.sort, f.sort_safelist), "sort", "invalid sort value")


def validate_filters(v: Validator, f: Filters) -> None:
    v.check(f.page > 0, "page", "must be greater than zero")
    v.check(f.page <= MAX_PAGE, "page", "must be a maximum of 10 million")
    v.check(f.page_size > 0, "page_size", "must be greater than zero")
    v.check(f.page_size <= MAX_PAGE_SIZE, "page_size", "must be a maximum of 100")
    validate_sort(v, f)


# ---------------------------------------------------------------------------
# Query-string readers
# ---------------------------------------------------------------------------


def read_string(qs: Mapping[str, str], key: str, default: str) -> str:
    value = qs.get(key)
    return value if value else default


def read_csv(qs: Mapping[str, str], key: str, default: list[str]) -> list[str]:
    value = qs.get(key)
    if not value:
        return default
    return [part.strip() for part in value.split(",") if part.strip()]


def read_int(qs: Mapping[str, str], key: str, default: int, v: Validator) -> int:
    """Parse an integer query value. Bad input records a field error and returns default."""
    value = qs.get(key)
    if not value:
        return default
    if _INT_RX.fullmatch(value) is None:
        v.add_error(key, "must be an integer value")
        return default
    return int(value)


def parse_filters(
    qs: Mapping[str, str],
    safelist: Sequence[str],
    default_sort: str = "id",
) -> tuple[Filters, dict[str, str]]:
    """Read page, page_size, and sort from a query mapping and validate them.

    Returns the Filters and the (possibly empty) field error map. All problems
    are collected; nothing short-circuits on the first bad value.
    """
    v = Validator()
    filters = Filters(
        page=read_int(qs, "page", DEFAULT_PAGE, v),
        page_size=read_int(qs, "page_size", DEFAULT_PAGE_SIZE, v),
        sort=read_string(qs, "sort", default_sort),
        sort_safelist=tuple(safelist),
    )
    validate_filters(v, filters)
    return filters, v.errors
