"""
API request and response models for the Marquee REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
catalog/models.py, which own the internal domain representation. Route
handlers map between the two.

Separation of concerns: domain dataclasses = domain truth; api/ models = API contract.

Request models forbid unknown keys and carry their own field rules. Pydantic
reports every failing field in one pass; the RequestValidationError handler in
api/main.py turns those into the "fields" map of a 422 response, so each rule
raises ValueError with the exact client-facing message.
"""

import re
from datetime import datetime, timezone
from typing import Annotated, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    EmailStr,
    PlainSerializer,
    ValidationError,
    field_validator,
)

from auth.models import User
from catalog.models import Comment, Movie
from core.filters import Metadata

MAX_NAME_BYTES = 500
MIN_PASSWORD_BYTES = 8
MAX_PASSWORD_BYTES = 72  # bcrypt ignores everything past 72 bytes
MAX_TITLE_BYTES = 500
MIN_YEAR = 1888  # first known motion picture
MAX_GENRES = 5
MAX_COMMENT_CHARS = 500

# ---------------------------------------------------------------------------
# Runtime -- minutes on the wire as "<n> mins"
# ---------------------------------------------------------------------------

_RUNTIME_RX = re.compile(r"(-?[0-9]+) mins\Z")


def _parse_runtime(value: object) -> int:
    """Accept only the "<n> mins" string form with ASCII digits."""
    if isinstance(value, str):
        match = _RUNTIME_RX.fullmatch(value)
        if match:
            return int(match.group(1))
    raise ValueError("invalid runtime format")


Runtime = Annotated[
    int,
    BeforeValidator(_parse_runtime),
    PlainSerializer(lambda minutes: f"{minutes} mins", return_type=str),
]


# ---------------------------------------------------------------------------
# Movie field rules, shared by create and partial update
# ---------------------------------------------------------------------------


def _check_title(title: str) -> str:
    if not title.strip():
        raise ValueError("must be provided")
    if len(title.encode("utf-8")) > MAX_TITLE_BYTES:
        raise ValueError("must not be more than 500 bytes long")
    return title


def _check_year(year: int) -> int:
    if year < MIN_YEAR:
        raise ValueError("must be greater than 1888")
    if year > datetime.now(timezone.utc).year:
        raise ValueError("must not be in the future")
    return year


def _check_runtime(minutes: int) -> int:
    if minutes <= 0:
        raise ValueError("must be a positive integer")
    return minutes


def _check_genres(genres: list[str]) -> list[str]:
    if len(genres) < 1:
        raise ValueError("must contain at least 1 genre")
    if len(genres) > MAX_GENRES:
        raise ValueError("must not contain more than 5 genres")
    if len(set(genres)) != len(genres):
        raise ValueError("must not contain duplicate values")
    return genres


Title = Annotated[str, AfterValidator(_check_title)]
ReleaseYear = Annotated[int, AfterValidator(_check_year)]
MovieRuntime = Annotated[Runtime, AfterValidator(_check_runtime)]
Genres = Annotated[list[str], AfterValidator(_check_genres)]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    fields is present only on validation errors and maps each offending input
    field to one message.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    fields: Optional[dict[str, str]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class HealthResponse(BaseModel):
    """Response for GET /v1/healthcheck."""

    model_config = ConfigDict(frozen=True)

    status: str = "available"
    environment: str
    version: str
    database: str = "ok"


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------


class PageMetadata(BaseModel):
    """Pagination block of a list envelope.

    Zero-valued fields are None and dropped from the JSON (routes set
    response_model_exclude_none), so an empty listing renders "metadata": {}.
    """

    model_config = ConfigDict(frozen=True)

    current_page: Optional[int] = None
    page_size: Optional[int] = None
    first_page: Optional[int] = None
    last_page: Optional[int] = None
    total_records: Optional[int] = None

    @classmethod
    def from_metadata(cls, meta: Metadata) -> "PageMetadata":
        return cls(
            current_page=meta.current_page or None,
            page_size=meta.page_size or None,
            first_page=meta.first_page or None,
            last_page=meta.last_page or None,
            total_records=meta.total_records or None,
        )


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /v1/users."""

    model_config = ConfigDict(extra="forbid")

    name: str
    email: EmailStr
    password: str

    @field_validator("name")
    @classmethod
    def check_name(cls, name: str) -> str:
        if not name.strip():
            raise ValueError("must be provided")
        if len(name.encode("utf-8")) > MAX_NAME_BYTES:
            raise ValueError("must not be more than 500 bytes long")
        return name

    @field_validator("email", mode="wrap")
    @classmethod
    def check_email(cls, email: object, handler) -> str:
        """Run EmailStr parsing, reporting any failure with one fixed message.

        EmailStr strips surrounding whitespace and lowercases the domain, so
        the stored address is the normalized form the unique index compares.
        """
        if isinstance(email, str) and not email.strip():
            raise ValueError("must be provided")
        try:
            return handler(email)
        except ValidationError:
            raise ValueError("must be a valid email address") from None

    @field_validator("password")
    @classmethod
    def check_password(cls, password: str) -> str:
        size = len(password.encode("utf-8"))
        if not password:
            raise ValueError("must be provided")
        if size < MIN_PASSWORD_BYTES:
            raise ValueError("must be at least 8 bytes long")
        if size > MAX_PASSWORD_BYTES:
            raise ValueError("must not be more than 72 bytes long")
        return password


class ActivateRequest(BaseModel):
    """Request body for PUT /v1/users/{id}/activated.

    The 26-character check runs in the route through validate_token_plaintext.
    """

    model_config = ConfigDict(extra="forbid")

    token: str


class UserOut(BaseModel):
    """Public view of a user. The password hash and version are never serialized."""

    model_config = ConfigDict(frozen=True)

    id: int
    created_at: str
    name: str
    email: str
    activated: bool

    @classmethod
    def from_domain(cls, user: User) -> "UserOut":
        return cls(
            id=user.id,
            created_at=user.created_at,
            name=user.name,
            email=user.email,
            activated=user.activated,
        )


class UserEnvelope(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: UserOut


class UserListEnvelope(BaseModel):
    model_config = ConfigDict(frozen=True)

    users: list[UserOut]
    metadata: PageMetadata


class PermissionsEnvelope(BaseModel):
    """Response for the /v1/users/{id}/permissions routes. Codes in registry order."""

    model_config = ConfigDict(frozen=True)

    permissions: list[str]


# ---------------------------------------------------------------------------
# Movies
# ---------------------------------------------------------------------------


class MovieCreate(BaseModel):
    """Request body for POST /v1/movies."""

    model_config = ConfigDict(extra="forbid")

    title: Title
    year: ReleaseYear
    runtime: MovieRuntime
    genres: Genres


class MovieUpdate(BaseModel):
    """Request body for PATCH /v1/movies/{id}. Omitted fields keep their stored value."""

    model_config = ConfigDict(extra="forbid")

    title: Optional[Title] = None
    year: Optional[ReleaseYear] = None
    runtime: Optional[MovieRuntime] = None
    genres: Optional[Genres] = None


class MovieOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    year: int
    runtime: Runtime
    genres: list[str]
    version: int

    @classmethod
    def from_domain(cls, movie: Movie) -> "MovieOut":
        return cls(
            id=movie.id,
            title=movie.title,
            year=movie.year,
            runtime=f"{movie.runtime} mins",
            genres=list(movie.genres),
            version=movie.version,
        )


class MovieEnvelope(BaseModel):
    model_config = ConfigDict(frozen=True)

    movie: MovieOut


class MovieListEnvelope(BaseModel):
    model_config = ConfigDict(frozen=True)

    movies: list[MovieOut]
    metadata: PageMetadata


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


class CommentCreate(BaseModel):
    """Request body for POST /v1/movies/{id}/comments."""

    model_config = ConfigDict(extra="forbid")

    body: str

    @field_validator("body")
    @classmethod
    def check_body(cls, body: str) -> str:
        if not body.strip():
            raise ValueError("must be provided")
        if len(body) > MAX_COMMENT_CHARS:
            raise ValueError("must not be more than 500 characters long")
        return body


class CommentOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    created_at: str
    body: str
    movie_id: int
    user: UserOut

    @classmethod
    def from_domain(cls, comment: Comment, author: User) -> "CommentOut":
        return cls(
            id=comment.id,
            created_at=comment.created_at,
            body=comment.body,
            movie_id=comment.movie_id,
            user=UserOut.from_domain(author),
        )


class CommentEnvelope(BaseModel):
    model_config = ConfigDict(frozen=True)

    comment: CommentOut


class CommentListEnvelope(BaseModel):
    model_config = ConfigDict(frozen=True)

    comments: list[CommentOut]
    metadata: PageMetadata
