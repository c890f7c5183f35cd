"""
api/routes/v1/movies.py -- Movie catalog routes.

Routes:
  GET    /movies        -- list (public), title/genres filters, paginated
  POST   /movies        -- create (movies:write)
  GET    /movies/{id}   -- detail (public)
  PATCH  /movies/{id}   -- partial update (movies:write), version-checked
  DELETE /movies/{id}   -- delete (movies:write)

Writes go through require_permission(), which already depends on the
authenticated and activated gates, so a denied request never reaches the
store.

PATCH is an optimistic-concurrency write: the movie is read, modified in
memory, and written with its read version as the predicate. A
client may also send X-Expected-Version to refuse the edit unless the stored
version still matches what it last saw.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, Response

from api.errors import edit_conflict, not_found, parse_id
from api.models import MessageResponse, MovieCreate, MovieEnvelope, MovieListEnvelope, MovieOut, MovieUpdate, PageMetadata
from auth.dependencies import require_permission
from auth.models import User
from auth.permissions import Permission
from catalog.models import Movie
from catalog.store import CatalogStore
from core.errors import EditConflict
from core.filters import parse_filters, read_csv, read_string
from core.validation import ValidationFailed

router = APIRouter()

MOVIE_SORT_SAFELIST = ("id", "title", "year", "runtime", "-id", "-title", "-year", "-runtime")

require_movies_write = require_permission(Permission.MOVIES_WRITE)


# ---------------------------------------------------------------------------
# GET /movies
# ---------------------------------------------------------------------------


@router.get("/movies", response_model=MovieListEnvelope, response_model_exclude_none=True)
def list_movies(request: Request) -> MovieListEnvelope:
    """List movies.

    Query params:
      title     -- case-insensitive substring match
      genres    -- comma-separated; a movie must carry every listed genre
      page, page_size, sort -- see core/filters.py
    """
    qs = request.query_params
    filters, errors = parse_filters(qs, MOVIE_SORT_SAFELIST)
    if errors:
        raise ValidationFailed(errors)
    catalog: CatalogStore = request.app.state.catalog
    movies, meta = catalog.list_movies(read_string(qs, "title", ""), read_csv(qs, "genres", []), filters)
    return MovieListEnvelope(
        movies=[MovieOut.from_domain(m) for m in movies],
        metadata=PageMetadata.from_metadata(meta),
    )


# ---------------------------------------------------------------------------
# POST /movies
# ---------------------------------------------------------------------------


@router.post("/movies", response_model=MovieEnvelope, status_code=201)
def create_movie(
    request: Request,
    response: Response,
    body: MovieCreate,
    user: User = Depends(require_movies_write),
) -> MovieEnvelope:
    movie = Movie(title=body.title, year=body.year, runtime=body.runtime, genres=list(body.genres))
    catalog: CatalogStore = request.app.state.catalog
    movie = catalog.create_movie(movie)
    response.headers["Location"] = f"/v1/movies/{movie.id}"
    return MovieEnvelope(movie=MovieOut.from_domain(movie))


# ---------------------------------------------------------------------------
# GET /movies/{movie_id}
# ---------------------------------------------------------------------------


@router.get("/movies/{movie_id}", response_model=MovieEnvelope)
def show_movie(request: Request, movie_id: str) -> MovieEnvelope:
    catalog: CatalogStore = request.app.state.catalog
    movie = catalog.get_movie(parse_id(movie_id))
    if movie is None:
        raise not_found()
    return MovieEnvelope(movie=MovieOut.from_domain(movie))


# ---------------------------------------------------------------------------
# PATCH /movies/{movie_id}
# ---------------------------------------------------------------------------


@router.patch("/movies/{movie_id}", response_model=MovieEnvelope)
def update_movie(
    request: Request,
    movie_id: str,
    body: MovieUpdate,
    x_expected_version: Optional[str] = Header(default=None),
    user: User = Depends(require_movies_write),
) -> MovieEnvelope:
    catalog: CatalogStore = request.app.state.catalog
    movie = catalog.get_movie(parse_id(movie_id))
    if movie is None:
        raise not_found()

    if x_expected_version is not None and x_expected_version != str(movie.version):
        raise edit_conflict()

    if body.title is not None:
        movie.title = body.title
    if body.year is not None:
        movie.year = body.year
    if body.runtime is not None:
        movie.runtime = body.runtime
    if body.genres is not None:
        movie.genres = list(body.genres)

    try:
        movie = catalog.update_movie(movie)
    except EditConflict:
        raise edit_conflict() from None
    return MovieEnvelope(movie=MovieOut.from_domain(movie))


# ---------------------------------------------------------------------------
# DELETE /movies/{movie_id}
# ---------------------------------------------------------------------------


@router.delete("/movies/{movie_id}", response_model=MessageResponse)
def delete_movie(
    request: Request,
    movie_id: str,
    user: User = Depends(require_movies_write),
) -> MessageResponse:
    catalog: CatalogStore = request.app.state.catalog
    if not catalog.delete_movie(parse_id(movie_id)):
        raise not_found()
    return MessageResponse(message="movie successfully deleted")
