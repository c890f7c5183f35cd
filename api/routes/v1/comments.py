"""
api/routes/v1/comments.py -- Comments on movies.

Routes:
  GET  /movies/{movie_id}/comments  -- list (activated users), paginated
  POST /movies/{movie_id}/comments  -- create (comments:write)

Registration grants comments:write, so any activated account can comment
unless an operator revokes it.
"""

from fastapi import APIRouter, Depends, Request

from api.errors import not_found, parse_id
from api.models import CommentCreate, CommentEnvelope, CommentListEnvelope, CommentOut, PageMetadata
from auth.dependencies import require_activated_user, require_permission
from auth.models import User
from auth.permissions import Permission
from catalog.models import Comment
from catalog.store import CatalogStore
from core.errors import RecordNotFound
from core.filters import parse_filters
from core.validation import ValidationFailed

router = APIRouter()

COMMENT_SORT_SAFELIST = ("id", "created_at", "-id", "-created_at")


@router.get(
    "/movies/{movie_id}/comments",
    response_model=CommentListEnvelope,
    response_model_exclude_none=True,
)
def list_comments(
    request: Request,
    movie_id: str,
    user: User = Depends(require_activated_user),
) -> CommentListEnvelope:
    catalog: CatalogStore = request.app.state.catalog
    movie = catalog.get_movie(parse_id(movie_id))
    if movie is None:
        raise not_found()

    filters, errors = parse_filters(request.query_params, COMMENT_SORT_SAFELIST)
    if errors:
        raise ValidationFailed(errors)
    items, meta = catalog.list_comments(movie.id, filters)
    return CommentListEnvelope(
        comments=[CommentOut.from_domain(item.comment, item.user) for item in items],
        metadata=PageMetadata.from_metadata(meta),
    )


@router.post("/movies/{movie_id}/comments", response_model=CommentEnvelope, status_code=201)
def create_comment(
    request: Request,
    movie_id: str,
    body: CommentCreate,
    user: User = Depends(require_permission(Permission.COMMENTS_WRITE)),
) -> CommentEnvelope:
    comment = Comment(body=body.body, movie_id=parse_id(movie_id), user_id=user.id)
    catalog: CatalogStore = request.app.state.catalog
    try:
        comment = catalog.create_comment(comment)
    except RecordNotFound:
        raise not_found() from None
    return CommentEnvelope(comment=CommentOut.from_domain(comment, user))
