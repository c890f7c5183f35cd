"""
catalog/models.py -- Domain dataclasses for the movie catalog.

These are pure data containers with zero logic. Request field rules live
on the api/models.py transport models, persistence in catalog/store.py.
"""

from dataclasses import dataclass, field
from typing import Optional

from auth.models import User


@dataclass
class Movie:
    """A catalog entry.

    version starts at 1 and is bumped by every successful update_movie().
    id is None before the record is written to the database.
    """

    title: str
    year: int
    runtime: int  # minutes
    genres: list[str] = field(default_factory=list)
    id: Optional[int] = None
    version: int = 1
    created_at: str = ""  # ISO 8601, set by store on insert


@dataclass
class Comment:
    body: str
    movie_id: int
    user_id: int
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert


@dataclass
class CommentWithAuthor:
    """A comment joined with the user who wrote it, as returned by list_comments()."""

    comment: Comment
    user: User
