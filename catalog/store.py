"""
catalog/store.py -- SQLAlchemy-backed persistence layer for movies and comments.

Pattern: Repository + Data Mapper. CatalogStore is the repository; the
_row_to_* functions translate raw DB rows into domain dataclasses. Route
handlers never touch SQL directly.

Security: all queries use bound parameters. ORDER BY columns come from
Filters.order_by(), which only resolves safelisted column names.

Optimistic concurrency: update_movie() is a single conditional UPDATE on
(id, version) that also bumps version. A stale version raises EditConflict.

Usage:
    store = CatalogStore(engine)
    movie = store.create_movie(Movie(title="Moana", year=2016, runtime=107, genres=["animation"]))
    movie.title = "Moana (2016)"
    movie = store.update_movie(movie)     # version 1 -> 2
    movies, meta = store.list_movies("moana", [], filters)
"""

import json
import logging
from dataclasses import replace
from typing import Optional

from sqlalchemy import delete, func, insert, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import User
from catalog.models import Comment, CommentWithAuthor, Movie
from core.database import comments, is_foreign_key_violation, movies, now_iso, users
from core.errors import EditConflict, RecordNotFound
from core.filters import Filters, Metadata, calculate_metadata

logger = logging.getLogger("marquee.store")


class CatalogStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Movies
    # ------------------------------------------------------------------

    def create_movie(self, movie: Movie) -> Movie:
        """Insert a new movie and return it with id, created_at, and version set."""
        created_at = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                insert(movies).values(
                    created_at=created_at,
                    title=movie.title,
                    year=movie.year,
                    runtime=movie.runtime,
                    genres=json.dumps(movie.genres),
                    version=1,
                )
            )
            conn.commit()
        return replace(movie, id=result.inserted_primary_key[0], created_at=created_at, version=1)

    def get_movie(self, movie_id: int) -> Optional[Movie]:
        """Fetch a single movie by ID. Returns None if not found."""
        if movie_id < 1:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(select(movies).where(movies.c.id == movie_id)).fetchone()
        return _row_to_movie(row) if row is not None else None

    def update_movie(self, movie: Movie) -> Movie:
        """Write all mutable fields if the stored version still equals movie.version.

        Returns the movie carrying its new version. Raises EditConflict if the
        row was modified or deleted after the caller read it.
        """
        stmt = (
            movies.update()
            .where((movies.c.id == movie.id) & (movies.c.version == movie.version))
            .values(
                title=movie.title,
                year=movie.year,
                runtime=movie.runtime,
                genres=json.dumps(movie.genres),
                version=movies.c.version + 1,
            )
            .returning(movies.c.version)
        )
        with self.engine.connect() as conn:
            new_version = conn.execute(stmt).scalar_one_or_none()
            conn.commit()
        if new_version is None:
            raise EditConflict(f"movie {movie.id} at version {movie.version}")
        return replace(movie, version=new_version)

    def delete_movie(self, movie_id: int) -> bool:
        """Delete a movie and (by cascade) its comments. Returns False if not found."""
        if movie_id < 1:
            return False
        with self.engine.connect() as conn:
            result = conn.execute(delete(movies).where(movies.c.id == movie_id))
            conn.commit()
        return result.rowcount > 0

    def list_movies(self, title: str, genres: list[str], filters: Filters) -> tuple[list[Movie], Metadata]:
        """Return one page of movies plus pagination metadata.

        title is a case-insensitive substring match (empty disables it).
        genres keeps only movies tagged with every listed genre.
        """
        stmt = select(func.count().over().label("total_records"), movies)
        if title:
            stmt = stmt.where(movies.c.title.icontains(title, autoescape=True))
        for genre in genres:
            # genres is a JSON array; match the quoted element exactly.
            stmt = stmt.where(movies.c.genres.contains(json.dumps(genre), autoescape=True))
        stmt = stmt.order_by(*filters.order_by(movies)).limit(filters.limit()).offset(filters.offset())
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        total = rows[0].total_records if rows else 0
        return [_row_to_movie(r) for r in rows], calculate_metadata(total, filters.page, filters.page_size)

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def create_comment(self, comment: Comment) -> Comment:
        """Insert a comment. Raises RecordNotFound if the movie no longer exists."""
        created_at = now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    insert(comments).values(
                        created_at=created_at,
                        body=comment.body,
                        movie_id=comment.movie_id,
                        user_id=comment.user_id,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            if is_foreign_key_violation(exc):
                raise RecordNotFound(f"movie {comment.movie_id}") from exc
            raise
        return replace(comment, id=result.inserted_primary_key[0], created_at=created_at)

    def list_comments(self, movie_id: int, filters: Filters) -> tuple[list[CommentWithAuthor], Metadata]:
        """Return one page of a movie's comments, each joined with its author."""
        stmt = (
            select(
                func.count().over().label("total_records"),
                comments.c.id,
                comments.c.created_at,
                comments.c.body,
                comments.c.movie_id,
                comments.c.user_id,
                users.c.name.label("user_name"),
                users.c.email.label("user_email"),
                users.c.activated.label("user_activated"),
                users.c.created_at.label("user_created_at"),
            )
            .join(users, comments.c.user_id == users.c.id)
            .where(comments.c.movie_id == movie_id)
            .order_by(*filters.order_by(comments))
            .limit(filters.limit())
            .offset(filters.offset())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        total = rows[0].total_records if rows else 0
        return [_row_to_comment_with_author(r) for r in rows], calculate_metadata(
            total, filters.page, filters.page_size
        )

# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_movie(row) -> Movie:
    return Movie(
        id=row.id,
        created_at=row.created_at,
        title=row.title,
        year=row.year,
        runtime=row.runtime,
        genres=json.loads(row.genres) if row.genres else [],
        version=row.version,
    )


def _row_to_comment_with_author(row) -> CommentWithAuthor:
    # The author's password hash is not selected; it never leaves the users table here.
    return CommentWithAuthor(
        comment=Comment(
            id=row.id,
            created_at=row.created_at,
            body=row.body,
            movie_id=row.movie_id,
            user_id=row.user_id,
        ),
        user=User(
            id=row.user_id,
            name=row.user_name,
            email=row.user_email,
            password_hash="",
            activated=bool(row.user_activated),
            created_at=row.user_created_at,
        ),
    )
