"""
tests/test_movies_routes.py -- Integration tests for /v1/movies and comments routes.

Coverage:
  - create: 201, Location header, runtime wire format, field validation (422)
  - malformed bodies: bad JSON, unknown key, empty body (400)
  - show: 404 for missing, zero, negative, and non-integer ids
  - update: partial PATCH bumps version, X-Expected-Version mismatch -> 409
  - delete: message, then 404
  - list: filters, sort safelist, pagination errors, metadata shape
  - comments: create / list with author, missing movie -> 404
"""

from __future__ import annotations

import pytest

from auth.permissions import Permission


@pytest.fixture
def writer(api) -> dict[str, str]:
    _, headers = api.make_user(Permission.MOVIES_WRITE, Permission.COMMENTS_WRITE)
    return headers


def _create(api, headers, **overrides) -> dict:
    resp = api.client.post("/v1/movies", json=api.movie_body(**overrides), headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["movie"]


class TestCreateMovie:
    def test_created(self, api, writer):
        resp = api.client.post("/v1/movies", json=api.movie_body(), headers=writer)
        assert resp.status_code == 201
        movie = resp.json()["movie"]
        assert resp.headers["Location"] == f"/v1/movies/{movie['id']}"
        assert movie["runtime"] == "107 mins"
        assert movie["version"] == 1
        assert movie["genres"] == ["animation", "adventure"]
        assert "created_at" not in movie

    def test_missing_fields_reported_together(self, api, writer):
        resp = api.client.post("/v1/movies", json={}, headers=writer)
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "validation_error"
        assert error["fields"] == {
            "title": "must be provided",
            "year": "must be provided",
            "runtime": "must be provided",
            "genres": "must be provided",
        }

    def test_empty_genres(self, api, writer):
        resp = api.client.post("/v1/movies", json=api.movie_body(genres=[]), headers=writer)
        assert resp.status_code == 422
        assert resp.json()["error"]["fields"] == {"genres": "must contain at least 1 genre"}

    def test_range_rules(self, api, writer):
        body = api.movie_body(year=1800, runtime="-5 mins", genres=["drama", "drama"], title="x" * 501)
        resp = api.client.post("/v1/movies", json=body, headers=writer)
        assert resp.status_code == 422
        assert resp.json()["error"]["fields"] == {
            "title": "must not be more than 500 bytes long",
            "year": "must be greater than 1888",
            "runtime": "must be a positive integer",
            "genres": "must not contain duplicate values",
        }

    def test_future_year(self, api, writer):
        resp = api.client.post("/v1/movies", json=api.movie_body(year=3000), headers=writer)
        assert resp.status_code == 422
        assert resp.json()["error"]["fields"] == {"year": "must not be in the future"}

    @pytest.mark.parametrize(
        "runtime",
        [107, "107", "107 minutes", "mins", "107 mins\n", "1_07 mins", " 107 mins", "\u0661\u0660\u0667 mins"],
    )
    def test_bad_runtime_format(self, api, writer, runtime):
        resp = api.client.post("/v1/movies", json=api.movie_body(runtime=runtime), headers=writer)
        assert resp.status_code == 422
        assert resp.json()["error"]["fields"] == {"runtime": "invalid runtime format"}

    def test_malformed_json(self, api, writer):
        resp = api.client.post(
            "/v1/movies",
            content=b'{"title": "Moana",',
            headers={**writer, "Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "bad_request"

    def test_unknown_key(self, api, writer):
        resp = api.client.post("/v1/movies", json=api.movie_body(rating="PG"), headers=writer)
        assert resp.status_code == 400
        assert "rating" in resp.json()["error"]["message"]


class TestShowMovie:
    def test_found(self, api, writer):
        created = _create(api, writer)
        resp = api.client.get(f"/v1/movies/{created['id']}")
        assert resp.status_code == 200
        assert resp.json()["movie"] == created

    @pytest.mark.parametrize("movie_id", ["999", "0", "-1", "abc", "1.5"])
    def test_not_found(self, api, movie_id):
        resp = api.client.get(f"/v1/movies/{movie_id}")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"

    @pytest.mark.parametrize("movie_id", ["+1", "1_0", "١"])
    def test_loose_integer_forms_are_not_ids(self, api, writer, movie_id):
        for _ in range(10):
            _create(api, writer)
        resp = api.client.get(f"/v1/movies/{movie_id}")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"


class TestUpdateMovie:
    def test_partial_update(self, api, writer):
        created = _create(api, writer)
        resp = api.client.patch(f"/v1/movies/{created['id']}", json={"title": "Moana (2016)"}, headers=writer)
        assert resp.status_code == 200
        movie = resp.json()["movie"]
        assert movie["title"] == "Moana (2016)"
        assert movie["year"] == 2016
        assert movie["runtime"] == "107 mins"
        assert movie["version"] == 2

    def test_expected_version_mismatch_is_conflict(self, api, writer):
        created = _create(api, writer)
        api.client.patch(f"/v1/movies/{created['id']}", json={"year": 2017}, headers=writer)
        resp = api.client.patch(
            f"/v1/movies/{created['id']}",
            json={"year": 2015},
            headers={**writer, "X-Expected-Version": "1"},
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "edit_conflict"
        assert api.catalog.get_movie(created["id"]).year == 2017

    def test_expected_version_match(self, api, writer):
        created = _create(api, writer)
        resp = api.client.patch(
            f"/v1/movies/{created['id']}",
            json={"runtime": "99 mins"},
            headers={**writer, "X-Expected-Version": "1"},
        )
        assert resp.status_code == 200
        assert resp.json()["movie"]["runtime"] == "99 mins"

    def test_invalid_update_is_not_written(self, api, writer):
        created = _create(api, writer)
        resp = api.client.patch(f"/v1/movies/{created['id']}", json={"genres": []}, headers=writer)
        assert resp.status_code == 422
        assert api.catalog.get_movie(created["id"]).version == 1

    def test_update_missing(self, api, writer):
        resp = api.client.patch("/v1/movies/999", json={"title": "Nope"}, headers=writer)
        assert resp.status_code == 404


class TestDeleteMovie:
    def test_delete_then_gone(self, api, writer):
        created = _create(api, writer)
        resp = api.client.delete(f"/v1/movies/{created['id']}", headers=writer)
        assert resp.status_code == 200
        assert resp.json() == {"message": "movie successfully deleted"}
        assert api.client.delete(f"/v1/movies/{created['id']}", headers=writer).status_code == 404
        assert api.client.get(f"/v1/movies/{created['id']}").status_code == 404


class TestListMovies:
    @pytest.fixture
    def seeded(self, api, writer):
        _create(api, writer, title="Black Panther", year=2018, genres=["action", "adventure"])
        _create(api, writer, title="Deadpool", year=2016, genres=["action", "comedy"])
        _create(api, writer, title="The Breakfast Club", year=1985, genres=["drama"])
        return api

    def test_empty_listing_has_empty_metadata(self, api):
        resp = api.client.get("/v1/movies")
        assert resp.status_code == 200
        assert resp.json() == {"movies": [], "metadata": {}}

    def test_metadata(self, seeded):
        data = seeded.client.get("/v1/movies", params={"page_size": 2}).json()
        assert len(data["movies"]) == 2
        assert data["metadata"] == {
            "current_page": 1,
            "page_size": 2,
            "first_page": 1,
            "last_page": 2,
            "total_records": 3,
        }

    def test_sort_descending_year(self, seeded):
        data = seeded.client.get("/v1/movies", params={"sort": "-year"}).json()
        assert [m["year"] for m in data["movies"]] == [2018, 2016, 1985]

    def test_filters(self, seeded):
        data = seeded.client.get("/v1/movies", params={"genres": "action", "title": "dead"}).json()
        assert [m["title"] for m in data["movies"]] == ["Deadpool"]

    def test_invalid_query(self, seeded):
        resp = seeded.client.get("/v1/movies", params={"sort": "-version", "page": "0", "page_size": "x"})
        assert resp.status_code == 422
        assert resp.json()["error"]["fields"] == {
            "sort": "invalid sort value",
            "page": "must be greater than zero",
            "page_size": "must be an integer value",
        }


class TestComments:
    def test_create_and_list(self, api, writer):
        created = _create(api, writer)
        resp = api.client.post(f"/v1/movies/{created['id']}/comments", json={"body": "Great songs"}, headers=writer)
        assert resp.status_code == 201
        comment = resp.json()["comment"]
        assert comment["body"] == "Great songs"
        assert comment["movie_id"] == created["id"]
        assert "password_hash" not in comment["user"]

        data = api.client.get(f"/v1/movies/{created['id']}/comments", headers=writer).json()
        assert [c["body"] for c in data["comments"]] == ["Great songs"]
        assert data["metadata"]["total_records"] == 1

    def test_blank_body(self, api, writer):
        created = _create(api, writer)
        resp = api.client.post(f"/v1/movies/{created['id']}/comments", json={"body": "   "}, headers=writer)
        assert resp.status_code == 422
        assert resp.json()["error"]["fields"] == {"body": "must be provided"}

    def test_missing_movie(self, api, writer):
        assert api.client.post("/v1/movies/999/comments", json={"body": "Hi"}, headers=writer).status_code == 404
        assert api.client.get("/v1/movies/999/comments", headers=writer).status_code == 404

    def test_comments_require_permission(self, api, writer):
        created = _create(api, writer)
        user, headers = api.make_user()
        resp = api.client.post(f"/v1/movies/{created['id']}/comments", json={"body": "Hi"}, headers=headers)
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "not_permitted"
