"""
tests/test_gates.py -- Integration tests for the authentication and authorization gates.

These tests exercise the full stack: middleware -> authenticate dependency ->
gate chain -> route handler -> store. The gate order is observable through
the error code: an anonymous caller always gets 401, an inactive one 403
inactive_account, an activated one without the code 403 not_permitted.

Coverage:
  - malformed / wrong-length / unknown / expired / wrong-scope tokens -> 401
  - anonymous on a gated route -> 401 authentication_required
  - inactive account -> 403 inactive_account (even with the permission)
  - missing permission -> 403 not_permitted, store untouched
  - grant and revoke take effect on the next request
  - Vary: Authorization on success and error responses
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from auth.models import Scope
from auth.permissions import Permission
from catalog.models import Movie
from core.filters import Filters


def _movie_count(api) -> int:
    _, meta = api.catalog.list_movies("", [], Filters(sort_safelist=("id",)))
    return meta.total_records


class TestAuthenticate:
    def test_no_header_is_anonymous_on_public_route(self, api):
        resp = api.client.get("/v1/movies")
        assert resp.status_code == 200

    @pytest.mark.parametrize(
        "header",
        [
            "Token ABCDEFGHIJKLMNOPQRSTUVWXYZ",
            "Bearer",
            "Bearer ABCDEFGHIJKLMNOPQRSTUVWXYZ extra",
            "bearer ABCDEFGHIJKLMNOPQRSTUVWXYZ",
            "Bearer SHORT",
            "Bearer ABCDEFGHIJKLMNOPQRSTUVWXYZ",  # right shape, never issued
        ],
    )
    def test_bad_header_is_401_even_on_public_route(self, api, header):
        resp = api.client.get("/v1/movies", headers={"Authorization": header})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_authentication_token"
        assert resp.headers["WWW-Authenticate"] == "Bearer"

    def test_expired_token(self, api):
        user, _ = api.make_user(Permission.MOVIES_WRITE)
        token = api.credentials.new_token(user.id, timedelta(seconds=-1), Scope.AUTHENTICATION)
        resp = api.client.get("/v1/movies", headers={"Authorization": f"Bearer {token.plaintext}"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_authentication_token"

    def test_activation_token_is_not_a_bearer_token(self, api):
        user, _ = api.make_user(Permission.MOVIES_WRITE)
        token = api.credentials.new_token(user.id, timedelta(hours=1), Scope.ACTIVATION)
        resp = api.client.get("/v1/movies", headers={"Authorization": f"Bearer {token.plaintext}"})
        assert resp.status_code == 401


class TestGateOrder:
    def test_anonymous_write_is_401(self, api):
        resp = api.client.post("/v1/movies", json=api.movie_body())
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "authentication_required"
        assert _movie_count(api) == 0

    def test_inactive_user_is_403_even_with_permission(self, api):
        _, headers = api.make_user(Permission.MOVIES_WRITE, activated=False)
        resp = api.client.post("/v1/movies", json=api.movie_body(), headers=headers)
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "inactive_account"
        assert _movie_count(api) == 0

    def test_missing_permission_is_403_and_nothing_is_written(self, api):
        _, headers = api.make_user(Permission.COMMENTS_WRITE)
        resp = api.client.post("/v1/movies", json=api.movie_body(), headers=headers)
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "not_permitted"
        assert _movie_count(api) == 0

    def test_denied_delete_leaves_movie(self, api):
        _, writer = api.make_user(Permission.MOVIES_WRITE)
        _, reader = api.make_user()
        movie_id = api.client.post("/v1/movies", json=api.movie_body(), headers=writer).json()["movie"]["id"]
        resp = api.client.delete(f"/v1/movies/{movie_id}", headers=reader)
        assert resp.status_code == 403
        assert api.catalog.get_movie(movie_id) is not None

    def test_permitted_user_passes(self, api):
        _, headers = api.make_user(Permission.MOVIES_WRITE)
        resp = api.client.post("/v1/movies", json=api.movie_body(), headers=headers)
        assert resp.status_code == 201
        assert _movie_count(api) == 1

    def test_activated_only_route(self, api):
        _, inactive = api.make_user(activated=False)
        _, active = api.make_user()
        movie_id = api.catalog.create_movie(Movie(title="Moana", year=2016, runtime=107, genres=["animation"])).id
        assert api.client.get(f"/v1/movies/{movie_id}/comments").status_code == 401
        assert api.client.get(f"/v1/movies/{movie_id}/comments", headers=inactive).status_code == 403
        assert api.client.get(f"/v1/movies/{movie_id}/comments", headers=active).status_code == 200


class TestPermissionChangesAreImmediate:
    def test_revoke_applies_on_next_request(self, api):
        user, headers = api.make_user(Permission.MOVIES_WRITE)
        assert api.client.post("/v1/movies", json=api.movie_body(), headers=headers).status_code == 201

        api.credentials.delete_for_user(user.id, Permission.MOVIES_WRITE)
        resp = api.client.post("/v1/movies", json=api.movie_body(title="Second"), headers=headers)
        assert resp.status_code == 403
        assert _movie_count(api) == 1

    def test_grant_applies_on_next_request(self, api):
        user, headers = api.make_user()
        assert api.client.post("/v1/movies", json=api.movie_body(), headers=headers).status_code == 403
        api.credentials.add_for_user(user.id, Permission.MOVIES_WRITE)
        assert api.client.post("/v1/movies", json=api.movie_body(), headers=headers).status_code == 201


class TestVaryHeader:
    def test_vary_on_success(self, api):
        resp = api.client.get("/v1/movies")
        assert "Authorization" in resp.headers["Vary"]

    def test_vary_on_gate_failure(self, api):
        resp = api.client.post("/v1/movies", json=api.movie_body())
        assert resp.status_code == 401
        assert "Authorization" in resp.headers["Vary"]

    def test_vary_on_not_found(self, api):
        resp = api.client.get("/v1/movies/999")
        assert resp.status_code == 404
        assert "Authorization" in resp.headers["Vary"]
