"""
Unit tests for the Profile service endpoints.
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.config import get_config
from service_profile.app.batching.binding import BATCH_METHOD, get_batch_method
from service_profile.app.batching.engine import BatchOutcome, BatchReport
from service_profile.app.batching.store import MemoryCacheStore
from service_profile.app.domain.profile import compute_etag
from service_profile.app.main import ProfileService


AUTH = {"Authorization": "Bearer token-abc"}

IDENTITY_VALUES = {
    "/v1/email": ("email", "a@b.com"),
    "/v1/uid": ("uid", "u123"),
    "/v1/avatar": ("avatar", "https://cdn.example.com/a.png"),
    "/v1/display_name": ("displayName", "Ann"),
}


def identity_responses(statuses=None, delay=0.0):
    """get_resource side effect answering 200 unless ``statuses`` overrides a locator."""
    statuses = statuses or {}

    async def _get_resource(locator, token):
        if delay:
            await asyncio.sleep(delay)
        status = statuses.get(locator, 200)
        field, value = IDENTITY_VALUES[locator]
        if status != 200:
            return httpx.Response(status, json={})
        return httpx.Response(200, json={field: value})
    return _get_resource


class TestProfileService:
    """Test cases for ProfileService."""

    @pytest.fixture
    def config(self):
        return get_config("profile", 1111)

    @pytest.fixture
    def oauth_client(self):
        client = AsyncMock()
        client.verify_token.return_value = {"user": "u123", "scope": ["email"]}
        client.check_health.return_value = "ok"
        return client

    @pytest.fixture
    def identity_client(self):
        client = AsyncMock()
        client.get_resource.side_effect = identity_responses()
        client.check_health.return_value = "ok"
        return client

    @pytest.fixture
    def service(self, config, oauth_client, identity_client):
        return ProfileService(
            config,
            oauth_client=oauth_client,
            identity_client=identity_client,
            cache_store=MemoryCacheStore(),
        )

    @pytest.fixture
    def client(self, service):
        return TestClient(service.app)

    def test_root_endpoint(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "profile"

    def test_health_endpoint(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "profile"
        assert data["status"] == "ok"
        assert data["dependencies"] == {"oauth": "ok", "identity": "ok"}

    def test_metrics_endpoint(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "http_requests_total" in response.text

    def test_batch_stats_before_first_use(self, client):
        assert client.get("/v1/batch/stats").json() == {"bound": False}

    def test_profile_email_scope(self, client):
        """Email-scoped caller gets the aggregated profile with validators."""
        response = client.get("/v1/profile", headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body == {
            "email": "a@b.com",
            "uid": "u123",
            "avatar": "https://cdn.example.com/a.png",
            "displayName": "Ann",
        }
        assert response.headers["ETag"] == f'"{compute_etag(body)}"'
        assert response.headers["Last-Modified"].endswith("GMT")
        assert response.headers["Cache-Control"] == "private, no-cache"

    def test_profile_openid_adds_sub(self, client, oauth_client):
        oauth_client.verify_token.return_value = {"user": "u123", "scope": ["profile", "openid"]}

        response = client.get("/v1/profile", headers=AUTH)

        assert response.status_code == 200
        assert response.json()["sub"] == "u123"

    def test_missing_token(self, client, identity_client):
        response = client.get("/v1/profile")

        assert response.status_code == 401
        assert response.json()["code"] == "AUTHENTICATION_ERROR"
        identity_client.get_resource.assert_not_called()

    @pytest.mark.parametrize("scope", [[], ["openid"], ["profilebogie"]])
    def test_insufficient_scope_is_forbidden(self, client, service, oauth_client, identity_client, scope):
        """Without an allowed scope nothing is fetched and the engine is never bound."""
        oauth_client.verify_token.return_value = {"user": "u123", "scope": scope}

        response = client.get("/v1/profile", headers=AUTH)

        assert response.status_code == 403
        assert response.json()["message"] == "Forbidden"
        identity_client.get_resource.assert_not_called()
        assert get_batch_method(service.app) is None

    def test_second_request_served_from_cache(self, client, identity_client):
        first = client.get("/v1/profile", headers=AUTH)
        second = client.get("/v1/profile", headers=AUTH)

        assert second.status_code == 200
        assert second.json() == first.json()
        assert second.headers["ETag"] == first.headers["ETag"]
        assert identity_client.get_resource.call_count == 4

        stats = client.get("/v1/batch/stats").json()
        assert stats["bound"] is True
        assert stats["hits"] == 1
        assert stats["generations"] == 1

    def test_logs_db_then_cached(self, client):
        with patch("service_profile.app.routes.profile.logger") as mock_logger:
            client.get("/v1/profile", headers=AUTH)
            client.get("/v1/profile", headers=AUTH)

        events = [call.args[0] for call in mock_logger.info.call_args_list]
        assert events == ["batch.db", "batch.cached"]
        cached_kwargs = mock_logger.info.call_args_list[1].kwargs
        assert cached_kwargs["error"] is None
        assert cached_kwargs["ttl"] > 0
        assert datetime.fromisoformat(cached_kwargs["storedAt"]).tzinfo is not None

    def test_stale_outcome_logs_report(self, client, service):
        """A cached outcome carrying a report is still served, and the report logged."""
        stored_at = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        engine = AsyncMock()
        engine.get.return_value = BatchOutcome(
            value={"email": "a@b.com", "uid": None, "avatar": None, "displayName": None},
            from_cache=True,
            stored_at=stored_at,
            ttl=0,
            report=BatchReport(error={"code": "UPSTREAM_SERVICE_ERROR", "message": "identity: down"}),
        )
        service.app.state.server_methods = {BATCH_METHOD: engine}

        with patch("service_profile.app.routes.profile.logger") as mock_logger:
            response = client.get("/v1/profile", headers=AUTH)

        assert response.status_code == 200
        assert response.headers["Last-Modified"] == "Mon, 01 Jan 2024 12:00:00 GMT"
        mock_logger.info.assert_called_once_with(
            "batch.cached",
            storedAt=stored_at.isoformat(),
            error={"code": "UPSTREAM_SERVICE_ERROR", "message": "identity: down"},
            ttl=0,
        )

    def test_if_none_match_returns_304(self, client):
        etag = client.get("/v1/profile", headers=AUTH).headers["ETag"]

        response = client.get("/v1/profile", headers={**AUTH, "If-None-Match": etag})

        assert response.status_code == 304
        assert response.content == b""
        assert response.headers["ETag"] == etag

    def test_weak_and_listed_etags_match(self, client):
        etag = client.get("/v1/profile", headers=AUTH).headers["ETag"]

        response = client.get("/v1/profile", headers={**AUTH, "If-None-Match": f'"other", W/{etag}'})

        assert response.status_code == 304

    def test_stale_etag_returns_body(self, client):
        response = client.get("/v1/profile", headers={**AUTH, "If-None-Match": '"outdated"'})

        assert response.status_code == 200
        assert response.json()["email"] == "a@b.com"

    def test_if_modified_since_returns_304(self, client):
        last_modified = client.get("/v1/profile", headers=AUTH).headers["Last-Modified"]

        response = client.get("/v1/profile", headers={**AUTH, "If-Modified-Since": last_modified})

        assert response.status_code == 304

    def test_if_modified_since_in_past_returns_body(self, client):
        response = client.get(
            "/v1/profile",
            headers={**AUTH, "If-Modified-Since": "Sun, 06 Nov 1994 08:49:37 GMT"},
        )
        assert response.status_code == 200

    def test_if_none_match_takes_precedence(self, client):
        last_modified = client.get("/v1/profile", headers=AUTH).headers["Last-Modified"]

        response = client.get(
            "/v1/profile",
            headers={**AUTH, "If-None-Match": '"outdated"', "If-Modified-Since": last_modified},
        )

        assert response.status_code == 200

    def test_partial_profile(self, client, identity_client):
        """Fields the caller may not see, or that do not exist, come back null."""
        identity_client.get_resource.side_effect = identity_responses(
            {"/v1/uid": 403, "/v1/avatar": 404, "/v1/display_name": 500}
        )

        response = client.get("/v1/profile", headers=AUTH)

        assert response.status_code == 200
        assert response.json() == {"email": "a@b.com", "uid": None, "avatar": None, "displayName": None}

    def test_all_null_profile_has_no_etag(self, client, identity_client):
        identity_client.get_resource.side_effect = identity_responses(
            {locator: 404 for locator in IDENTITY_VALUES}
        )

        response = client.get("/v1/profile", headers=AUTH)

        assert response.status_code == 200
        assert "ETag" not in response.headers
        assert "Last-Modified" in response.headers

    def test_upstream_failure_is_502(self, client, identity_client):
        identity_client.get_resource.side_effect = identity_responses(
            {locator: 500 for locator in IDENTITY_VALUES}
        )

        response = client.get("/v1/profile", headers=AUTH)

        assert response.status_code == 502
        assert response.json()["code"] == "UPSTREAM_SERVICE_ERROR"

    def test_generation_timeout_is_503(self, oauth_client, identity_client):
        config = get_config("profile", 1111, server_cache={"generate_timeout": 0.05})
        identity_client.get_resource.side_effect = identity_responses(delay=1.0)
        service = ProfileService(
            config,
            oauth_client=oauth_client,
            identity_client=identity_client,
            cache_store=MemoryCacheStore(),
        )

        response = TestClient(service.app).get("/v1/profile", headers=AUTH)

        assert response.status_code == 503
        assert response.json()["code"] == "GENERATION_TIMEOUT"
        assert response.json()["details"]["generate_timeout"] == 0.05

    def test_request_id_header(self, client):
        response = client.get("/", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"
