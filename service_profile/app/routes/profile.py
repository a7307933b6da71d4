"""
``GET /v1/profile``: scope gate, batched fetch, composition and response.
"""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Mapping, Optional, TYPE_CHECKING

import pydantic
from fastapi import Request, Response
from fastapi.responses import JSONResponse

from shared.config import BaseConfig
from shared.errors import AuthorizationError, ServiceError
from shared.logging import get_logger

from service_profile.app.auth.oauth import OAuthAuthenticator
from service_profile.app.batching.binding import ensure_batch_method
from service_profile.app.batching.engine import BatchOutcome, GenerateFunc
from service_profile.app.batching.store import CacheStore
from service_profile.app.domain.models import PROFILE_RESOURCES, BatchRequest, ProfileResponse
from service_profile.app.domain.profile import ComposedProfile, compose_profile
from service_profile.app.domain.scopes import has_allowed_scope

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


logger = get_logger("profile.routes")

CACHE_CONTROL = "private, no-cache"


def log_batch_outcome(outcome: BatchOutcome, metrics: Optional["MetricsCollector"] = None) -> None:
    """Emit ``batch.cached`` or ``batch.db`` for a composed batch."""
    try:
        if outcome.from_cache:
            stored_at = outcome.stored_at
            logger.info(
                "batch.cached",
                storedAt=stored_at.isoformat() if isinstance(stored_at, datetime) else stored_at,
                error=outcome.report.error if outcome.report else None,
                ttl=outcome.ttl,
            )
            source = "cached"
        else:
            logger.info("batch.db")
            source = "db"

        if metrics:
            metrics.increment_counter("profile_batch_total", source=source)
    except Exception as exc:  # pragma: no cover - logging never affects the response
        logger.debug("Failed to record batch outcome", error=str(exc))


def _etag_matches(if_none_match: str, etag: str) -> bool:
    if if_none_match.strip() == "*":
        return True
    quoted = f'"{etag}"'
    for candidate in if_none_match.split(","):
        candidate = candidate.strip()
        if candidate.startswith("W/"):
            candidate = candidate[2:]
        if candidate == quoted:
            return True
    return False


def is_not_modified(headers: Mapping[str, str], composed: ComposedProfile) -> bool:
    """True when the request's validators show the client copy is current.

    ``If-None-Match`` takes precedence; ``If-Modified-Since`` is only
    consulted when it is absent.
    """
    if_none_match = headers.get("if-none-match")
    if if_none_match is not None:
        return composed.etag is not None and _etag_matches(if_none_match, composed.etag)

    if_modified_since = headers.get("if-modified-since")
    if not if_modified_since:
        return False
    try:
        since = parsedate_to_datetime(if_modified_since)
    except (TypeError, ValueError):
        return False
    if since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)
    # HTTP-dates carry whole seconds only.
    return composed.last_modified.replace(microsecond=0) <= since


def validator_headers(composed: ComposedProfile) -> dict:
    headers = {
        "Last-Modified": composed.last_modified_header,
        "Cache-Control": CACHE_CONTROL,
    }
    if composed.etag is not None:
        headers["ETag"] = f'"{composed.etag}"'
    return headers


def emit_profile(request: Request, composed: ComposedProfile) -> Response:
    """Success response: 200 with body, or 304 when the client copy is current."""
    headers = validator_headers(composed)
    if is_not_modified(request.headers, composed):
        return Response(status_code=304, headers=headers)
    return JSONResponse(content=composed.profile, headers=headers)


def validate_profile(profile: Mapping[str, Any]) -> None:
    try:
        ProfileResponse.model_validate(dict(profile))
    except pydantic.ValidationError as exc:
        raise ServiceError(
            "Profile response failed schema validation",
            details={"errors": str(exc)},
        )


class ProfileHandler:
    """Request handler for the aggregated profile."""

    def __init__(
        self,
        config: BaseConfig,
        authenticator: OAuthAuthenticator,
        generate: GenerateFunc,
        *,
        store: Optional[CacheStore] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.config = config
        self.authenticator = authenticator
        self.generate = generate
        self.store = store
        self.metrics = metrics

    async def handle(self, request: Request) -> Response:
        credentials = await self.authenticator.authenticate(request)

        if not has_allowed_scope(credentials.scope):
            raise AuthorizationError()

        engine = ensure_batch_method(
            request.app,
            self.config,
            self.generate,
            store=self.store,
            metrics=self.metrics,
        )

        # Fatal engine errors propagate as they are.
        outcome = await engine.get(
            BatchRequest(credentials=credentials, token=request.state.token),
            PROFILE_RESOURCES,
        )

        composed = compose_profile(
            outcome,
            credentials,
            etag_empty_profile=self.config.etag_empty_profile,
        )
        log_batch_outcome(outcome, self.metrics)
        validate_profile(composed.profile)

        response = emit_profile(request, composed)
        if response.status_code == 304 and self.metrics:
            self.metrics.increment_counter("profile_not_modified_total")
        return response
