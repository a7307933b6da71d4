"""
Batch generator: fans out to the identity services and merges the fields.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Mapping, Optional, Tuple

from shared.errors import UpstreamServiceError
from shared.logging import get_logger

from service_profile.app.adapters.identity_client import IdentityClient
from service_profile.app.domain.models import BatchRequest

# The caller's token lacks the field's scope, or the user has no value.
SKIPPED_STATUSES = frozenset({403, 404})


class ProfileBatchFetcher:
    """Callable handed to the aggregation engine as its ``generate`` function."""

    def __init__(self, identity_client: IdentityClient):
        self.identity_client = identity_client
        self.logger = get_logger("profile.batch.fetch")

    async def __call__(self, request: BatchRequest, resources: Mapping[str, str]) -> Dict[str, Any]:
        results = await asyncio.gather(*(
            self._fetch_field(field, locator, request.token)
            for field, locator in resources.items()
        ))

        profile: Dict[str, Any] = {}
        failures: Dict[str, str] = {}
        for field, value, error in results:
            profile[field] = value
            if error is not None:
                failures[field] = error

        if failures and len(failures) == len(resources):
            raise UpstreamServiceError(
                "identity",
                "All profile resources failed",
                details={"failures": failures},
            )
        if failures:
            self.logger.warning(
                "Partial profile batch",
                user=request.credentials.user,
                failures=failures,
            )
        return profile

    async def _fetch_field(self, field: str, locator: str, token: str) -> Tuple[str, Any, Optional[str]]:
        try:
            response = await self.identity_client.get_resource(locator, token)
        except UpstreamServiceError as exc:
            return field, None, exc.message

        if response.status_code in SKIPPED_STATUSES:
            return field, None, None
        if response.status_code != 200:
            return field, None, f"{locator} responded {response.status_code}"

        try:
            body = response.json()
        except ValueError:
            return field, None, f"{locator} returned malformed JSON"
        if not isinstance(body, dict):
            return field, None, f"{locator} returned unexpected payload"
        return field, body.get(field), None
