"""
Identity service client for the Profile service.
"""

from typing import Optional

import httpx

from shared.logging import get_logger
from shared.errors import UpstreamServiceError
from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException, get_circuit_breaker


class IdentityClient:
    """Client for the identity micro-services serving single profile fields."""

    def __init__(self, identity_service_url: str, *, timeout: float = 10.0,
                 client: Optional[httpx.AsyncClient] = None,
                 circuit_breaker: Optional[CircuitBreaker] = None):
        self.identity_service_url = identity_service_url.rstrip("/")
        self.logger = get_logger("profile.identity_client")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self.circuit_breaker = circuit_breaker or get_circuit_breaker(
            "identity_service",
            failure_threshold=5,
            recovery_timeout=30.0,
            counted_exceptions=(httpx.HTTPError,),
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def get_resource(self, locator: str, token: str) -> httpx.Response:
        """GET a profile field resource on behalf of the bearer of ``token``.

        Any HTTP status is returned to the caller; transport failures and an
        open breaker raise ``UpstreamServiceError``.
        """
        async def _get():
            return await self._client.get(
                f"{self.identity_service_url}{locator}",
                headers={"Authorization": f"Bearer {token}"},
            )

        try:
            return await self.circuit_breaker.call(_get)
        except CircuitBreakerOpenException as e:
            raise UpstreamServiceError(
                "identity",
                "Identity service circuit open",
                details={"locator": locator, "retry_in": round(e.retry_in, 3)},
            )
        except httpx.HTTPError as e:
            self.logger.error("Identity service HTTP error", locator=locator, error=str(e))
            raise UpstreamServiceError(
                "identity",
                "Identity service unavailable",
                details={"locator": locator, "http_error": str(e)},
            )

    async def check_health(self) -> str:
        return "error" if self.circuit_breaker.is_open() else "ok"
