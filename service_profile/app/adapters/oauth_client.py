"""
OAuth server client for the Profile service.
"""

from typing import Dict, Any, Optional

import httpx

from shared.logging import get_logger
from shared.errors import AuthenticationError
from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException, get_circuit_breaker


class OAuthClient:
    """Client for verifying bearer tokens against the OAuth server."""

    def __init__(self, oauth_url: str, *, timeout: float = 10.0,
                 client: Optional[httpx.AsyncClient] = None,
                 circuit_breaker: Optional[CircuitBreaker] = None):
        self.oauth_url = oauth_url.rstrip("/")
        self.logger = get_logger("profile.oauth_client")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self.circuit_breaker = circuit_breaker or get_circuit_breaker(
            "oauth_server",
            failure_threshold=3,
            recovery_timeout=30.0,
            counted_exceptions=(httpx.HTTPError,),
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def verify_token(self, token: str) -> Dict[str, Any]:
        """Verify a bearer token; returns ``{"user", "scope", ...}``."""
        async def _verify_token():
            return await self._client.post(
                f"{self.oauth_url}/v1/verify",
                json={"token": token}
            )

        try:
            response = await self.circuit_breaker.call(_verify_token)
        except CircuitBreakerOpenException:
            raise AuthenticationError("OAuth server unavailable", details={"circuit": "open"})
        except httpx.HTTPError as e:
            self.logger.error("OAuth server HTTP error", error=str(e))
            raise AuthenticationError(
                "OAuth server unavailable",
                details={"http_error": str(e)}
            )

        if response.status_code != 200:
            self.logger.warning("Token verification rejected", status_code=response.status_code)
            raise AuthenticationError(
                "Bearer token invalid",
                details={"status_code": response.status_code}
            )

        try:
            result = response.json()
        except ValueError:
            raise AuthenticationError("OAuth server returned malformed verify response")
        if not isinstance(result, dict) or not result.get("user"):
            raise AuthenticationError("OAuth server returned malformed verify response")
        return result

    async def check_health(self) -> str:
        return "error" if self.circuit_breaker.is_open() else "ok"
