"""
OAuth bearer-token authentication for the Profile service.
"""

from __future__ import annotations

from fastapi import Request

from shared.errors import AuthenticationError
from shared.logging import get_logger, set_user_context

from service_profile.app.adapters.oauth_client import OAuthClient
from service_profile.app.domain.models import Credentials


class OAuthAuthenticator:
    """Resolves the caller's credentials from an ``Authorization: Bearer`` header."""

    def __init__(self, oauth_client: OAuthClient):
        self.oauth_client = oauth_client
        self.logger = get_logger("profile.auth.oauth")

    async def authenticate(self, request: Request) -> Credentials:
        authorization = request.headers.get("Authorization")
        if not authorization or not authorization.startswith("Bearer "):
            raise AuthenticationError("Missing or invalid Authorization header")

        token = authorization[7:].strip()
        if not token:
            raise AuthenticationError("Authorization header contained empty bearer token")

        payload = await self.oauth_client.verify_token(token)
        credentials = Credentials.from_verify_response(payload)

        set_user_context(credentials.user, credentials.client_id)
        self.logger.debug(
            "Request authenticated",
            user_id=credentials.user,
            scope=list(credentials.scope),
        )

        # Downstream handlers read these back from the request.
        request.state.credentials = credentials
        request.state.token = token
        return credentials
