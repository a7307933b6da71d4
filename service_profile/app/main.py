"""
Profile service for the Profile Access Layer.
"""

from typing import Dict, Optional

from fastapi import Request

from shared.base_service import BaseService
from shared.config import ServiceConfig
from service_profile.app.adapters.identity_client import IdentityClient
from service_profile.app.adapters.oauth_client import OAuthClient
from service_profile.app.auth.oauth import OAuthAuthenticator
from service_profile.app.batching.binding import get_batch_method
from service_profile.app.batching.fetch import ProfileBatchFetcher
from service_profile.app.batching.store import CacheStore
from service_profile.app.routes.profile import ProfileHandler


class ProfileService(BaseService):
    """Profile aggregation service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        oauth_client: Optional[OAuthClient] = None,
        identity_client: Optional[IdentityClient] = None,
        cache_store: Optional[CacheStore] = None,
    ):
        super().__init__("profile", 1111, config=config)
        self.oauth_client = oauth_client or OAuthClient(
            self.config.oauth_url, timeout=self.config.http_timeout
        )
        self.identity_client = identity_client or IdentityClient(
            self.config.identity_service_url, timeout=self.config.http_timeout
        )
        self.cache_store = cache_store
        self.authenticator = OAuthAuthenticator(self.oauth_client)
        self.batch_fetcher = ProfileBatchFetcher(self.identity_client)
        self.profile_handler = ProfileHandler(
            self.config,
            self.authenticator,
            self.batch_fetcher,
            store=self.cache_store,
            metrics=self.metrics,
        )

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.oauth_client.close()
            await self.identity_client.close()
            engine = get_batch_method(self.app)
            if engine is not None:
                await engine.store.close()

        self._setup_profile_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.profile_service = self

    def _setup_profile_routes(self):
        """Set up profile-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "profile",
                "message": "Profile Access Layer - Profile Service",
                "version": "1.0.0"
            }

        @self.app.get("/v1/profile")
        async def get_profile(request: Request):
            """Aggregated profile of the authenticated caller."""
            return await self.profile_handler.handle(request)

        @self.app.get("/v1/batch/stats")
        async def batch_stats():
            """Counters of the batch engine, once it has been bound."""
            engine = get_batch_method(self.app)
            if engine is None:
                return {"bound": False}
            return {"bound": True, **engine.stats()}

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check profile service dependencies."""
        dependencies = {
            "oauth": await self.oauth_client.check_health(),
            "identity": await self.identity_client.check_health(),
        }
        engine = get_batch_method(self.app)
        if engine is not None:
            dependencies["batch_cache"] = await engine.store.check_health()
        return dependencies


def create_app():
    """Create FastAPI application."""
    service = ProfileService()
    return service.app


if __name__ == "__main__":
    service = ProfileService()
    service.run()
