"""
Identity service for the Access Identity layer.
"""

from typing import Dict, Optional

import httpx
from fastapi import Depends

from shared.base_service import BaseService
from shared.errors import ExternalServiceError
from .discovery import PluginEndpointDiscovery, SingleHostDiscovery
from .identity import FetchError, Identity, IdentityClient
from .middleware import require_identity


class IdentityService(BaseService):
    """Identity service implementation."""

    def __init__(
        self,
        discovery: Optional[PluginEndpointDiscovery] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__("identity", 8013)
        self.discovery = discovery or SingleHostDiscovery.from_config(self.config)
        self.http_client = http_client
        self.identity_client: Optional[IdentityClient] = None

        @self.app.on_event("startup")
        async def _startup():
            self.identity_client = await IdentityClient.create(
                self.discovery,
                plugin_id=self.config.identity_plugin_id,
                audience=self.config.identity_audience,
                timeout=self.config.jwks_fetch_timeout,
                http_client=self.http_client,
                metrics=self.metrics,
            )
            self.app.state.identity_client = self.identity_client
            self.logger.info(
                "Identity client ready",
                issuer=self.identity_client.issuer,
                audience=self.identity_client.audience,
            )
            await self.warmup()

        @self.app.on_event("shutdown")
        async def _shutdown():
            if self.identity_client is not None:
                await self.identity_client.close()

        self._setup_identity_routes()

    async def warmup(self) -> None:
        """Eagerly load the signing keys so the first request does not pay the cost."""
        try:
            await self.identity_client.refresh_key_store()
        except FetchError as exc:
            self.logger.warning("Signing key warmup failed", error=exc.message)

    def _setup_identity_routes(self):
        """Set up identity-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "identity",
                "message": "Access Identity - Identity Service",
                "version": "1.0.0"
            }

        @self.app.get("/identity/whoami")
        async def whoami(identity: Identity = Depends(require_identity)):
            """Return the verified identity of the caller."""
            return {"id": identity.id}

        @self.app.get("/identity/keys")
        async def public_keys():
            """Return the key set published by the auth plugin."""
            try:
                return await self.identity_client.list_public_keys()
            except FetchError as exc:
                raise ExternalServiceError(
                    self.config.identity_plugin_id,
                    exc.message,
                    details=exc.details,
                ) from exc

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check identity dependencies."""
        dependencies = {}
        if self.identity_client is None:
            dependencies["issuer"] = "not_initialised"
            return dependencies

        try:
            await self.identity_client.list_public_keys()
            dependencies["issuer"] = "ok"
        except FetchError as exc:
            self.logger.warning("Issuer health check failed", error=exc.message)
            dependencies["issuer"] = "error"

        return dependencies


def create_app(**kwargs):
    """Create FastAPI application."""
    service = IdentityService(**kwargs)
    return service.app


if __name__ == "__main__":
    service = IdentityService()
    service.run()
