"""
Plugin endpoint discovery.

Services locate each other's HTTP APIs through a discovery object rather
than hard-coded URLs. The identity client needs two answers from it: where
to fetch the auth plugin's published keys (internal URL), and which issuer
value the auth plugin stamps into its tokens (external URL).
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from shared.config import BaseConfig

API_BASE_PATH = "/api"


@runtime_checkable
class PluginEndpointDiscovery(Protocol):
    """Resolves base URLs of backend plugins."""

    async def get_base_url(self, plugin_id: str) -> str:
        """URL for service-to-service calls to *plugin_id*."""
        ...

    async def get_external_base_url(self, plugin_id: str) -> str:
        """URL under which *plugin_id* is reachable from outside the backend."""
        ...


class SingleHostDiscovery:
    """Discovery for a backend where every plugin is served from one host.

    Plugins are mounted at ``<base>/api/<plugin_id>``. The internal base URL
    defaults to the external one.
    """

    def __init__(self, external_base_url: str, internal_base_url: Optional[str] = None) -> None:
        self.external_base_url = external_base_url.rstrip("/") + API_BASE_PATH
        self.internal_base_url = (internal_base_url or external_base_url).rstrip("/") + API_BASE_PATH

    @classmethod
    def from_config(cls, config: BaseConfig) -> "SingleHostDiscovery":
        return cls(config.backend_base_url, config.backend_internal_base_url)

    async def get_base_url(self, plugin_id: str) -> str:
        return f"{self.internal_base_url}/{plugin_id}"

    async def get_external_base_url(self, plugin_id: str) -> str:
        return f"{self.external_base_url}/{plugin_id}"
