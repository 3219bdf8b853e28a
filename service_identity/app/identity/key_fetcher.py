"""
Fetches the issuer's published JSON Web Key Set.

This is the only part of the identity client that talks to the network.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx
from jose import jwk
from jose.exceptions import JWKError

from shared.logging import get_logger
from ..discovery import PluginEndpointDiscovery
from .errors import FetchError
from .key_store import SigningKey

SIGNING_ALGORITHM = "ES256"
SIGNING_CURVE = "P-256"
JWKS_PATH = "/.well-known/jwks.json"


class KeyFetcher:
    """Retrieve and parse the signing keys published by the auth plugin."""

    def __init__(
        self,
        discovery: PluginEndpointDiscovery,
        *,
        plugin_id: str = "auth",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.discovery = discovery
        self.plugin_id = plugin_id
        self.timeout = timeout
        self.logger = get_logger("identity.jwks")

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        """Close the underlying HTTP client if this fetcher created it."""
        if self._owns_client:
            await self._client.aclose()

    async def jwks_url(self) -> str:
        try:
            base_url = await self.discovery.get_base_url(self.plugin_id)
        except Exception as exc:
            raise FetchError(
                f"Could not resolve base URL of plugin {self.plugin_id}: {exc}",
                details={"plugin_id": self.plugin_id},
            ) from exc
        return f"{base_url.rstrip('/')}{JWKS_PATH}"

    async def list_public_keys(self) -> Dict[str, Any]:
        """Return the published key set document, ``{"keys": [...]}``."""
        url = await self.jwks_url()

        try:
            response = await self._client.get(url, timeout=self.timeout)
        except httpx.TimeoutException as exc:
            raise FetchError(
                f"Request to {url} timed out after {self.timeout}s",
                details={"url": url},
            ) from exc
        except httpx.HTTPError as exc:
            raise FetchError(
                f"Request to {url} failed: {exc}",
                details={"url": url},
            ) from exc

        if not response.is_success:
            message = (
                f"Request failed with {response.status_code} "
                f"{response.reason_phrase}, {response.text}"
            )
            raise FetchError(message, details={"url": url, "status_code": response.status_code})

        try:
            payload = response.json()
        except ValueError as exc:
            raise FetchError("Key set response is not valid JSON", details={"url": url}) from exc

        if not isinstance(payload, dict) or not isinstance(payload.get("keys"), list):
            raise FetchError("Key set response missing 'keys' array", details={"url": url})

        return payload

    async def fetch(self) -> List[SigningKey]:
        """Fetch the key set and convert every record into a :class:`SigningKey`.

        A single unusable record fails the whole fetch.
        """
        payload = await self.list_public_keys()
        keys = [self._to_signing_key(record) for record in payload["keys"]]

        self.logger.info(
            "Fetched signing keys",
            keys_count=len(keys),
            kids=[signing_key.kid for signing_key in keys],
        )
        return keys

    @staticmethod
    def _to_signing_key(record: Any) -> SigningKey:
        if not isinstance(record, dict):
            raise FetchError("Key set contains a record that is not an object")

        kid = record.get("kid")
        if not isinstance(kid, str) or not kid:
            raise FetchError("Key set contains a record without a key id (kid)")

        alg = record.get("alg", SIGNING_ALGORITHM)
        if alg != SIGNING_ALGORITHM:
            raise FetchError(
                f"Key {kid} uses unsupported algorithm {alg}",
                details={"kid": kid, "alg": alg},
            )

        kty = record.get("kty")
        crv = record.get("crv")
        if kty != "EC" or crv != SIGNING_CURVE:
            raise FetchError(
                f"Key {kid} is not an EC {SIGNING_CURVE} key",
                details={"kid": kid, "kty": kty, "crv": crv},
            )

        if "d" in record:
            raise FetchError(f"Key {kid} is not a public key", details={"kid": kid})

        try:
            key = jwk.construct(record, algorithm=SIGNING_ALGORITHM)
        except (JWKError, ValueError, TypeError, KeyError) as exc:
            raise FetchError(
                f"Key {kid} is not a usable {SIGNING_ALGORITHM} public key: {exc}",
                details={"kid": kid},
            ) from exc

        return SigningKey(kid=kid, key=key, jwk=dict(record))
