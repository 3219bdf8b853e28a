"""
Identity token verification client.

Verifies the identity tokens minted by the backend's auth plugin, presented
as ``Authorization: Bearer <token>``. Verification is deliberately split in
two phases:

1. :meth:`IdentityClient.decode_unverified` reads the token header and
   payload without checking the signature. The result is only used to pick
   the signing key and to decide whether the cached key set may be stale.
2. :meth:`IdentityClient.verify` checks the signature with exactly one
   algorithm (ES256) and validates audience, issuer, expiry and not-before.

Signing keys are cached in a :class:`KeyStore`. The cache is refreshed only
when a token names an unknown key AND was issued after the last refresh; a
token that is older than the cache and still names an unknown key cannot
have been signed by a key we have not seen, so it is rejected without a
network call.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional

import httpx
from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError, JWTError

from shared.logging import get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from ..discovery import PluginEndpointDiscovery
from .errors import (
    AuthError,
    FetchError,
    InvalidTokenError,
    MalformedTokenError,
    MissingTokenError,
    UnknownKeyError,
)
from .header import get_bearer_token
from .key_fetcher import SIGNING_ALGORITHM, KeyFetcher
from .key_store import KeySnapshot, KeyStore, SigningKey
from .models import DecodedToken, Identity

DEFAULT_AUDIENCE = "backstage"


class IdentityClient:
    """Authenticates identity tokens against the auth plugin's published keys.

    Usage::

        client = await IdentityClient.create(discovery)
        identity = await client.authenticate(request.headers.get("Authorization"))
    """

    def __init__(
        self,
        discovery: PluginEndpointDiscovery,
        issuer: str,
        *,
        audience: str = DEFAULT_AUDIENCE,
        plugin_id: str = "auth",
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
        key_store: Optional[KeyStore] = None,
        key_fetcher: Optional[KeyFetcher] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.discovery = discovery
        self.issuer = issuer
        self.audience = audience
        self.key_store = key_store or KeyStore()
        self.key_fetcher = key_fetcher or KeyFetcher(
            discovery,
            plugin_id=plugin_id,
            timeout=timeout,
            client=http_client,
        )
        self.logger = get_logger("identity.client")
        self.metrics = metrics or get_metrics_collector("identity")
        self._clock = clock

    @classmethod
    async def create(
        cls,
        discovery: PluginEndpointDiscovery,
        *,
        plugin_id: str = "auth",
        **kwargs: Any,
    ) -> "IdentityClient":
        """Build a client whose expected issuer is the plugin's external URL."""
        issuer = await discovery.get_external_base_url(plugin_id)
        return cls(discovery, issuer, plugin_id=plugin_id, **kwargs)

    async def close(self) -> None:
        await self.key_fetcher.close()

    async def authenticate(self, authorization_header: Optional[str]) -> Identity:
        """Verify the bearer token in *authorization_header* and return its identity.

        Raises an :class:`AuthError` subclass on any failure.
        """
        try:
            identity = await self._authenticate(authorization_header)
        except AuthError as exc:
            self.metrics.increment_counter("token_validations_total", status=exc.reason.value)
            self.logger.warning(
                "Identity token rejected",
                reason=exc.reason.value,
                error=exc.message,
                details=exc.details,
            )
            raise

        self.metrics.increment_counter("token_validations_total", status="ok")
        self.logger.debug("Identity token verified", user_id=identity.id)
        return identity

    async def _authenticate(self, authorization_header: Optional[str]) -> Identity:
        token = get_bearer_token(authorization_header)
        if not token:
            raise MissingTokenError("No bearer token found in authorization header")

        decoded = self.decode_unverified(token)
        signing_key = await self.get_key(decoded)
        claims = self.verify(token, signing_key)

        return Identity(id=claims["sub"], raw_token=token)

    @staticmethod
    def decode_unverified(token: str) -> DecodedToken:
        """Read the token header and payload WITHOUT verifying the signature."""
        if token.count(".") != 2:
            raise MalformedTokenError("Token is not a three-segment compact token")

        try:
            header = jwt.get_unverified_header(token)
            payload = jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise MalformedTokenError("Token could not be decoded", details={"error": str(exc)}) from exc

        return DecodedToken(header=dict(header), payload=dict(payload))

    async def get_key(self, decoded: DecodedToken) -> SigningKey:
        """Return the signing key named by *decoded*, refreshing the cache at most once."""
        kid = decoded.kid
        signing_key = self.key_store.lookup(kid)

        if signing_key is None and kid is not None and self._may_be_newer_than_cache(decoded):
            try:
                await self.refresh_key_store()
            except FetchError as exc:
                self.logger.error("Signing key refresh failed", error=exc.message, details=exc.details)
                raise UnknownKeyError(
                    "No signing key matching token found",
                    details={"kid": kid, "fetch_error": exc.message},
                ) from exc
            signing_key = self.key_store.lookup(kid)

        if signing_key is None:
            raise UnknownKeyError("No signing key matching token found", details={"kid": kid})
        return signing_key

    def _may_be_newer_than_cache(self, decoded: DecodedToken) -> bool:
        issued_at = decoded.issued_at
        return issued_at is not None and issued_at > self.key_store.refreshed_at

    async def refresh_key_store(self) -> KeySnapshot:
        """Fetch the published keys and replace the cached key set wholesale."""
        # Must be read before the request is sent
        fetched_at = self._clock()
        try:
            with self.metrics.time_operation("jwks_refresh_duration_seconds"):
                keys = await self.key_fetcher.fetch()
        except FetchError:
            self.metrics.increment_counter("jwks_refresh_total", status="error")
            raise

        self.metrics.increment_counter("jwks_refresh_total", status="ok")
        snapshot = self.key_store.replace(keys, fetched_at)
        self.logger.info("Signing keys refreshed", keys_count=len(snapshot), refreshed_at=fetched_at)
        return snapshot

    def verify(self, token: str, signing_key: SigningKey) -> Dict[str, Any]:
        """Verify signature and standard claims; return the trusted claims."""
        try:
            claims = jwt.decode(
                token,
                signing_key.key,
                algorithms=[SIGNING_ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
                options={"require_aud": True, "require_iss": True},
            )
        except ExpiredSignatureError as exc:
            raise InvalidTokenError("Token has expired", details={"kid": signing_key.kid}) from exc
        except JWTClaimsError as exc:
            raise InvalidTokenError(
                "Token claims are invalid",
                details={"kid": signing_key.kid, "error": str(exc)},
            ) from exc
        except JWTError as exc:
            raise InvalidTokenError(
                "Token signature verification failed",
                details={"kid": signing_key.kid, "error": str(exc)},
            ) from exc

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise InvalidTokenError("Token missing subject claim", details={"kid": signing_key.kid})

        return claims

    async def list_public_keys(self) -> Dict[str, Any]:
        """Return the public key set currently published by the auth plugin."""
        return await self.key_fetcher.list_public_keys()
