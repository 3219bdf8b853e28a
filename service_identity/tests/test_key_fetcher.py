"""
Unit tests for KeyFetcher.
"""

from unittest.mock import AsyncMock

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from jose import jwk

from service_identity.app.discovery import SingleHostDiscovery
from service_identity.app.identity import FetchError, KeyFetcher
from shared.test_helpers import generate_signing_key, jwks_document


def fetcher_for(handler, base_url="http://backend.test", **kwargs):
    """KeyFetcher whose HTTP calls are answered by *handler*."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return KeyFetcher(SingleHostDiscovery(base_url), client=client, **kwargs)


def json_handler(payload, status_code=200):
    def handler(request):
        return httpx.Response(status_code, json=payload)
    return handler


class TestKeyFetcher:
    """Test cases for KeyFetcher."""

    @pytest.fixture
    def signing_keys(self):
        return [generate_signing_key("key-1"), generate_signing_key("key-2")]

    @pytest.mark.asyncio
    async def test_fetch_success(self, signing_keys):
        """Test every published record becomes a signing key, in order."""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=jwks_document(signing_keys))

        fetcher = fetcher_for(handler)

        keys = await fetcher.fetch()

        assert [key.kid for key in keys] == ["key-1", "key-2"]
        assert keys[0].jwk["x"] == signing_keys[0].public_jwk["x"]
        assert len(requests) == 1
        assert requests[0].method == "GET"
        assert str(requests[0].url) == "http://backend.test/api/auth/.well-known/jwks.json"

    @pytest.mark.asyncio
    async def test_fetch_uses_plugin_id(self, signing_keys):
        """Test the key set URL is resolved for the configured plugin."""
        urls = []

        def handler(request):
            urls.append(str(request.url))
            return httpx.Response(200, json=jwks_document(signing_keys))

        fetcher = fetcher_for(handler, plugin_id="identity")

        await fetcher.fetch()

        assert urls == ["http://backend.test/api/identity/.well-known/jwks.json"]

    @pytest.mark.asyncio
    async def test_fetch_empty_key_set(self):
        """Test an empty key set is a valid (empty) result."""
        fetcher = fetcher_for(json_handler({"keys": []}))

        assert await fetcher.fetch() == []

    @pytest.mark.asyncio
    async def test_fetch_http_error_status(self):
        """Test non-2xx responses fail with status code, text and body."""
        def handler(request):
            return httpx.Response(500, text="signing keys unavailable")

        fetcher = fetcher_for(handler)

        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch()

        assert str(exc_info.value) == "Request failed with 500 Internal Server Error, signing keys unavailable"
        assert exc_info.value.details["status_code"] == 500

    @pytest.mark.asyncio
    async def test_fetch_not_found(self):
        """Test a missing endpoint fails the fetch."""
        fetcher = fetcher_for(json_handler({"error": "not found"}, status_code=404))

        with pytest.raises(FetchError, match="404 Not Found"):
            await fetcher.fetch()

    @pytest.mark.asyncio
    async def test_fetch_invalid_json(self):
        """Test an unparseable body fails the fetch."""
        def handler(request):
            return httpx.Response(200, text="<html>oops</html>")

        fetcher = fetcher_for(handler)

        with pytest.raises(FetchError, match="not valid JSON"):
            await fetcher.fetch()

    @pytest.mark.parametrize("payload", [[], {}, {"keys": {}}, {"keys": "abc"}, {"data": []}])
    @pytest.mark.asyncio
    async def test_fetch_missing_keys_array(self, payload):
        """Test bodies without a 'keys' array fail the fetch."""
        fetcher = fetcher_for(json_handler(payload))

        with pytest.raises(FetchError, match="missing 'keys' array"):
            await fetcher.fetch()

    @pytest.mark.asyncio
    async def test_fetch_fails_on_single_bad_record(self, signing_keys):
        """Test one unusable record fails the whole fetch."""
        document = jwks_document(signing_keys)
        broken = dict(document["keys"][1])
        del broken["y"]
        document["keys"][1] = broken

        fetcher = fetcher_for(json_handler(document))

        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch()

        assert exc_info.value.details["kid"] == "key-2"

    @pytest.mark.parametrize(
        "mutation",
        [
            lambda record: record.pop("kid"),
            lambda record: record.update(kid=7),
            lambda record: record.update(alg="RS256"),
            lambda record: record.update(kty="RSA"),
            lambda record: record.update(x="!!not-base64!!"),
            lambda record: record.update(d="c2VjcmV0"),
            lambda record: record.pop("crv"),
            lambda record: record.update(crv="P-384"),
            lambda record: record.pop("kty"),
        ],
        ids=["no-kid", "numeric-kid", "rsa-alg", "rsa-kty", "bad-coordinate", "private-key", "no-crv", "p384-crv", "no-kty"],
    )
    @pytest.mark.asyncio
    async def test_fetch_rejects_unusable_records(self, signing_keys, mutation):
        """Test records that are not ES256 public keys are rejected."""
        document = jwks_document(signing_keys[:1])
        mutation(document["keys"][0])

        fetcher = fetcher_for(json_handler(document))

        with pytest.raises(FetchError):
            await fetcher.fetch()

    @pytest.mark.asyncio
    async def test_fetch_rejects_non_object_record(self):
        """Test a record that is not a JSON object fails the fetch."""
        fetcher = fetcher_for(json_handler({"keys": ["not-a-key"]}))

        with pytest.raises(FetchError, match="not an object"):
            await fetcher.fetch()

    @pytest.mark.asyncio
    async def test_fetch_timeout(self):
        """Test a stalled issuer surfaces as FetchError."""
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        fetcher = fetcher_for(handler, timeout=0.5)

        with pytest.raises(FetchError, match="timed out after 0.5s"):
            await fetcher.fetch()

    @pytest.mark.asyncio
    async def test_fetch_connection_error(self):
        """Test transport failures surface as FetchError."""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        fetcher = fetcher_for(handler)

        with pytest.raises(FetchError, match="connection refused"):
            await fetcher.fetch()

    @pytest.mark.asyncio
    async def test_list_public_keys_returns_document(self, signing_keys):
        """Test the raw published document is returned unchanged."""
        document = jwks_document(signing_keys)
        fetcher = fetcher_for(json_handler(document))

        assert await fetcher.list_public_keys() == document

    @pytest.mark.asyncio
    async def test_close_leaves_injected_client_open(self):
        """Test an injected HTTP client is owned by the caller."""
        client = httpx.AsyncClient(transport=httpx.MockTransport(json_handler({"keys": []})))
        fetcher = KeyFetcher(SingleHostDiscovery("http://backend.test"), client=client)

        await fetcher.close()

        assert client.is_closed is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_close_owned_client(self):
        """Test the fetcher closes a client it created."""
        fetcher = KeyFetcher(SingleHostDiscovery("http://backend.test"), timeout=1.0)

        await fetcher.close()

        assert fetcher._client.is_closed is True

    @pytest.mark.asyncio
    async def test_fetch_rejects_other_curves(self):
        """Test a well-formed P-384 key is rejected even without an alg field."""
        private_pem = ec.generate_private_key(ec.SECP384R1()).private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        record = jwk.construct(private_pem, algorithm="ES384").public_key().to_dict()
        record.pop("alg", None)
        record["kid"] = "p384"

        fetcher = fetcher_for(json_handler({"keys": [record]}))

        with pytest.raises(FetchError, match="P-256") as exc_info:
            await fetcher.fetch()

        assert exc_info.value.details["crv"] == "P-384"

    @pytest.mark.asyncio
    async def test_fetch_discovery_failure(self):
        """Test a failing discovery lookup surfaces as FetchError."""
        discovery = AsyncMock()
        discovery.get_base_url.side_effect = RuntimeError("discovery down")
        client = httpx.AsyncClient(transport=httpx.MockTransport(json_handler({"keys": []})))
        fetcher = KeyFetcher(discovery, plugin_id="auth", client=client)

        with pytest.raises(FetchError, match="discovery down") as exc_info:
            await fetcher.fetch()

        assert exc_info.value.details == {"plugin_id": "auth"}
        assert isinstance(exc_info.value.__cause__, RuntimeError)
