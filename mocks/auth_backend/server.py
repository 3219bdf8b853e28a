"""
Mock auth backend publishing identity signing keys and minting identity tokens.
"""

from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import PlainTextResponse

from shared.logging import get_logger
from shared.test_helpers import (
    DEFAULT_AUDIENCE,
    MockSigningKey,
    MockTokenGenerator,
    generate_signing_key,
    jwks_document,
)


class MockAuthBackend:
    """Mock of the backend's auth plugin.

    Keys are served from ``/api/auth/.well-known/jwks.json``. Tests drive key
    rotation with :meth:`rotate_key` and simulate outages with
    :meth:`fail_with`.
    """

    def __init__(self, base_url: str = "http://localhost:7000", audience: str = DEFAULT_AUDIENCE):
        self.base_url = base_url.rstrip("/")
        self.issuer = f"{self.base_url}/api/auth"
        self.logger = get_logger("mock.auth")
        self.app = FastAPI(title="Mock Auth Backend", version="1.0.0")

        self.tokens = MockTokenGenerator(issuer=self.issuer, audience=audience)
        self.keys: List[MockSigningKey] = [generate_signing_key()]
        self.jwks_requests = 0
        self._failure: Optional[Dict[str, Any]] = None

        self._setup_routes()

    @property
    def current_key(self) -> MockSigningKey:
        return self.keys[-1]

    def rotate_key(self, keep_previous: bool = True) -> MockSigningKey:
        """Add a new signing key and make it current."""
        key = generate_signing_key()
        self.keys = (self.keys if keep_previous else []) + [key]
        self.logger.info("Rotated signing key", kid=key.kid, keys_count=len(self.keys))
        return key

    def fail_with(self, status_code: int, body: str = "") -> None:
        """Answer key set requests with *status_code* until :meth:`recover` is called."""
        self._failure = {"status_code": status_code, "body": body}

    def recover(self) -> None:
        self._failure = None

    def issue_token(self, sub: str = "user:default/guest", **kwargs: Any) -> str:
        """Mint a token signed with the current key."""
        return self.tokens.generate_identity_token(self.current_key, sub=sub, **kwargs)

    def _setup_routes(self):
        """Set up mock auth routes."""

        @self.app.get("/api/auth/.well-known/jwks.json")
        async def jwks_endpoint():
            """JWKS endpoint."""
            self.jwks_requests += 1
            if self._failure is not None:
                return PlainTextResponse(self._failure["body"], status_code=self._failure["status_code"])
            return jwks_document(self.keys)

        @self.app.get("/api/auth/v1/token")
        async def token_endpoint(sub: str = Query(..., min_length=1)):
            """Mint an identity token for local development."""
            if not sub.startswith("user:"):
                raise HTTPException(status_code=400, detail="Subject must be a user entity reference")
            return {"token": self.issue_token(sub=sub), "token_type": "Bearer"}


def create_app():
    """Create mock auth backend application."""
    server = MockAuthBackend()
    return server.app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=7000)
