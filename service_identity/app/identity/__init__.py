"""
Identity token verification.

Contains the client that authenticates identity tokens issued by the
backend's auth plugin:

- header: extracts the bearer token from an Authorization header value.
- key_store: copy-on-write cache of the issuer's public signing keys.
- key_fetcher: retrieves the published JSON Web Key Set over HTTP.
- client: IdentityClient, the public entry point (`authenticate`).

Key points:
- Exactly one signature algorithm (ES256) is accepted.
- The key set is re-fetched only for unknown keys on tokens issued after
  the last refresh, and at most once per call.
- Every failure is an AuthError; callers map all of them to 401.
"""

from .client import IdentityClient
from .errors import (
    AuthError,
    AuthFailure,
    FetchError,
    InvalidTokenError,
    MalformedTokenError,
    MissingTokenError,
    UnknownKeyError,
)
from .header import get_bearer_token
from .key_fetcher import KeyFetcher
from .key_store import KeySnapshot, KeyStore, SigningKey
from .models import DecodedToken, Identity

__all__ = [
    "AuthError",
    "AuthFailure",
    "DecodedToken",
    "FetchError",
    "Identity",
    "IdentityClient",
    "InvalidTokenError",
    "KeyFetcher",
    "KeySnapshot",
    "KeyStore",
    "MalformedTokenError",
    "MissingTokenError",
    "SigningKey",
    "UnknownKeyError",
    "get_bearer_token",
]
