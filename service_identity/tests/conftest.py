"""
Shared fixtures for Identity service tests.
"""

import httpx
import pytest

from mocks.auth_backend.server import MockAuthBackend
from service_identity.app.discovery import SingleHostDiscovery
from service_identity.app.identity import IdentityClient
from shared.test_helpers import FIXED_REFRESH_TIME


@pytest.fixture
def auth_backend():
    """Mock auth plugin publishing one signing key."""
    return MockAuthBackend()


@pytest.fixture
def discovery(auth_backend):
    return SingleHostDiscovery(auth_backend.base_url)


@pytest.fixture
def http_client(auth_backend):
    """HTTP client routed to the mock auth backend."""
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=auth_backend.app))


@pytest.fixture
def identity_client(auth_backend, discovery, http_client):
    """Identity client whose key refreshes are stamped with a fixed time."""
    return IdentityClient(
        discovery,
        auth_backend.issuer,
        http_client=http_client,
        clock=lambda: FIXED_REFRESH_TIME,
    )
