"""
Request-layer adapter for the identity client.
"""

from fastapi import HTTPException, Request

from shared.logging import get_logger, set_user_context
from .identity import AuthError, Identity, IdentityClient

logger = get_logger("identity.middleware")


async def require_identity(request: Request) -> Identity:
    """FastAPI dependency that authenticates the request's bearer token.

    Every verification failure becomes the same 401; the specific reason is
    only logged by the identity client.
    """
    client: IdentityClient = getattr(request.app.state, "identity_client", None)
    if client is None:
        logger.error("Identity client not initialised", path=request.url.path)
        raise HTTPException(status_code=503, detail="Identity verification unavailable")

    try:
        identity = await client.authenticate(request.headers.get("Authorization"))
    except AuthError:
        raise HTTPException(
            status_code=401,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )

    request.state.identity = identity
    set_user_context(identity.id)
    return identity
