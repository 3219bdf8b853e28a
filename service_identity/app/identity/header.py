"""
Authorization header parsing.
"""

import re
from typing import Any, Optional

_BEARER_PATTERN = re.compile(r"Bearer\s+(\S+)", re.IGNORECASE)


def get_bearer_token(authorization_header: Any) -> Optional[str]:
    """Return the bearer token in *authorization_header*, or None if there is none."""
    if not isinstance(authorization_header, str):
        return None

    match = _BEARER_PATTERN.search(authorization_header)
    if not match:
        return None
    return match.group(1)
