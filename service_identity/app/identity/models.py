"""
Value types produced while verifying identity tokens.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import math
from typing import Any, Dict, Optional, Union


@dataclass(frozen=True)
class DecodedToken:
    """Header and payload of a token read WITHOUT signature verification.

    Only used to pick a signing key and decide whether a key refresh is
    warranted. Nothing in here may be trusted for authorization.
    """

    header: Dict[str, Any] = field(default_factory=dict)
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def kid(self) -> Optional[str]:
        kid = self.header.get("kid")
        return kid if isinstance(kid, str) else None

    @property
    def issued_at(self) -> Optional[Union[int, float]]:
        iat = self.payload.get("iat")
        # bool is an int subclass but never a valid timestamp
        if isinstance(iat, bool) or not isinstance(iat, (int, float)):
            return None
        # Ints stay ints; float() overflows on very large values
        if isinstance(iat, float) and not math.isfinite(iat):
            return None
        return iat


@dataclass(frozen=True)
class Identity:
    """Verified identity of the caller."""

    id: str
    raw_token: str

    def __repr__(self) -> str:
        return f"Identity(id={self.id!r})"
