"""
In-memory cache of the issuer's public signing keys.

The store holds exactly one immutable :class:`KeySnapshot`. A refresh builds a
complete new snapshot and swaps the reference in a single assignment, so a
concurrent reader sees either the old key set or the new one, never a mix.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

from jose.backends.base import Key


@dataclass(frozen=True)
class SigningKey:
    """A public key published by the issuer, identified by ``kid``."""

    kid: str
    key: Key = field(compare=False, repr=False)
    jwk: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class KeySnapshot:
    """Keys fetched together in one request, and when they were fetched."""

    keys: Mapping[str, SigningKey]
    refreshed_at: float

    @classmethod
    def build(cls, keys: Iterable[SigningKey], refreshed_at: float) -> "KeySnapshot":
        return cls(
            keys=MappingProxyType({signing_key.kid: signing_key for signing_key in keys}),
            refreshed_at=refreshed_at,
        )

    def get(self, kid: Optional[str]) -> Optional[SigningKey]:
        if kid is None:
            return None
        return self.keys.get(kid)

    def __len__(self) -> int:
        return len(self.keys)


_EMPTY_SNAPSHOT = KeySnapshot.build((), 0.0)


class KeyStore:
    """Copy-on-write holder of the current :class:`KeySnapshot`."""

    def __init__(self) -> None:
        self._snapshot = _EMPTY_SNAPSHOT

    @property
    def snapshot(self) -> KeySnapshot:
        return self._snapshot

    @property
    def refreshed_at(self) -> float:
        return self._snapshot.refreshed_at

    def lookup(self, kid: Optional[str]) -> Optional[SigningKey]:
        """Return the key with id *kid* from the current snapshot, if any."""
        return self._snapshot.get(kid)

    def replace(self, keys: Iterable[SigningKey], fetched_at: float) -> KeySnapshot:
        """Install a brand-new snapshot built from *keys*, discarding the old one."""
        snapshot = KeySnapshot.build(keys, fetched_at)
        self._snapshot = snapshot
        return snapshot
