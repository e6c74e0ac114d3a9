"""
Random Sources

Serial numbers and PEM encryption IVs are drawn from an injectable random
source. The default wraps the `secrets` module (OS CSPRNG, safe for concurrent
use); tests can pass a deterministic source instead.
"""

import secrets
from typing import Protocol


class RandomSource(Protocol):
    """Anything that can hand out random bytes and bounded integers."""

    def token_bytes(self, n: int) -> bytes:
        ...

    def randbelow(self, upper: int) -> int:
        ...


class SystemRandomSource:
    """Cryptographically secure source backed by the operating system."""

    def token_bytes(self, n: int) -> bytes:
        return secrets.token_bytes(n)

    def randbelow(self, upper: int) -> int:
        return secrets.randbelow(upper)


system_random = SystemRandomSource()
