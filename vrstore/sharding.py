"""Map keys onto shards with the djb2 string hash."""

from __future__ import annotations

__all__ = ["key_to_shard"]

_MASK = (1 << 64) - 1


def key_to_shard(key: str | bytes, nshards: int) -> int:
    """Return the shard in ``range(nshards)`` responsible for ``key``."""
    if nshards <= 0:
        raise ValueError("nshards must be positive")
    data = key.encode("utf-8") if isinstance(key, str) else bytes(key)
    value = 5381
    for byte in data:
        # Bytes are added as signed chars, sign-extended to 64 bits.
        char = byte - 256 if byte >= 128 else byte
        value = (value * 33 + char) & _MASK
    return value % nshards