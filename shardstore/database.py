"""The key/value data of one replica group, partitioned by shard."""

from __future__ import annotations

from typing import Iterable, Sequence

from .kvcommon import NSHARDS, key_to_shard


def _check_sid(sid: int) -> None:
    if not 0 <= sid < NSHARDS:
        raise ValueError(f"invalid shard {sid}")


class ShardedDatabase:
    """A string-to-string store with one dictionary per shard."""

    def __init__(self) -> None:
        self._data: list[dict[str, str]] = [{} for _ in range(NSHARDS)]

    def get(self, key: str) -> str:
        """Return the value of ``key``; raise KeyError if it is absent."""
        return self._data[key_to_shard(key)][key]

    def put(self, key: str, value: str) -> None:
        self._data[key_to_shard(key)][key] = value

    def append(self, key: str, value: str) -> None:
        """Append ``value`` to the value of ``key``, treating a missing key as empty."""
        shard = self._data[key_to_shard(key)]
        shard[key] = shard.get(key, "") + value

    def delete(self, sid: int) -> None:
        """Drop all data of shard ``sid``."""
        _check_sid(sid)
        self._data[sid] = {}

    def migrate(self, sid: int, keys: Sequence[str], values: Sequence[str]) -> None:
        """Replace the content of shard ``sid`` with the given pairs."""
        _check_sid(sid)
        if len(keys) != len(values):
            raise ValueError("keys and values differ in length")
        self._data[sid] = dict(zip(keys, values))

    def items(self, sid: int) -> dict[str, str]:
        """Return a copy of the content of shard ``sid``."""
        _check_sid(sid)
        return dict(self._data[sid])

    def to_list(self) -> list[dict[str, str]]:
        """Return a copy of all shards, in shard order."""
        return [dict(shard) for shard in self._data]

    def restore(self, data: Iterable[dict[str, str]]) -> None:
        """Replace all shards with ``data``."""
        shards = [dict(shard) for shard in data]
        if len(shards) != NSHARDS:
            raise ValueError(f"expected {NSHARDS} shards, got {len(shards)}")
        self._data = shards