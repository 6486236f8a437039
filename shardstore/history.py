"""Per-shard record of the last request applied for each client.

Writes are recorded under the shard they touch, so the record of a shard
can travel with its data when the shard moves to another group.
"""

from __future__ import annotations

from typing import Iterable

from .kvcommon import NSHARDS, ClientRequestIdentity, Op, OpType, key_to_shard
from .shard import is_from_peer


def _check_sid(sid: int) -> None:
    if not 0 <= sid < NSHARDS:
        raise ValueError(f"invalid shard {sid}")


def _shard_of(op: Op) -> int | None:
    """Return the shard under which ``op`` is recorded, or None if it is not recorded."""
    if op.type is OpType.PUT_APPEND:
        return key_to_shard(op.args.key)
    if op.type is OpType.UPDATE_CONFIG:
        return op.args.config.sid if is_from_peer(op.args) else None
    if op.type is OpType.MIGRATE:
        return op.args.config.sid
    return None


class ShardHistory:
    """Last applied request id per client, kept separately for every shard."""

    def __init__(self) -> None:
        self._shards: list[dict[int, int]] = [{} for _ in range(NSHARDS)]

    def find(self, op: Op) -> bool:
        """Return True if ``op`` is the last request recorded for its client and shard."""
        sid = _shard_of(op)
        if sid is None:
            return False
        ident: ClientRequestIdentity = op.args.id
        return self._shards[sid].get(ident.client_id) == ident.request_id

    def insert(self, op: Op) -> None:
        """Record ``op`` as applied; reads and local updates are not recorded."""
        sid = _shard_of(op)
        if sid is None:
            return
        ident: ClientRequestIdentity = op.args.id
        self._shards[sid][ident.client_id] = ident.request_id

    def copy_shard(self, sid: int) -> dict[int, int]:
        """Return a copy of the record of shard ``sid``."""
        _check_sid(sid)
        return dict(self._shards[sid])

    def migrate(self, sid: int, history: dict[int, int]) -> None:
        """Replace the record of shard ``sid`` with ``history``."""
        _check_sid(sid)
        self._shards[sid] = dict(history)

    def to_list(self) -> list[dict[int, int]]:
        """Return a copy of all records, in shard order."""
        return [dict(shard) for shard in self._shards]

    def restore(self, data: Iterable[dict[int, int]]) -> None:
        """Replace all records with ``data``."""
        shards = [dict(shard) for shard in data]
        if len(shards) != NSHARDS:
            raise ValueError(f"expected {NSHARDS} shard histories, got {len(shards)}")
        self._shards = shards