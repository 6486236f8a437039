"""Per-shard configuration state of one key/value replica group.

Each shard has a configuration number, the group it belongs to in that
configuration, and the state of this group towards it: not owner, owner,
migrating its content away, or transferring its ownership.
"""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass
from typing import Iterable

from .kvcommon import EMPTY_IDENTITY, NSHARDS, Err, UpdateConfigArgs


class ShardState(enum.IntEnum):
    NOT_OWNER = 0
    OWNER = 1
    TRANSFER = 2
    MIGRATE = 3

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS = {
    ShardState.NOT_OWNER: "NotOwner",
    ShardState.OWNER: "Owner",
    ShardState.TRANSFER: "Transfer",
    ShardState.MIGRATE: "Migrate",
}


@dataclass(frozen=True)
class ShardConfig:
    """The configuration of one shard as seen by this group."""

    sid: int
    cid: int = 0
    gid: int = 0
    st: ShardState = ShardState.NOT_OWNER

    def __str__(self) -> str:
        return f"sId={self.sid}, cId={self.cid}, gId={self.gid}, st={ShardState(self.st).label}"


class ConfigUpdateError(Exception):
    """A shard configuration update was refused; ``err`` tells why."""

    def __init__(self, err: Err) -> None:
        super().__init__(err.value)
        self.err = err


def is_from_peer(args: UpdateConfigArgs) -> bool:
    """Return True if the update was sent by another group rather than made locally."""
    return args.id != EMPTY_IDENTITY


def _check_sid(sid: int) -> None:
    if not 0 <= sid < NSHARDS:
        raise ValueError(f"invalid shard {sid}")


class ShardTable:
    """The configurations of all shards and which of them are being processed."""

    def __init__(self) -> None:
        self._configs = [ShardConfig(sid) for sid in range(NSHARDS)]
        self._lock = threading.Lock()
        self._processing = [0] * NSHARDS

    def config(self, sid: int) -> ShardConfig:
        """Return the configuration of shard ``sid``."""
        _check_sid(sid)
        return self._configs[sid]

    def is_enabled(self, sid: int) -> bool:
        """Return True if this group currently serves shard ``sid``."""
        return self.config(sid).st is ShardState.OWNER

    def update(self, args: UpdateConfigArgs) -> None:
        """Install ``args.config`` or raise :class:`ConfigUpdateError`.

        An update from a peer must advance the configuration number by one
        and turn a non-owned shard into an owned one; a local update must be
        a valid progress step.
        """
        new = args.config
        if is_from_peer(args):
            current = self.config(new.sid)
            if new.cid > current.cid + 1:
                raise ConfigUpdateError(Err.CONFIG_NOT_MATCH)
            if new.cid < current.cid + 1:
                raise ConfigUpdateError(Err.HAVE_MIGRATED)
            if not (current.st is ShardState.NOT_OWNER and new.st is ShardState.OWNER):
                raise ConfigUpdateError(Err.HAVE_MIGRATED)
        elif not self.is_progress(new):
            raise ConfigUpdateError(Err.FALLBACK_CONFIG)
        self._configs[new.sid] = new

    def is_progress(self, new_config: ShardConfig) -> bool:
        """Return True if moving to ``new_config`` is an allowed step."""
        current = self.config(new_config.sid)
        if current.cid + 1 == new_config.cid:
            if current.st is ShardState.NOT_OWNER:
                return new_config.st in (ShardState.OWNER, ShardState.NOT_OWNER)
            if current.st is ShardState.OWNER:
                return new_config.st is ShardState.OWNER
            if current.st is ShardState.TRANSFER:
                return new_config.st is ShardState.NOT_OWNER
            return False
        if current.cid == new_config.cid:
            if current.gid != new_config.gid:
                raise ValueError(f"same configuration should have same group, c={{{current}}}")
            return (current.st, new_config.st) in (
                (ShardState.OWNER, ShardState.MIGRATE),
                (ShardState.MIGRATE, ShardState.TRANSFER),
            )
        return False

    def is_processing(self, sid: int) -> bool:
        _check_sid(sid)
        with self._lock:
            return self._processing[sid] > 0

    def mark_processing(self, sid: int) -> None:
        _check_sid(sid)
        with self._lock:
            self._processing[sid] += 1

    def unmark_processing(self, sid: int) -> None:
        _check_sid(sid)
        with self._lock:
            self._processing[sid] -= 1

    def to_list(self) -> list[ShardConfig]:
        """Return the configurations of all shards, in shard order."""
        return list(self._configs)

    def restore(self, items: Iterable[ShardConfig]) -> None:
        """Replace all configurations with ``items``."""
        configs = list(items)
        if len(configs) != NSHARDS:
            raise ValueError(f"expected {NSHARDS} shard configurations, got {len(configs)}")
        self._configs = configs

    def __str__(self) -> str:
        rows = ["", "sId\tcId\tgId\tst"]
        rows += [f"{c.sid}\t{c.cid}\t{c.gid}\t{ShardState(c.st).label}" for c in self._configs]
        return "\n".join(rows) + "\n"