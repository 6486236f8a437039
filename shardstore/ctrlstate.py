"""The replicated state machine of the shard controller.

Holds the numbered history of configurations and applies Join, Leave,
Move and Query operations to it, dropping repeated client requests.
"""

from __future__ import annotations

import enum
import logging
from collections import deque
from dataclasses import dataclass
from typing import Union

from .ctrlcommon import (
    NSHARDS,
    ClientRequestIdentity,
    Config,
    JoinArgs,
    LeaveArgs,
    MoveArgs,
    QueryArgs,
)

log = logging.getLogger(__name__)

OpArgs = Union[JoinArgs, LeaveArgs, MoveArgs, QueryArgs]


class OpType(enum.IntEnum):
    JOIN = 0
    LEAVE = 1
    MOVE = 2
    QUERY = 3


@dataclass
class Op:
    """One controller operation as it travels through the log."""

    type: OpType
    args: OpArgs

    def identity(self) -> ClientRequestIdentity:
        """Return the client request identity carried by the arguments."""
        return self.args.id

    def __str__(self) -> str:
        return f"{{op={self.type.name.title()}, args={self.args}}}"


class RepeatedGroupError(Exception):
    """A Join named a group id that is already in use."""


class RequestHistory:
    """Remembers the last request id applied for every client."""

    def __init__(self) -> None:
        self._latest: dict[int, int] = {}

    def find(self, op: Op) -> bool:
        """Return True if ``op`` is the last request applied for its client."""
        identity = op.identity()
        return self._latest.get(identity.client_id) == identity.request_id

    def insert(self, op: Op) -> None:
        identity = op.identity()
        self._latest[identity.client_id] = identity.request_id


def check_config(config: Config) -> None:
    """Raise ValueError if a shard is assigned to a group that does not exist."""
    for shard, gid in enumerate(config.shards):
        if gid != 0 and gid not in config.groups:
            raise ValueError(
                f"shard {shard} assigned to unknown group {gid}, "
                f"shards={config.shards}, groups={config.groups}"
            )


def balance_shards(config: Config) -> None:
    """Spread the shards evenly over the groups of ``config``, moving as few as possible.

    Unassigned shards go round-robin to the groups in ascending gid order;
    then groups holding more than the average hand their most recently
    gained shards to groups holding fewer.
    """
    check_config(config)
    if not config.groups:
        return

    groups = sorted(config.groups)
    average = max(NSHARDS // len(groups), 1)

    owned: dict[int, list[int]] = {gid: [] for gid in groups}
    unassigned: list[int] = []
    for shard, gid in enumerate(config.shards):
        (unassigned if gid == 0 else owned[gid]).append(shard)

    for i, shard in enumerate(reversed(unassigned)):
        owned[groups[i % len(groups)]].append(shard)

    donors = deque(gid for gid in groups if len(owned[gid]) > average)
    takers = deque(gid for gid in groups if len(owned[gid]) < average)
    log.debug("before balance: owned=%s average=%s donors=%s takers=%s", owned, average, donors, takers)

    while donors and takers:
        taker, donor = takers[0], donors[0]
        while len(owned[taker]) < average:
            owned[taker].append(owned[donor].pop())
            if 0 < len(owned[donor]) <= average:
                break
        if len(owned[donor]) <= average:
            donors.popleft()
        if len(owned[taker]) >= average:
            takers.popleft()

    for gid, shards in owned.items():
        for shard in shards:
            config.shards[shard] = gid
    log.debug("after balance: shards=%s", config.shards)


class ControllerState:
    """The numbered list of configurations and the operations on it."""

    def __init__(self) -> None:
        self.configs: list[Config] = [Config()]
        self.history = RequestHistory()

    @property
    def latest(self) -> Config:
        return self.configs[-1]

    def _append(self, config: Config) -> None:
        config.num = self.latest.num + 1
        check_config(config)
        self.configs.append(config)

    def join(self, servers: dict[int, list[str]]) -> None:
        """Add new groups and rebalance."""
        config = self.latest.copy()
        for gid, names in servers.items():
            if gid in config.groups:
                raise RepeatedGroupError(f"group {gid} is already in use")
            config.groups[gid] = list(names)
        balance_shards(config)
        self._append(config)

    def leave(self, gids: list[int]) -> None:
        """Remove groups, releasing their shards, and rebalance."""
        config = self.latest.copy()
        for gid in gids:
            config.shards = [0 if owner == gid else owner for owner in config.shards]
            config.groups.pop(gid, None)
        balance_shards(config)
        self._append(config)

    def move(self, shard: int, gid: int) -> None:
        """Assign one shard to ``gid`` without rebalancing."""
        if not 0 <= shard < NSHARDS:
            raise ValueError(f"invalid shard {shard}")
        config = self.latest.copy()
        config.shards[shard] = gid
        self._append(config)

    def query(self, num: int) -> Config:
        """Return configuration ``num``; -1 or a number past the latest gives the latest."""
        if num == -1 or num > self.latest.num:
            return self.latest.copy()
        if num < 0:
            raise ValueError(f"invalid configuration number {num}")
        return self.configs[num].copy()

    def apply(self, op: Op) -> Config | None:
        """Apply a committed operation; return the configuration for a Query.

        A write already applied for the same request is skipped. The request
        is recorded even when the operation fails.
        """
        if self.history.find(op) and op.type is not OpType.QUERY:
            return None
        log.debug("apply operation %s", op)
        try:
            return self._execute(op)
        finally:
            self.history.insert(op)

    def _execute(self, op: Op) -> Config | None:
        args = op.args
        if op.type is OpType.JOIN:
            self.join(args.servers)
        elif op.type is OpType.LEAVE:
            self.leave(args.gids)
        elif op.type is OpType.MOVE:
            self.move(args.shard, args.gid)
        elif op.type is OpType.QUERY:
            return self.query(args.num)
        else:
            raise ValueError(f"unknown operation {op.type!r}")
        return None