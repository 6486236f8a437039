"""Shared types of the shard controller: configurations, request arguments and replies.

A configuration assigns each of the ``NSHARDS`` shards to a replica group.
Configuration 0 is the initial one: it has no groups and every shard is
assigned to group 0, the invalid group.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

NSHARDS = 10


class Err(str, enum.Enum):
    """Result codes carried in controller replies."""

    OK = "OK"
    WRONG_LEADER = "ErrWrongLeader"
    REPEATED_KEY = "ErrRepeatedKey"
    UNKNOWN_OP = "UnknownOperation"


class WrongLeaderError(Exception):
    """Raised by a controller replica that is not the current leader."""


@dataclass(frozen=True)
class ClientRequestIdentity:
    """Identifies one request of one client, used to drop duplicates."""

    client_id: int
    request_id: int


@dataclass
class Config:
    """An assignment of shards to replica groups."""

    num: int = 0
    shards: list[int] = field(default_factory=lambda: [0] * NSHARDS)
    groups: dict[int, list[str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.shards = list(self.shards)
        if len(self.shards) != NSHARDS:
            raise ValueError(f"a configuration holds exactly {NSHARDS} shards, got {len(self.shards)}")

    def copy(self) -> Config:
        """Return a deep copy that shares no mutable state with this one."""
        return Config(
            num=self.num,
            shards=list(self.shards),
            groups={gid: list(servers) for gid, servers in self.groups.items()},
        )

    def gid_of(self, shard: int) -> int:
        """Return the group that serves ``shard``."""
        if not 0 <= shard < len(self.shards):
            raise ValueError(f"invalid shard {shard}")
        return self.shards[shard]

    def servers_of(self, gid: int) -> list[str]:
        """Return the server names of group ``gid``, or an empty list."""
        return list(self.groups.get(gid, []))

    def __str__(self) -> str:
        return f"cid={self.num}, shards={{{self.shards}}}, groups={{{self.groups}}}"


@dataclass
class JoinArgs:
    """Add replica groups: gid -> server names."""

    id: ClientRequestIdentity
    servers: dict[int, list[str]]


@dataclass
class LeaveArgs:
    """Remove replica groups."""

    id: ClientRequestIdentity
    gids: list[int]


@dataclass
class MoveArgs:
    """Hand one shard to a given group."""

    id: ClientRequestIdentity
    shard: int
    gid: int


@dataclass
class QueryArgs:
    """Fetch configuration ``num``, or the latest one when ``num`` is -1."""

    id: ClientRequestIdentity
    num: int


@dataclass
class Reply:
    """Reply of a controller replica to any request."""

    wrong_leader: bool
    err: Err = Err.OK
    config: Config | None = None