"""Client of the replicated shard controller service.

Each server end is an object with a ``call(method, args)`` method that
returns a :class:`Reply`, or raises ``ConnectionError``, ``TimeoutError`` or
:class:`WrongLeaderError` when the request did not get through.
"""

from __future__ import annotations

import secrets
import time
from typing import Any, Protocol, Sequence

from .ctrlcommon import (
    ClientRequestIdentity,
    Config,
    JoinArgs,
    LeaveArgs,
    MoveArgs,
    QueryArgs,
    Reply,
    WrongLeaderError,
)

_ID_LIMIT = 1 << 62


def new_request_id() -> int:
    """Return a random non-negative identifier below 2**62."""
    return secrets.randbelow(_ID_LIMIT)


class ServerEnd(Protocol):
    def call(self, method: str, args: Any) -> Reply: ...


class Clerk:
    """Sends controller requests, following the leader and retrying forever."""

    def __init__(self, servers: Sequence[ServerEnd], retry_interval: float = 0.1) -> None:
        if not servers:
            raise ValueError("a clerk needs at least one server")
        self._servers = list(servers)
        self._leader = 0
        self.client_id = new_request_id()
        self.retry_interval = retry_interval

    def _identity(self) -> ClientRequestIdentity:
        return ClientRequestIdentity(self.client_id, new_request_id())

    def _request(self, method: str, args: Any) -> Reply:
        while True:
            for _ in range(len(self._servers)):
                try:
                    reply = self._servers[self._leader].call(method, args)
                except (ConnectionError, TimeoutError, WrongLeaderError):
                    reply = None
                if reply is not None and not reply.wrong_leader:
                    return reply
                self._leader = (self._leader + 1) % len(self._servers)
            time.sleep(self.retry_interval)

    def query(self, num: int) -> Config:
        """Fetch configuration ``num``, or the latest one when ``num`` is -1."""
        reply = self._request("ShardCtrler.Query", QueryArgs(self._identity(), num))
        return reply.config

    def join(self, servers: dict[int, list[str]]) -> None:
        """Add replica groups (gid -> server names)."""
        self._request("ShardCtrler.Join", JoinArgs(self._identity(), servers))

    def leave(self, gids: list[int]) -> None:
        """Remove replica groups."""
        self._request("ShardCtrler.Leave", LeaveArgs(self._identity(), list(gids)))

    def move(self, shard: int, gid: int) -> None:
        """Assign ``shard`` to group ``gid``."""
        self._request("ShardCtrler.Move", MoveArgs(self._identity(), shard, gid))