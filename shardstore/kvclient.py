"""Client of the sharded key/value service.

The clerk asks the controller which group serves a key's shard and then
talks to that group, remembering which server of each group answered
last. A server end returned by ``make_end(name)`` has a
``call(method, args)`` method returning a reply with an ``err`` attribute
(and ``value`` for Get), or raising ``ConnectionError`` or ``TimeoutError``.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Collection, Sequence

from .ctrlclient import Clerk as ControllerClerk
from .ctrlclient import ServerEnd, new_request_id
from .ctrlcommon import Config
from .kvcommon import ClientRequestIdentity, Err, GetArgs, PutAppendArgs, key_to_shard

_DONE = (Err.OK, Err.NO_KEY)
_WRITE_OPS = ("Put", "Append")


class Clerk:
    """Sends Get, Put and Append requests, retrying until they succeed."""

    def __init__(
        self,
        ctrlers: Sequence[ServerEnd],
        make_end: Callable[[str], Any],
        retry_interval: float = 0.1,
    ) -> None:
        self._controller = ControllerClerk(ctrlers, retry_interval)
        self._make_end = make_end
        self.retry_interval = retry_interval
        self.client_id = new_request_id()
        self.config = Config()
        self._leaders: dict[int, int] = {}

    def _identity(self) -> ClientRequestIdentity:
        return ClientRequestIdentity(self.client_id, new_request_id())

    def _call(self, name: str, method: str, args: Any) -> Any:
        try:
            return self._make_end(name).call(method, args)
        except (ConnectionError, TimeoutError):
            return None

    def _send(
        self, key: str, method: str, args: Any, done_first: Collection[Err], done_other: Collection[Err]
    ) -> Any:
        while True:
            gid = self.config.gid_of(key_to_shard(key))
            servers = self.config.groups.get(gid)
            if servers:
                leader = self._leaders.get(gid, 0)
                if leader >= len(servers):
                    leader = 0
                reply = self._call(servers[leader], method, args)
                if reply is not None and reply.err in done_first:
                    return reply
                for si, name in enumerate(servers):
                    if si == leader:
                        continue
                    reply = self._call(name, method, args)
                    if reply is None:
                        continue
                    if reply.err in done_other:
                        self._leaders[gid] = si
                        return reply
                    if reply.err == Err.WRONG_GROUP:
                        self._leaders[gid] = si
                        break
            time.sleep(self.retry_interval)
            self.config = self._controller.query(-1)

    def get(self, key: str) -> str:
        """Return the value of ``key``, or "" if it does not exist."""
        args = GetArgs(self._identity(), key)
        return self._send(key, "ShardKV.Get", args, _DONE, _DONE).value

    def put_append(self, key: str, value: str, op: str) -> None:
        """Write ``value`` to ``key``; ``op`` is "Put" or "Append"."""
        if op not in _WRITE_OPS:
            raise ValueError(f"unknown write operation {op!r}")
        args = PutAppendArgs(self._identity(), key, value, op)
        self._send(key, "ShardKV.PutAppend", args, _DONE, (Err.OK,))

    def put(self, key: str, value: str) -> None:
        self.put_append(key, value, "Put")

    def append(self, key: str, value: str) -> None:
        self.put_append(key, value, "Append")