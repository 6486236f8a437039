"""A cache of controller configurations, fetched on demand by number.

Configurations never change once created, so each one is fetched from
the controller service at most once and kept until dropped.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Sequence

from .ctrlclient import ServerEnd, new_request_id
from .ctrlcommon import ClientRequestIdentity, Config, QueryArgs, WrongLeaderError


class CacheClosedError(Exception):
    """The cache was killed while a configuration was being fetched."""


@dataclass
class _Entry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    config: Config | None = None


class ConfigCache:
    """Fetches configurations from the controller replicas and keeps them."""

    def __init__(self, ctrlers: Sequence[ServerEnd], retry_interval: float = 0.0) -> None:
        if not ctrlers:
            raise ValueError("a configuration cache needs at least one controller")
        self._ctrlers = list(ctrlers)
        self.client_id = new_request_id()
        self.retry_interval = retry_interval
        self._leader = 0
        self._dead = threading.Event()
        self._lock = threading.Lock()
        self._entries: dict[int, _Entry] = {}

    def kill(self) -> None:
        """Stop all fetching; pending and later fetches raise CacheClosedError."""
        self._dead.set()

    def killed(self) -> bool:
        return self._dead.is_set()

    def _ask(self, server: int, args: QueryArgs) -> Config | None:
        try:
            reply = self._ctrlers[server].call("ShardCtrler.Query", args)
        except (ConnectionError, TimeoutError, WrongLeaderError):
            return None
        if reply is None or reply.wrong_leader:
            return None
        return reply.config

    def fetch(self, cid: int) -> Config:
        """Ask the controller service for configuration ``cid``.

        The replica last known as leader is asked first, then all others at
        once. Retries until an answer arrives or the cache is killed.
        """
        args = QueryArgs(ClientRequestIdentity(self.client_id, new_request_id()), cid)
        while not self.killed():
            leader = self._leader
            config = self._ask(leader, args)
            if config is not None:
                return config

            others = [i for i in range(len(self._ctrlers)) if i != leader]
            if others:
                pool = ThreadPoolExecutor(max_workers=len(others))
                try:
                    pending = {pool.submit(self._ask, i, args): i for i in others}
                    for done in as_completed(pending):
                        config = done.result()
                        if config is not None:
                            self._leader = pending[done]
                            return config
                finally:
                    pool.shutdown(wait=False)
            if self.retry_interval:
                self._dead.wait(self.retry_interval)
        raise CacheClosedError("configuration cache has been killed")

    def get(self, cid: int) -> Config:
        """Return configuration ``cid``, fetching it if it is not cached.

        Raises LookupError if the controller has no configuration ``cid`` yet.
        """
        with self._lock:
            entry = self._entries.setdefault(cid, _Entry())
        with entry.lock:
            if entry.config is None:
                config = self.fetch(cid)
                if config.num != cid:
                    raise LookupError(f"fetch configuration {cid} failed, got {config.num}")
                entry.config = config
            return entry.config

    def remove_below(self, cid: int) -> None:
        """Drop every cached configuration numbered below ``cid``."""
        with self._lock:
            for number in [n for n in self._entries if n < cid]:
                del self._entries[number]