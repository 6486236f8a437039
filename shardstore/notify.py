"""Bookkeeping for requests waiting on the replicated log.

A :class:`NotifyQueue` holds the requests started in one leader term, in
log order, each with the future its caller waits on. When an entry is
applied the matching request is completed; when the term changes every
waiting request is told that this replica is no longer the leader.
"""

from __future__ import annotations

from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any

from .kvcommon import Err


@dataclass
class ExecResult:
    """The outcome of one applied operation."""

    err: Err
    result: Any = None


class NotifyQueue:
    """Requests waiting for their log entries, all started in the same term."""

    def __init__(self) -> None:
        self.term = -1
        self._waiting: deque[tuple[int, Future]] = deque()

    def __len__(self) -> int:
        return len(self._waiting)

    def push(self, term: int, index: int, future: Future) -> None:
        """Add a request started at log ``index`` in ``term``.

        Requests of an older term are first completed with a wrong-leader result.
        """
        if term < 0 or index < 0 or future is None:
            raise ValueError(f"invalid waiting request: term={term}, index={index}")
        if self.try_notify_older(term) > 0:
            self.clear()
        self.term = term
        self._waiting.append((index, future))

    def front(self) -> tuple[int, int, Future]:
        """Return ``(term, index, future)`` of the oldest waiting request."""
        if not self._waiting:
            raise IndexError("front of an empty notify queue")
        index, future = self._waiting[0]
        return self.term, index, future

    def pop_front(self) -> None:
        """Drop the oldest waiting request."""
        if not self._waiting:
            raise IndexError("pop from an empty notify queue")
        self._waiting.popleft()
        if not self._waiting:
            self.term = -1

    def clear(self) -> None:
        self.term = -1
        self._waiting.clear()

    def try_notify_older(self, term: int) -> int:
        """If ``term`` differs from the queue's, fail every request; return how many."""
        if not self._waiting or term == self.term:
            return 0
        count = len(self._waiting)
        while self._waiting:
            _, _, future = self.front()
            self.pop_front()
            future.set_result(ExecResult(Err.WRONG_LEADER))
        return count

    def try_notify(self, term: int, index: int, result: ExecResult) -> int:
        """Complete the request waiting on ``index`` with ``result``.

        Returns the number of requests completed. Raises RuntimeError if a
        request waits on an index older than ``index``, since its entry was missed.
        """
        count = self.try_notify_older(term)
        if not self._waiting:
            return 0
        _, front_index, future = self.front()
        if front_index == index:
            self.pop_front()
            future.set_result(result)
            return count + 1
        if front_index < index:
            raise RuntimeError(f"notify missed, notify {index}, but index of front is {front_index}")
        return count


@dataclass
class IndexRecord:
    """The log index of the last entry applied to the state machine."""

    last: int = 0

    def advance(self, index: int) -> None:
        """Move to ``index``, which must be past the last applied one."""
        if index <= self.last:
            raise ValueError(
                f"new index is not bigger than old index, new={index}, old={self.last}"
            )
        self.last = index