"""The replicated state machine of one key/value replica group.

Applies committed log entries to the sharded data, the per-shard
configurations and the record of applied client requests, and turns that
state into snapshots and back.
"""

from __future__ import annotations

import enum
import json
import logging
import threading

from .ctrlcommon import Config
from .database import ShardedDatabase
from .history import ShardHistory
from .kvcommon import Err, MigratedData, Op, OpType, key_to_shard
from .notify import ExecResult, IndexRecord
from .shard import ConfigUpdateError, ShardConfig, ShardState, ShardTable

log = logging.getLogger(__name__)


class MigrateDirection(enum.IntEnum):
    """How a shard moves between this group and others in the next configuration."""

    TO = 1
    FROM = 2
    NO = 3
    LOOP = 4


def migrate_direction(config: ShardConfig, new_config: Config, gid: int) -> MigrateDirection:
    """Tell how shard ``config.sid`` moves for group ``gid`` when ``new_config`` takes effect."""
    old_gid = config.gid
    new_gid = new_config.gid_of(config.sid)
    if old_gid == gid and new_gid != gid:
        return MigrateDirection.TO
    if old_gid != gid and new_gid == gid:
        return MigrateDirection.FROM
    if old_gid == gid and new_gid == gid:
        return MigrateDirection.LOOP
    return MigrateDirection.NO


class ShardKVState:
    """Data, shard configurations and request history of one replica."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.database = ShardedDatabase()
        self.history = ShardHistory()
        self.shards = ShardTable()
        self._index = IndexRecord()

    @property
    def last_index(self) -> int:
        """The log index of the last entry applied."""
        return self._index.last

    def apply(self, index: int, op: Op) -> ExecResult:
        """Apply the entry at log ``index`` unless its request was already applied.

        A repeated request gives OK without touching the state. A request is
        recorded only when it succeeds.
        """
        with self._lock:
            if self.history.find(op):
                return ExecResult(Err.OK)
            self._index.advance(index)
            result = self.apply_operation(op)
            if result.err == Err.OK:
                self.history.insert(op)
            return result

    def apply_operation(self, op: Op) -> ExecResult:
        """Execute ``op`` against the state and return its outcome."""
        with self._lock:
            log.debug("apply operation %s", op)
            args = op.args
            if op.type is OpType.GET:
                if not self.shards.is_enabled(key_to_shard(args.key)):
                    return ExecResult(Err.WRONG_GROUP)
                try:
                    return ExecResult(Err.OK, self.database.get(args.key))
                except KeyError:
                    return ExecResult(Err.NO_KEY)

            if op.type is OpType.PUT_APPEND:
                if not self.shards.is_enabled(key_to_shard(args.key)):
                    return ExecResult(Err.WRONG_GROUP)
                if args.op == "Put":
                    self.database.put(args.key, args.value)
                elif args.op == "Append":
                    self.database.append(args.key, args.value)
                else:
                    raise ValueError(f"unknown write operation {args.op!r}")
                return ExecResult(Err.OK)

            if op.type is OpType.UPDATE_CONFIG:
                sid = args.config.sid
                try:
                    self.shards.update(args)
                except ConfigUpdateError as exc:
                    log.debug(
                        "update config failed, err=%s, c={%s}, nc={%s}",
                        exc.err.value, self.shards.config(sid), args.config,
                    )
                    return ExecResult(exc.err)
                if self.shards.config(sid).st is ShardState.NOT_OWNER:
                    self.database.delete(sid)
                return ExecResult(Err.OK)

            if op.type is OpType.MIGRATE:
                sid = args.config.sid
                current = self.shards.config(sid)
                if args.config.cid > current.cid:
                    return ExecResult(Err.CONFIG_NOT_MATCH)
                if args.config.cid < current.cid:
                    raise RuntimeError(
                        f"shard had moved, c={{{current}}}, nc={{{args.config}}}"
                    )
                self.history.migrate(sid, args.data.history)
                self.database.migrate(sid, args.data.keys, args.data.values)
                return ExecResult(Err.OK)

            if op.type is OpType.GET_CONFIG:
                return ExecResult(Err.OK, self.shards.config(args.sid))

            raise ValueError(f"unknown operation {op.type!r}")

    def migrated_data(self, sid: int) -> MigratedData:
        """Return the content and request record of shard ``sid`` for sending to another group."""
        with self._lock:
            items = self.database.items(sid)
            return MigratedData(
                keys=list(items),
                values=list(items.values()),
                history=self.history.copy_shard(sid),
            )

    def snapshot(self) -> tuple[int, bytes]:
        """Return the last applied index and the serialized state."""
        with self._lock:
            document = {
                "database": self.database.to_list(),
                "shards": [[c.sid, c.cid, c.gid, int(c.st)] for c in self.shards.to_list()],
                "history": [
                    {str(client): request for client, request in shard.items()}
                    for shard in self.history.to_list()
                ],
            }
            return self._index.last, json.dumps(document, sort_keys=True).encode("utf-8")

    def restore(self, index: int, data: bytes) -> None:
        """Replace the whole state with a snapshot taken at log ``index``."""
        document = json.loads(data.decode("utf-8"))
        shards = [
            ShardConfig(sid, cid, gid, ShardState(st)) for sid, cid, gid, st in document["shards"]
        ]
        history = [
            {int(client): request for client, request in shard.items()}
            for shard in document["history"]
        ]
        with self._lock:
            self.database.restore(document["database"])
            self.shards.restore(shards)
            self.history.restore(history)
            self._index.last = index
            log.debug("reset state machine, index=%s, shard={%s}", index, self.shards)