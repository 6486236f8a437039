# shardstore

Building blocks for a sharded key/value service. The key space is split
into `NSHARDS` (10) shards; `key_to_shard` puts a key in the shard given
by its first byte modulo `NSHARDS`. A shard controller decides which
replica group serves each shard, and every replica group keeps a
deterministic state machine holding the keys of the shards it owns.

## Components

Shard controller:

- `shardstore.ctrlcommon`: `Config` (number, shard → gid list, gid → server
  names) with `copy`, `gid_of` and `servers_of`; the argument types
  `JoinArgs`, `LeaveArgs`, `MoveArgs`, `QueryArgs`; `Reply`; the `Err`
  codes and `WrongLeaderError`.
- `shardstore.ctrlstate`: `ControllerState`, the numbered list of
  configurations with `join`, `leave`, `move`, `query` and `apply`.
  `join` raises `RepeatedGroupError` for a gid already in use. Join and
  leave rebalance with `balance_shards`, which hands unassigned shards
  round-robin to the groups in gid order and then moves shards from groups
  above the average to groups below it. `check_config` rejects shards
  assigned to unknown groups. `RequestHistory` remembers the last request
  of every client so `apply` skips repeated writes.
- `shardstore.ctrlclient`: `Clerk`, which sends `query`, `join`, `leave`
  and `move` to the controller replicas, moving on to the next replica and
  retrying until one that is leader answers. `new_request_id` makes random
  request identifiers.

Key/value replica groups:

- `shardstore.kvcommon`: `key_to_shard`, the `Err` codes, the argument
  types (`GetArgs`, `PutAppendArgs`, `UpdateConfigArgs`, `MigrateArgs`,
  `GetConfigArgs`), `MigratedData` and `Op`.
- `shardstore.shard`: `ShardTable`, the configuration and `ShardState`
  (not owner, owner, migrate, transfer) of every shard. `update` accepts
  only allowed transitions and raises `ConfigUpdateError` otherwise.
- `shardstore.database`: `ShardedDatabase`, one dictionary per shard.
- `shardstore.history`: `ShardHistory`, the last applied request per
  client, kept per shard so it can move along with a shard's data.
- `shardstore.notify`: `NotifyQueue`, which completes the futures of
  callers waiting on log indexes and fails them with a wrong-leader
  `ExecResult` when the term changes; `IndexRecord`, the last applied index.
- `shardstore.config_cache`: `ConfigCache`, which fetches controller
  configurations by number (the last known leader first, then the other
  replicas in parallel) and keeps them until `remove_below` drops them.
- `shardstore.kvclient`: `Clerk`, which routes `get`, `put` and `append`
  to the group that owns the key's shard and re-queries the controller
  when that group is wrong or unreachable.
- `shardstore.kvstate`: `ShardKVState`, the state machine of one replica:
  `apply` for committed entries, `migrated_data` for handing a shard to
  another group, `snapshot` and `restore` (JSON bytes). `migrate_direction`
  says whether a shard moves to, from, past or within a group in the next
  configuration.

Server ends given to the clerks and the cache are objects with a
`call(method, args)` method returning a reply; a raised `ConnectionError`
or `TimeoutError` counts as a lost request.

## Example

```python
from shardstore.ctrlstate import ControllerState

ctrl = ControllerState()
ctrl.join({1: ["x", "y", "z"]})
ctrl.join({2: ["a", "b", "c"]})
latest = ctrl.query(-1)
print(latest.num, latest.shards)
ctrl.leave([1])
```

`query(-1)` returns the latest configuration. Configuration 0 has no
groups and assigns every shard to group 0, the invalid group.

Applying entries to a key/value replica:

```python
from shardstore.kvcommon import (
    EMPTY_IDENTITY, ClientRequestIdentity, GetArgs, Op, OpType,
    PutAppendArgs, UpdateConfigArgs, key_to_shard,
)
from shardstore.kvstate import ShardKVState
from shardstore.shard import ShardConfig, ShardState

state = ShardKVState()
sid = key_to_shard("a")
state.apply(1, Op(OpType.UPDATE_CONFIG,
                  UpdateConfigArgs(EMPTY_IDENTITY, ShardConfig(sid, 1, 100, ShardState.OWNER))))
state.apply(2, Op(OpType.PUT_APPEND,
                  PutAppendArgs(ClientRequestIdentity(1, 1), "a", "x", "Put")))
print(state.apply(3, Op(OpType.GET, GetArgs(ClientRequestIdentity(1, 2), "a"))).result)
```

## What the package does not do

It holds the logic only. It has no consensus layer, no network transport
and no server process: you deliver committed operations to
`ControllerState.apply` and `ShardKVState.apply` in log order yourself,
and you supply the server ends the clerks call. It also does not run the
background loop that walks each shard through a configuration change
(disable, send data, transfer ownership); it provides the pieces such a
loop uses: `migrate_direction`, `migrated_data`, `ConfigCache` and the
checked transitions of `ShardTable`.

## Tests

The tests live in `tests/` and use pytest, which the `test` extra installs.