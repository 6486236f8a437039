"""Shared types of the sharded key/value service: errors, request arguments and operations."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Union

from .ctrlcommon import NSHARDS
from .ctrlcommon import ClientRequestIdentity as _ControllerIdentity

if TYPE_CHECKING:
    from .shard import ShardConfig

__all__ = [
    "NSHARDS",
    "EMPTY_IDENTITY",
    "key_to_shard",
    "Err",
    "ClientRequestIdentity",
    "OpType",
    "PutAppendArgs",
    "GetArgs",
    "UpdateConfigArgs",
    "MigrateArgs",
    "GetConfigArgs",
    "MigratedData",
    "Op",
]


class ClientRequestIdentity(_ControllerIdentity):
    """Identifies one request of one client to the key/value service."""


EMPTY_IDENTITY = ClientRequestIdentity(-1, -1)


def key_to_shard(key: str) -> int:
    """Return the shard that holds ``key``: its first byte modulo the shard count."""
    data = key.encode("utf-8")
    return data[0] % NSHARDS if data else 0


class Err(str, enum.Enum):
    """Result codes carried in key/value replies."""

    OK = "OK"
    NO_KEY = "ErrNoKey"
    WRONG_GROUP = "ErrWrongGroup"
    WRONG_LEADER = "ErrWrongLeader"
    UNKNOWN_ARGS = "ErrUnknownArgs"
    CONNECT_FAILED = "ErrConnectFailed"
    HAVE_MIGRATED = "ErrHaveMigrated"
    CONFIG_NOT_MATCH = "ErrConfigNotMatch"
    FALLBACK_CONFIG = "ErrFallbackConfig"


class OpType(enum.IntEnum):
    GET = 1
    PUT_APPEND = 2
    UPDATE_CONFIG = 4
    MIGRATE = 5
    GET_CONFIG = 6


_OP_NAMES = {
    OpType.GET: "Get",
    OpType.PUT_APPEND: "PutAppend",
    OpType.UPDATE_CONFIG: "UpdateConfig",
    OpType.MIGRATE: "Migrate",
    OpType.GET_CONFIG: "GetConfig",
}


@dataclass
class PutAppendArgs:
    """Write ``value`` to ``key``; ``op`` is "Put" or "Append"."""

    id: ClientRequestIdentity
    key: str
    value: str
    op: str

    def __str__(self) -> str:
        return (
            f"Id={self.id}, K={self.key}, V={self.value}, "
            f"sId={key_to_shard(self.key)}, Op={{{self.op}}}"
        )


@dataclass
class GetArgs:
    """Read ``key``."""

    id: ClientRequestIdentity
    key: str

    def __str__(self) -> str:
        return f"Id={self.id}, K={self.key}, sId={key_to_shard(self.key)}"


@dataclass
class UpdateConfigArgs:
    """Replace the configuration of one shard."""

    id: ClientRequestIdentity
    config: ShardConfig

    def __str__(self) -> str:
        return f"Id={self.id}, c={{{self.config}}}"


@dataclass
class MigratedData:
    """The content of one shard as sent to the group taking it over."""

    keys: list[str] = field(default_factory=list)
    values: list[str] = field(default_factory=list)
    history: dict[int, int] = field(default_factory=dict)


@dataclass
class MigrateArgs:
    """Install the content of a shard received from another group."""

    id: ClientRequestIdentity
    config: ShardConfig
    data: MigratedData

    def __str__(self) -> str:
        return f"Id={self.id}, c={{{self.config}}}, OpLen={len(self.data.keys)}"


@dataclass
class GetConfigArgs:
    """Read the configuration of one shard."""

    sid: int

    def __str__(self) -> str:
        return f"sId={self.sid}"


OpArgs = Union[PutAppendArgs, GetArgs, UpdateConfigArgs, MigrateArgs, GetConfigArgs]


@dataclass
class Op:
    """One key/value operation as it travels through the log."""

    type: OpType
    args: OpArgs

    def identity(self) -> ClientRequestIdentity:
        """Return the request identity; GetConfig carries none and gives the empty one."""
        if self.type is OpType.GET_CONFIG:
            return EMPTY_IDENTITY
        if self.type in _OP_NAMES:
            return self.args.id
        raise ValueError(f"unsupported operation {self.type!r}")

    def __str__(self) -> str:
        return f"op={_OP_NAMES[self.type]}, args={{{self.args}}}"