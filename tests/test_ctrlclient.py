from collections import Counter

import pytest

from shardstore.ctrlclient import Clerk, new_request_id
from shardstore.ctrlcommon import NSHARDS, Err, Reply, WrongLeaderError
from shardstore.ctrlstate import ControllerState, Op, OpType, RepeatedGroupError

METHODS = {
    "ShardCtrler.Join": OpType.JOIN,
    "ShardCtrler.Leave": OpType.LEAVE,
    "ShardCtrler.Move": OpType.MOVE,
    "ShardCtrler.Query": OpType.QUERY,
}


class FakeReplica:
    def __init__(self, state, leader=False, leader_after=None):
        self.state = state
        self.leader = leader
        self.leader_after = leader_after
        self.down = False
        self.drop_reply = False
        self.raise_wrong_leader = False
        self.calls = 0
        self.last_args = None

    def call(self, method, args):
        self.calls += 1
        self.last_args = args
        if self.down:
            raise ConnectionError("unreachable")
        if self.leader_after is not None and self.calls >= self.leader_after:
            self.leader = True
        if not self.leader:
            if self.raise_wrong_leader:
                raise WrongLeaderError()
            return Reply(True, Err.WRONG_LEADER)
        try:
            result = self.state.apply(Op(METHODS[method], args))
        except RepeatedGroupError:
            return Reply(True, Err.REPEATED_KEY)
        if self.drop_reply:
            self.drop_reply = False
            raise ConnectionError("reply lost")
        return Reply(False, Err.OK, result)


@pytest.fixture
def state():
    return ControllerState()


def check(ck, groups):
    c = ck.query(-1)
    assert sorted(c.groups) == sorted(groups)
    if groups:
        assert all(g in c.groups for g in c.shards)
    counts = Counter(c.shards)
    if c.groups:
        values = [counts[g] for g in c.groups]
        assert max(values) <= min(values) + 1


def test_new_request_id_range():
    ids = {new_request_id() for _ in range(50)}
    assert all(0 <= i < 1 << 62 for i in ids)
    assert len(ids) > 1


def test_clerk_requires_servers():
    with pytest.raises(ValueError):
        Clerk([])


def test_basic_leave_join_through_clerk(state):
    ck = Clerk([FakeReplica(state), FakeReplica(state, leader=True), FakeReplica(state)], retry_interval=0)
    check(ck, [])
    ck.join({1: ["x", "y", "z"]})
    check(ck, [1])
    ck.join({2: ["a", "b", "c"]})
    check(ck, [1, 2])
    cfx = ck.query(-1)
    assert cfx.groups[1] == ["x", "y", "z"]
    assert cfx.groups[2] == ["a", "b", "c"]
    ck.leave([1])
    check(ck, [2])
    ck.leave([2])
    check(ck, [])
    assert ck.query(1).groups == {1: ["x", "y", "z"]}


def test_move_through_clerk(state):
    ck = Clerk([FakeReplica(state, leader=True)], retry_interval=0)
    ck.join({503: ["3a", "3b", "3c"]})
    ck.join({504: ["4a", "4b", "4c"]})
    for i in range(NSHARDS):
        ck.move(i, 503 if i < NSHARDS // 2 else 504)
    cf2 = ck.query(-1)
    for i in range(NSHARDS):
        assert cf2.shards[i] == (503 if i < NSHARDS // 2 else 504)


def test_clerk_follows_and_remembers_leader(state):
    first = FakeReplica(state)
    second = FakeReplica(state, leader=True)
    ck = Clerk([first, second], retry_interval=0)
    ck.join({1: ["x"]})
    assert first.calls == 1
    assert second.calls == 1
    ck.query(-1)
    assert first.calls == 1
    assert second.calls == 2


def test_clerk_skips_unreachable_and_raising_replicas(state):
    down = FakeReplica(state, leader=True)
    down.down = True
    refusing = FakeReplica(state)
    refusing.raise_wrong_leader = True
    leader = FakeReplica(state, leader=True)
    ck = Clerk([down, refusing, leader], retry_interval=0)
    ck.join({1: ["x"]})
    assert state.query(-1).groups == {1: ["x"]}


def test_clerk_retries_after_a_full_round(state):
    late = FakeReplica(state, leader_after=2)
    other = FakeReplica(state)
    ck = Clerk([late, other], retry_interval=0)
    assert ck.query(-1).num == 0
    assert late.calls == 2
    assert other.calls == 1


def test_lost_reply_is_not_applied_twice(state):
    first = FakeReplica(state, leader=True)
    first.drop_reply = True
    second = FakeReplica(state, leader=True)
    ck = Clerk([first, second], retry_interval=0)
    ck.join({1: ["x"]})
    assert state.query(-1).num == 1
    assert second.last_args.id == first.last_args.id


def test_requests_carry_clerk_identity(state):
    replica = FakeReplica(state, leader=True)
    ck = Clerk([replica], retry_interval=0)
    ck.join({1: ["x"]})
    join_id = replica.last_args.id
    ck.leave([1])
    leave_id = replica.last_args.id
    assert join_id.client_id == ck.client_id == leave_id.client_id
    assert join_id.request_id != leave_id.request_id


def test_minimal_again_through_clerk(state):
    ck = Clerk([FakeReplica(state, leader=True)], retry_interval=0)
    ck.join({1: ["x", "y", "z"]})
    ck.join({2: ["a", "b", "c"]})
    c1 = ck.query(-1)
    ck.join({3: ["d", "e", "f"]})
    c2 = ck.query(-1)
    for i in range(NSHARDS):
        if c2.shards[i] != 3:
            assert c1.shards[i] == c2.shards[i]
    ck.leave([1])
    c3 = ck.query(-1)
    for i in range(NSHARDS):
        if c2.shards[i] != 1:
            assert c2.shards[i] == c3.shards[i]