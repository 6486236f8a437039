import threading

import pytest

from shardstore.config_cache import CacheClosedError, ConfigCache
from shardstore.ctrlcommon import Err, Reply
from shardstore.ctrlstate import ControllerState


class FakeCtrler:
    def __init__(self, state, leader=False, down=False):
        self.state = state
        self.leader = leader
        self.down = down
        self.calls = 0

    def call(self, method, args):
        self.calls += 1
        assert method == "ShardCtrler.Query"
        if self.down:
            raise ConnectionError("unreachable")
        if not self.leader:
            return Reply(True, Err.WRONG_LEADER)
        return Reply(False, Err.OK, self.state.query(args.num))


@pytest.fixture
def state():
    s = ControllerState()
    s.join({1: ["a"]})
    s.join({2: ["b"]})
    return s


def test_get_returns_requested_config(state):
    cache = ConfigCache([FakeCtrler(state, leader=True)])
    config = cache.get(1)
    assert config.num == 1
    assert config.groups == {1: ["a"]}


def test_get_caches_config(state):
    end = FakeCtrler(state, leader=True)
    cache = ConfigCache([end])
    first = cache.get(2)
    second = cache.get(2)
    assert first is second
    assert end.calls == 1


def test_leader_is_discovered_and_remembered(state):
    ends = [FakeCtrler(state), FakeCtrler(state), FakeCtrler(state, leader=True)]
    cache = ConfigCache(ends)
    assert cache.get(2).num == 2
    follower_calls = ends[0].calls
    assert cache.fetch(1).num == 1
    assert ends[0].calls == follower_calls


def test_unreachable_controller_is_skipped(state):
    ends = [FakeCtrler(state, down=True), FakeCtrler(state, leader=True)]
    cache = ConfigCache(ends)
    assert cache.get(1).num == 1


def test_future_config_is_not_cached(state):
    end = FakeCtrler(state, leader=True)
    cache = ConfigCache([end])
    with pytest.raises(LookupError):
        cache.get(7)
    with pytest.raises(LookupError):
        cache.get(7)
    assert end.calls == 2


def test_remove_below_drops_older_entries(state):
    end = FakeCtrler(state, leader=True)
    cache = ConfigCache([end])
    cache.get(1)
    cache.get(2)
    cache.remove_below(2)
    calls = end.calls
    cache.get(2)
    assert end.calls == calls
    cache.get(1)
    assert end.calls == calls + 1


def test_killed_cache_refuses_to_fetch(state):
    cache = ConfigCache([FakeCtrler(state, leader=True)])
    assert not cache.killed()
    cache.kill()
    assert cache.killed()
    with pytest.raises(CacheClosedError):
        cache.fetch(1)


def test_kill_stops_retrying(state):
    cache = ConfigCache([FakeCtrler(state), FakeCtrler(state)], retry_interval=0.01)
    timer = threading.Timer(0.05, cache.kill)
    timer.start()
    try:
        with pytest.raises(CacheClosedError):
            cache.get(1)
    finally:
        timer.cancel()


def test_needs_controllers():
    with pytest.raises(ValueError):
        ConfigCache([])