import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from recipes_api.errors import ConflictError, DependencyUnavailable, IdempotencyKeyConflict
from recipes_api.idempotency_store import IdempotencyRecord, MemoryIdempotencyStore, RedisIdempotencyStore
from recipes_api.services.idempotency import IdempotencyGate, StoredResponse, request_fingerprint


class Clock:
    def __init__(self, t=1000.0):
        self.t = t

    def __call__(self):
        return self.t


def _counter():
    calls = {"n": 0}

    async def op():
        calls["n"] += 1
        return StoredResponse(201, {"n": calls["n"]})

    return calls, op


def test_fingerprint_canonical_json():
    a = request_fingerprint("POST", "/history", b'{"recipe_id": "r1", "kind": "viewed"}')
    b = request_fingerprint("post", "/history", b'{"kind":"viewed","recipe_id":"r1"}')
    c = request_fingerprint("POST", "/history", b'{"kind":"cooked","recipe_id":"r1"}')
    assert a == b
    assert a != c


def test_fingerprint_nested_keys_and_non_json_bodies():
    a = request_fingerprint("PUT", "/user-recipes/1", '{"b": {"y": 1, "x": "ñ"}, "a": [2, 1]}'.encode())
    b = request_fingerprint("PUT", "/user-recipes/1", '{"a":[2,1],"b":{"x":"ñ","y":1}}'.encode())
    assert a == b
    # el orden de las listas sí cuenta
    assert a != request_fingerprint("PUT", "/user-recipes/1", b'{"a":[1,2],"b":{"x":"\\u00f1","y":1}}')
    assert request_fingerprint("POST", "/x", b"not json") == request_fingerprint("POST", "/x", b"not json")
    assert request_fingerprint("POST", "/x", b"not json") != request_fingerprint("POST", "/x", b"not json!")
    assert request_fingerprint("POST", "/x", b"") != request_fingerprint("POST", "/x", b"", query="page=2")


def test_replay_returns_stored_result_without_rerunning():
    gate = IdempotencyGate(MemoryIdempotencyStore(), replay_window_s=60)
    calls, op = _counter()

    first = asyncio.run(gate.execute("k1", "alice", "fp", op))
    second = asyncio.run(gate.execute("k1", "alice", "fp", op))

    assert calls["n"] == 1
    assert not first.replayed and second.replayed
    assert second.response == first.response == StoredResponse(201, {"n": 1})


def test_no_key_is_passthrough():
    gate = IdempotencyGate(MemoryIdempotencyStore(), replay_window_s=60)
    calls, op = _counter()
    asyncio.run(gate.execute(None, "alice", "fp", op))
    asyncio.run(gate.execute(None, "alice", "fp", op))
    assert calls["n"] == 2


def test_same_key_different_request_conflicts():
    gate = IdempotencyGate(MemoryIdempotencyStore(), replay_window_s=60)
    calls, op = _counter()
    asyncio.run(gate.execute("k1", "alice", "fp-1", op))
    with pytest.raises(IdempotencyKeyConflict):
        asyncio.run(gate.execute("k1", "alice", "fp-2", op))
    assert calls["n"] == 1


def test_keys_are_scoped_per_requester():
    gate = IdempotencyGate(MemoryIdempotencyStore(), replay_window_s=60)
    calls, op = _counter()
    asyncio.run(gate.execute("k1", "alice", "fp", op))
    r = asyncio.run(gate.execute("k1", "bob", "fp", op))
    assert calls["n"] == 2
    assert not r.replayed


def test_key_is_free_after_replay_window():
    clock = Clock()
    gate = IdempotencyGate(MemoryIdempotencyStore(), replay_window_s=60, clock=clock)
    calls, op = _counter()
    asyncio.run(gate.execute("k1", "alice", "fp", op))
    clock.t += 61
    r = asyncio.run(gate.execute("k1", "alice", "fp", op))
    assert calls["n"] == 2
    assert not r.replayed


def test_expired_records_are_evicted():
    store = MemoryIdempotencyStore()

    async def fill():
        for i in range(200):
            await store.reserve(IdempotencyRecord(key=f"k{i}", requester="alice", fingerprint="fp", created_at=0.0), 0.0, 60)
        assert len(store) == 200
        late = IdempotencyRecord(key="late", requester="alice", fingerprint="fp", created_at=86400.0)
        assert await store.reserve(late, 86400.0, 60) is None

    asyncio.run(fill())
    assert len(store) == 1


def test_live_records_survive_the_sweep():
    store = MemoryIdempotencyStore()

    async def fill():
        await store.reserve(IdempotencyRecord(key="old", requester="alice", fingerprint="fp", created_at=0.0), 0.0, 60)
        await store.reserve(IdempotencyRecord(key="fresh", requester="alice", fingerprint="fp", created_at=50.0), 50.0, 60)
        await store.reserve(IdempotencyRecord(key="new", requester="alice", fingerprint="fp", created_at=70.0), 70.0, 60)
        again = IdempotencyRecord(key="fresh", requester="alice", fingerprint="fp", created_at=71.0)
        return await store.reserve(again, 71.0, 60)

    existing = asyncio.run(fill())
    assert existing is not None and existing.created_at == 50.0
    assert len(store) == 2


def test_failed_operation_is_not_recorded():
    gate = IdempotencyGate(MemoryIdempotencyStore(), replay_window_s=60)
    calls, op = _counter()

    async def boom():
        raise ValueError("boom")

    with pytest.raises(ValueError):
        asyncio.run(gate.execute("k1", "alice", "fp", boom))
    r = asyncio.run(gate.execute("k1", "alice", "fp", op))
    assert calls["n"] == 1
    assert not r.replayed


def test_concurrent_duplicates_run_once():
    gate = IdempotencyGate(MemoryIdempotencyStore(), replay_window_s=60, poll_interval_s=0.001)
    calls = {"n": 0}

    async def slow():
        calls["n"] += 1
        await asyncio.sleep(0.02)
        return StoredResponse(200, {"saved": True})

    async def main():
        return await asyncio.gather(*[gate.execute("k1", "alice", "fp", slow) for _ in range(5)])

    results = asyncio.run(main())
    assert calls["n"] == 1
    assert sum(1 for r in results if not r.replayed) == 1
    assert all(r.response.body == {"saved": True} for r in results)


def test_pending_duplicate_times_out_with_conflict():
    store = MemoryIdempotencyStore()
    gate = IdempotencyGate(store, replay_window_s=60, wait_timeout_s=0.01, poll_interval_s=0.001)
    pending = IdempotencyRecord(key="k1", requester="alice", fingerprint="fp", created_at=gate.clock())
    asyncio.run(store.reserve(pending, pending.created_at, 60))
    _, op = _counter()
    with pytest.raises(ConflictError):
        asyncio.run(gate.execute("k1", "alice", "fp", op))


class _DownRedis:
    def register_script(self, script):  # pragma: no cover - no usado aquí
        raise AssertionError

    async def set(self, *args, **kwargs):
        raise RedisConnectionError("connection refused")

    async def get(self, *args, **kwargs):
        raise RedisConnectionError("connection refused")

    async def delete(self, *args, **kwargs):
        raise RedisConnectionError("connection refused")


def test_store_unavailable_fails_closed():
    gate = IdempotencyGate(RedisIdempotencyStore(_DownRedis()), replay_window_s=60)
    calls, op = _counter()
    with pytest.raises(DependencyUnavailable):
        asyncio.run(gate.execute("k1", "alice", "fp", op))
    assert calls["n"] == 0
