"""
Tests for room synchronization.

Covers the lastAccessedAt rules for joins, edits and REST access, the realtime
join/edit handlers and their error reporting, and per-connection write order.
"""

import asyncio

import pytest

from synchronizer import CodeTooLarge, InvalidRoomRequest

OLD_TIMESTAMP = "2020-01-01T00:00:00+00:00"


@pytest.mark.asyncio
async def test_join_unknown_room_returns_empty_without_creating(synchronizer, redis_client, connect):
    connect("A")

    code = await synchronizer.join_room("A", "fresh")

    assert code == ""
    assert redis_client.record("fresh") is None
    assert synchronizer.hub.members("fresh") == {"A"}


@pytest.mark.asyncio
async def test_join_refreshes_existing_timestamp(synchronizer, redis_client, connect):
    connect("A")
    redis_client.put("r1", code="hello", lastAccessedAt=OLD_TIMESTAMP)

    code = await synchronizer.join_room("A", "r1")

    assert code == "hello"
    assert redis_client.record("r1")["lastAccessedAt"] > OLD_TIMESTAMP


@pytest.mark.asyncio
async def test_join_does_not_backfill_missing_timestamp(synchronizer, redis_client, connect):
    connect("A")
    redis_client.put("legacy", code="old text")

    assert await synchronizer.join_room("A", "legacy") == "old text"
    assert redis_client.record("legacy") == {"code": "old text"}


@pytest.mark.asyncio
async def test_edit_then_read_returns_last_write(synchronizer):
    await synchronizer.apply_edit("r1", "first")
    await synchronizer.apply_edit("r1", "second")

    assert await synchronizer.read_room("r1") == "second"


@pytest.mark.asyncio
async def test_first_edit_stamps_new_record(synchronizer, redis_client):
    await synchronizer.apply_edit("r1", "x")

    record = redis_client.record("r1")
    assert record["code"] == "x"
    assert record["lastAccessedAt"]


@pytest.mark.asyncio
async def test_edit_refreshes_existing_timestamp(synchronizer, redis_client):
    redis_client.put("r1", code="a", lastAccessedAt=OLD_TIMESTAMP)

    await synchronizer.write_room("r1", "b")

    record = redis_client.record("r1")
    assert record["code"] == "b"
    assert record["lastAccessedAt"] > OLD_TIMESTAMP


@pytest.mark.asyncio
async def test_edit_keeps_untimestamped_record_untimestamped(synchronizer, redis_client):
    redis_client.put("legacy", code="a")

    await synchronizer.apply_edit("legacy", "b")
    await synchronizer.write_room("legacy", "c")

    assert redis_client.record("legacy") == {"code": "c"}


@pytest.mark.asyncio
async def test_read_missing_room_is_empty(synchronizer, redis_client):
    assert await synchronizer.read_room("missing") == ""
    assert redis_client.record("missing") is None


@pytest.mark.asyncio
@pytest.mark.parametrize("room_id", ["", None, "x" * 300])
async def test_invalid_room_ids_are_rejected(synchronizer, room_id):
    with pytest.raises(InvalidRoomRequest):
        await synchronizer.read_room(room_id)


@pytest.mark.asyncio
async def test_oversized_code_is_rejected(synchronizer, redis_client):
    with pytest.raises(CodeTooLarge):
        await synchronizer.write_room("r1", "x" * 1001)
    assert redis_client.record("r1") is None


# Realtime handlers


@pytest.mark.asyncio
async def test_handle_join_loads_code_and_announces(synchronizer, redis_client, connect, flush):
    a, b = connect("A"), connect("B")
    redis_client.put("r1", code="shared", lastAccessedAt=OLD_TIMESTAMP)
    await synchronizer.handle_join("A", "r1")

    assert await synchronizer.handle_join("B", "r1") is True
    await flush("A", "B")

    assert b.events() == [{"event": "load-code", "data": "shared"}]
    assert a.events() == [
        {"event": "load-code", "data": "shared"},
        {"event": "user-connected", "data": "B"},
    ]


@pytest.mark.asyncio
async def test_handle_join_storage_failure_emits_error(synchronizer, redis_client, connect, flush):
    a, b = connect("A"), connect("B")
    await synchronizer.handle_join("A", "r1")
    redis_client.fail_on.add("hgetall")

    assert await synchronizer.handle_join("B", "r1") is False
    await flush("A", "B")

    assert b.events() == [{"event": "error", "data": "Failed to join room"}]
    assert a.events("user-connected") == []
    # Transport-level membership survives the storage failure
    assert synchronizer.hub.members("r1") == {"A", "B"}


@pytest.mark.asyncio
async def test_handle_code_change_broadcasts_and_persists(synchronizer, redis_client, connect, flush):
    a, b, c = connect("A"), connect("B"), connect("C")
    for cid in ("A", "B", "C"):
        synchronizer.hub.join(cid, "r1")

    task = synchronizer.handle_code_change("A", "r1", "new code")
    await task
    await flush("A", "B", "C")

    assert a.events() == []
    assert b.events() == [{"event": "code-change", "data": "new code"}]
    assert c.events() == [{"event": "code-change", "data": "new code"}]
    assert redis_client.record("r1")["code"] == "new code"


@pytest.mark.asyncio
async def test_save_failure_still_broadcasts_and_reports_to_sender(synchronizer, redis_client, connect, flush):
    a, b = connect("A"), connect("B")
    synchronizer.hub.join("A", "r1")
    synchronizer.hub.join("B", "r1")
    redis_client.fail_on.add("hset")

    await synchronizer.handle_code_change("A", "r1", "lost")
    await flush("A", "B")

    assert b.events() == [{"event": "code-change", "data": "lost"}]
    assert a.events() == [{"event": "error", "data": "Failed to save code"}]


@pytest.mark.asyncio
async def test_invalid_code_change_is_not_broadcast(synchronizer, connect, flush):
    a, b = connect("A"), connect("B")
    synchronizer.hub.join("A", "r1")
    synchronizer.hub.join("B", "r1")

    assert synchronizer.handle_code_change("A", "r1", "x" * 2000) is None
    await flush("A", "B")

    assert b.events() == []
    assert a.events("error")


@pytest.mark.asyncio
async def test_edits_from_one_connection_persist_in_order(synchronizer, redis_client, connect):
    connect("A")
    writes = []
    original_hset = redis_client.hset

    async def slow_hset(key, mapping=None):
        # Earlier edits take longer so unordered writes would finish last
        await asyncio.sleep(0.01 * (5 - len(writes)))
        writes.append(mapping["code"])
        return await original_hset(key, mapping=mapping)

    redis_client.hset = slow_hset
    for i in range(5):
        synchronizer.handle_code_change("A", "r1", f"v{i}")
    await synchronizer.drain()

    assert writes == ["v0", "v1", "v2", "v3", "v4"]
    assert redis_client.record("r1")["code"] == "v4"


@pytest.mark.asyncio
async def test_relay_signal_reaches_target(synchronizer, connect, flush):
    connect("A")
    b = connect("B")

    assert synchronizer.relay_signal("A", "ice-candidate", "B", {"candidate": "c1"}) is True
    await flush("B")

    assert b.events() == [{"event": "ice-candidate", "data": {"payload": {"candidate": "c1"}, "from": "A"}}]


@pytest.mark.asyncio
async def test_relay_signal_to_departed_peer_is_silent(synchronizer, connect):
    connect("A")
    assert synchronizer.relay_signal("A", "offer", "gone", {}) is False


@pytest.mark.asyncio
async def test_relay_rejects_unknown_signal(synchronizer, connect):
    connect("A")
    with pytest.raises(InvalidRoomRequest):
        synchronizer.relay_signal("A", "code-change", "B", {})


@pytest.mark.asyncio
async def test_whitespace_room_id_is_a_valid_room(synchronizer, redis_client):
    await synchronizer.write_room("   ", "spaced")

    assert await synchronizer.read_room("   ") == "spaced"
    assert redis_client.record("   ")["code"] == "spaced"
