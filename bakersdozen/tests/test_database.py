# tests/test_database.py
import asyncio
from types import SimpleNamespace

import pytest

from bakersdozen.config.supabase import SupabaseClientNotInitialized
from bakersdozen.services.database import Database, parse_change_payload
from bakersdozen.services.errors import BackendError, OfflineError, UnknownTableError


# -----------------------
# Reads
# -----------------------
@pytest.mark.asyncio
async def test_get_all_online_overwrites_cache(db, fake_client, cache):
    cache.write("ingredients", [{"id": "stale"}])
    fake_client.table("ingredients").rows = [{"id": "a", "name": "Flour"}]

    rows = await db.get_all("ingredients")

    assert rows == [{"id": "a", "name": "Flour"}]
    assert cache.read("ingredients") == rows


@pytest.mark.asyncio
async def test_get_all_failure_falls_back_to_cache(db, fake_client, cache):
    cache.write("ingredients", [{"id": "cached"}])
    fake_client.fail_with = ConnectionError("network down")
    assert await db.get_all("ingredients") == [{"id": "cached"}]


@pytest.mark.asyncio
async def test_get_all_failure_without_cache_returns_empty(db, fake_client):
    fake_client.fail_with = ConnectionError("network down")
    assert await db.get_all("ingredients") == []


@pytest.mark.asyncio
async def test_get_all_offline_skips_network(db, fake_client, cache, monitor):
    cache.write("bakes", [{"id": "b1"}])
    monitor.set_offline()
    assert await db.get_all("bakes") == [{"id": "b1"}]
    assert await db.get_all("recipes") == []
    assert fake_client.calls == []


@pytest.mark.asyncio
async def test_get_all_times_out_to_cache(fake_supabase_client, monitor, cache, fake_client):

    async def hang():
        await asyncio.sleep(10)

    fake_client.table("ingredients").select = lambda *a, **k: SimpleNamespace(execute=hang)
    cache.write("ingredients", [{"id": "cached"}])
    db = Database(fake_supabase_client, monitor=monitor, cache=cache, request_timeout=0.01)
    assert await db.get_all("ingredients") == [{"id": "cached"}]


@pytest.mark.asyncio
async def test_unknown_table_is_rejected(db):
    with pytest.raises(UnknownTableError):
        await db.get_all("croissants")
    with pytest.raises(UnknownTableError):
        await db.get_view("ingredients")


@pytest.mark.asyncio
async def test_get_by_id_not_found_is_none_online_and_offline(db, fake_client, cache, monitor):
    assert await db.get_by_id("recipes", "nonexistent-id") is None
    cache.write("recipes", [{"id": "r1"}])
    monitor.set_offline()
    assert await db.get_by_id("recipes", "nonexistent-id") is None


@pytest.mark.asyncio
async def test_get_by_id_error_scans_cache(db, fake_client, cache):
    cache.write("recipes", [{"id": "r1", "name": "Sourdough"}, {"id": "r2", "name": "Rye"}])
    fake_client.fail_with = ConnectionError("boom")
    assert await db.get_by_id("recipes", "r2") == {"id": "r2", "name": "Rye"}
    assert await db.get_by_id("recipes", "r3") is None


@pytest.mark.asyncio
async def test_query_filters_in_memory(db, fake_client):
    fake_client.table("ingredients").rows = [
        {"id": "a", "current_quantity": 1, "min_quantity": 2},
        {"id": "b", "current_quantity": 9, "min_quantity": 2},
    ]
    low = await db.query("ingredients", lambda r: r["current_quantity"] < r["min_quantity"])
    assert [r["id"] for r in low] == ["a"]


@pytest.mark.asyncio
async def test_get_view_uses_separate_cache_namespace(db, fake_client, cache, monitor):
    fake_client.table("inventory_status").rows = [{"id": "a", "status": "low"}]
    assert await db.get_view("inventory_status") == [{"id": "a", "status": "low"}]
    assert cache.read("view_inventory_status") == [{"id": "a", "status": "low"}]
    assert cache.read("inventory_status") is None

    monitor.set_offline()
    assert await db.get_view("inventory_status") == [{"id": "a", "status": "low"}]
    assert await db.get_view("bake_efficiency") == []


# -----------------------
# Writes
# -----------------------
@pytest.mark.asyncio
async def test_insert_flour_scenario(db, fake_client, cache, flour):
    row = await db.insert("ingredients", flour)

    assert row["id"]
    assert {k: row[k] for k in flour} == flour
    assert row in await db.get_all("ingredients")
    assert any(r["id"] == row["id"] for r in cache.read("ingredients"))

    # network now fails: the write-through snapshot still serves the row
    fake_client.fail_with = ConnectionError("network down")
    rows = await db.get_all("ingredients")
    assert [r["id"] for r in rows] == [row["id"]]


@pytest.mark.asyncio
async def test_insert_then_get_by_id_round_trip(db, flour):
    row = await db.insert("ingredients", flour)
    fetched = await db.get_by_id("ingredients", row["id"])
    assert fetched == row


@pytest.mark.asyncio
async def test_insert_keeps_caller_id_and_appends_to_existing_snapshot(db, cache, flour):
    cache.write("ingredients", [{"id": "old"}])
    row = await db.insert("ingredients", {**flour, "id": "fixed-id"})
    assert row["id"] == "fixed-id"
    assert [r["id"] for r in cache.read("ingredients")] == ["old", "fixed-id"]


@pytest.mark.asyncio
async def test_insert_backend_error_raises(db, fake_client, flour, make_rls_error):
    fake_client.table("ingredients").insert_error = make_rls_error()
    with pytest.raises(BackendError) as excinfo:
        await db.insert("ingredients", flour)
    assert excinfo.value.code == "42501"


@pytest.mark.asyncio
async def test_writes_rejected_offline_without_network(db, fake_client, monitor, flour):
    monitor.set_offline()
    with pytest.raises(OfflineError):
        await db.insert("ingredients", flour)
    with pytest.raises(OfflineError):
        await db.update("ingredients", {"id": "a", "name": "Rye"})
    with pytest.raises(OfflineError):
        await db.delete("ingredients", "a")
    assert fake_client.calls == []


@pytest.mark.asyncio
async def test_writes_without_client_raise(monitor, cache, flour):
    db = Database(SimpleNamespace(client=None), monitor=monitor, cache=cache)
    with pytest.raises(BackendError) as excinfo:
        await db.insert("ingredients", flour)
    assert isinstance(excinfo.value.__cause__, SupabaseClientNotInitialized)
    assert await db.get_all("ingredients") == []


@pytest.mark.asyncio
async def test_update_merges_only_target_row_in_cache(db, fake_client, cache):
    rows = [
        {"id": "a", "name": "Flour", "current_quantity": 10},
        {"id": "b", "name": "Sugar", "current_quantity": 5},
    ]
    fake_client.table("ingredients").rows = [dict(r) for r in rows]
    cache.write("ingredients", rows)

    updated = await db.update("ingredients", {"id": "a", "current_quantity": 7})

    assert updated["current_quantity"] == 7
    cached = {r["id"]: r for r in cache.read("ingredients")}
    assert cached["a"] == {"id": "a", "name": "Flour", "current_quantity": 7}
    assert cached["b"] == rows[1]


@pytest.mark.asyncio
async def test_update_missing_id_returns_none_without_notifying(db):
    seen = []
    await db.subscribe(lambda *args: seen.append(args))
    assert await db.update("ingredients", {"id": "ghost", "name": "x"}) is None
    assert seen == []


@pytest.mark.asyncio
async def test_update_requires_id(db):
    with pytest.raises(ValueError):
        await db.update("ingredients", {"name": "x"})


@pytest.mark.asyncio
async def test_update_backend_error_raises(db, fake_client):
    fake_client.table("ingredients").fail_with = ConnectionError("reset")
    with pytest.raises(BackendError):
        await db.update("ingredients", {"id": "a", "name": "x"})


@pytest.mark.asyncio
async def test_delete_nonexistent_returns_false_without_delete_call(db, fake_client):
    assert await db.delete("ingredients", "ghost") is False
    assert fake_client.ops("delete") == []


@pytest.mark.asyncio
async def test_delete_removes_from_backend_and_cache(db, fake_client, cache):
    fake_client.table("ingredients").rows = [{"id": "a"}, {"id": "b"}]
    cache.write("ingredients", [{"id": "a"}, {"id": "b"}])

    assert await db.delete("ingredients", "a") is True

    assert fake_client.table("ingredients").rows == [{"id": "b"}]
    assert cache.read("ingredients") == [{"id": "b"}]


# -----------------------
# Subscriptions
# -----------------------
@pytest.mark.asyncio
async def test_local_mutations_notify_exactly_once_each(db, flour):
    seen = []
    await db.subscribe(lambda table, action, row: seen.append((table, action, row["id"])))

    row = await db.insert("ingredients", flour)
    await db.update("ingredients", {"id": row["id"], "current_quantity": 3})
    await db.delete("ingredients", row["id"])

    assert seen == [
        ("ingredients", "insert", row["id"]),
        ("ingredients", "update", row["id"]),
        ("ingredients", "delete", row["id"]),
    ]


@pytest.mark.asyncio
async def test_notification_happens_after_cache_update(db, cache, flour):
    snapshots = []
    await db.subscribe(lambda table, action, row: snapshots.append(cache.read(table)))
    row = await db.insert("ingredients", flour)
    assert snapshots == [[row]]


@pytest.mark.asyncio
async def test_subscriptions_get_independent_handles_and_channels(db, fake_client):
    first = await db.subscribe(lambda *a: None)
    second = await db.subscribe(lambda *a: None)

    assert (first.handle, second.handle) == (1, 2)
    assert db.subscriber_count == 2
    # one channel per tracked table per subscription
    assert len(fake_client.live_channels()) == 18
    assert "ingredients-changes-1" in {c.topic for c in fake_client.channels}


@pytest.mark.asyncio
async def test_remote_events_reach_subscriber(db, fake_client, make_change):
    seen = []
    await db.subscribe(lambda table, action, row: seen.append((table, action, row)))

    fake_client.emit("recipes", make_change("INSERT", record={"id": "r1"}, table="recipes"))
    fake_client.emit(
        "recipes",
        make_change("UPDATE", record={"id": "r1", "name": "Rye"}, old_record={"id": "r1"}, table="recipes"),
    )
    fake_client.emit("recipes", make_change("DELETE", old_record={"id": "r1"}, table="recipes"))

    assert seen == [
        ("recipes", "insert", {"id": "r1"}),
        ("recipes", "update", {"id": "r1", "name": "Rye"}),
        ("recipes", "delete", {"id": "r1"}),
    ]


@pytest.mark.asyncio
async def test_unsubscribe_stops_local_and_remote_delivery(db, fake_client, flour, make_change):
    seen = []
    sub = await db.subscribe(lambda *args: seen.append(args))
    handlers = [h for c in fake_client.live_channels() for h in c.handlers]

    await sub.unsubscribe()
    await sub()  # second call is a no-op

    assert fake_client.live_channels() == []
    assert db.subscriber_count == 0
    await db.insert("ingredients", flour)
    # an event already in flight on a removed channel is dropped too
    for _event, _table, cb in handlers:
        cb(make_change("INSERT", record={"id": "late"}))
    assert seen == []


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_block_others(db, flour):
    seen = []

    def broken(*args):
        raise RuntimeError("ui blew up")

    await db.subscribe(broken)
    await db.subscribe(lambda *args: seen.append(args[1]))
    await db.insert("ingredients", flour)
    assert seen == ["insert"]


@pytest.mark.asyncio
async def test_subscribe_without_client_still_gets_local_events(monitor, cache):
    db = Database(SimpleNamespace(client=None), monitor=monitor, cache=cache)
    sub = await db.subscribe(lambda *a: None)
    assert sub.active
    assert db.subscriber_count == 1


@pytest.mark.asyncio
async def test_close_tears_down_everything(db, fake_client):
    await db.subscribe(lambda *a: None)
    await db.subscribe(lambda *a: None)
    await db.close()
    assert db.subscriber_count == 0
    assert fake_client.live_channels() == []


def test_parse_change_payload_shapes():
    assert parse_change_payload({"eventType": "INSERT", "new": {"id": 1}, "old": {}}) == (
        "insert",
        {"id": 1},
    )
    assert parse_change_payload({"eventType": "DELETE", "new": {}, "old": {"id": 1}}) == (
        "delete",
        {"id": 1},
    )
    assert parse_change_payload({"data": {"type": "TRUNCATE"}}) == (None, None)
    assert parse_change_payload("garbage") == (None, None)


def test_clear_cache(db, cache):
    cache.write("ingredients", [{"id": "a"}])
    cache.write("view_inventory_status", [{"id": "a"}])
    db.clear_cache()
    assert cache.read("ingredients") is None
    assert cache.read("view_inventory_status") is None
