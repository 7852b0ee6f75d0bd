# bakersdozen/services/database.py
"""
Cache-backed data-access layer over Supabase tables and views.

Routing:
  - online: forward to Supabase, write the result through to the local
    cache, notify subscribers;
  - offline: serve reads from the cache, reject writes with OfflineError
    before any network call.

Failure policy is asymmetric on purpose: reads never raise (they fall back
to the last cached snapshot, or []), writes raise OfflineError/BackendError
so a caller never believes a mutation landed when it did not.

Subscribers receive `callback(table, action, row)` for every local mutation
(exactly once, after the cache update) and for every realtime change event
on the tracked tables while their subscription is live. Notifications are
hints to re-read state, not authoritative deltas: remote events carry no
ordering guarantee relative to concurrent local calls.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from bakersdozen.config.settings import settings
from bakersdozen.config.supabase import SupabaseClientNotInitialized, supabase_client
from bakersdozen.models import TABLES, VIEWS
from bakersdozen.services.connection_monitor import ConnectionMonitor
from bakersdozen.services.errors import BackendError, OfflineError, UnknownTableError
from bakersdozen.services.local_cache import LocalCache

logger = logging.getLogger(__name__)

Row = Dict[str, Any]
Action = str  # "insert" | "update" | "delete"
SubscriptionCallback = Callable[[str, Action, Row], None]

# PostgREST: a .single() query matched zero rows
NO_ROWS_CODE = "PGRST116"

_REMOTE_ACTIONS = {"INSERT": "insert", "UPDATE": "update", "DELETE": "delete"}


# -----------------------
# Utility helpers
# -----------------------
def _response_data(resp: Any) -> Any:
    """Pull `data` out of an SDK response object or a dict-shaped response."""
    if resp is None:
        return None
    if hasattr(resp, "data"):
        return getattr(resp, "data")
    if isinstance(resp, dict):
        return resp.get("data")
    return None


def _first_row(data: Any) -> Optional[Row]:
    if isinstance(data, list):
        return data[0] if data else None
    if isinstance(data, dict):
        return data
    return None


def _error_code(exc: BaseException) -> Optional[str]:
    code = getattr(exc, "code", None)
    return str(code) if code is not None else None


def _pick(d: Dict[str, Any], *keys: str) -> Any:
    for k in keys:
        if d.get(k) is not None:
            return d[k]
    return None


def parse_change_payload(payload: Any) -> Tuple[Optional[Action], Optional[Row]]:
    """
    Map a realtime postgres_changes payload to (action, row).

    Accepts the realtime-py shape ({"data": {"type", "record", "old_record"}})
    and the JS-client shape ({"eventType", "new", "old"}). Returns
    (None, None) for anything unrecognised.
    """
    if not isinstance(payload, dict):
        return None, None
    data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
    event = str(_pick(data, "eventType", "type") or "").upper()
    action = _REMOTE_ACTIONS.get(event)
    if action is None:
        return None, None
    if action == "delete":
        return action, _pick(data, "old", "old_record")
    return action, _pick(data, "new", "record")


async def _maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


class Subscription:
    """
    Handle returned by `Database.subscribe`.

    `await sub.unsubscribe()` (or `await sub()`) removes the callback and
    tears down the realtime channels opened for it. Safe to call twice.
    """

    def __init__(self, handle: int, teardown: Callable[[], Awaitable[None]]) -> None:
        self.handle = handle
        self._teardown = teardown
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    async def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        await self._teardown()

    async def __call__(self) -> None:
        await self.unsubscribe()

    def __repr__(self):
        return f"<Subscription(handle={self.handle}, active={self._active})>"


class Database:

    def __init__(
        self,
        supabase: Any = None,
        monitor: Optional[ConnectionMonitor] = None,
        cache: Optional[LocalCache] = None,
        request_timeout: Optional[float] = None,
    ) -> None:
        # supabase is expected to be a thin wrapper exposing `.client`
        self._supabase = supabase if supabase is not None else supabase_client
        self.monitor = monitor if monitor is not None else ConnectionMonitor(self._supabase)
        self.cache = cache if cache is not None else LocalCache.from_settings(settings)
        self.request_timeout = (
            request_timeout if request_timeout is not None else settings.request_timeout
        )
        self._subscriptions: Dict[int, SubscriptionCallback] = {}
        self._live: Dict[int, Subscription] = {}
        self._next_subscription_id = 1

    # -----------------------
    # Internal helpers
    # -----------------------
    @property
    def client(self) -> Any:
        return getattr(self._supabase, "client", None)

    def _require_client(self) -> Any:
        client = self.client
        if client is None:
            raise SupabaseClientNotInitialized("Supabase client not available")
        return client

    async def _execute(self, build: Callable[[Any], Any]) -> Any:
        """
        Build a query against the client and execute it, bounded by
        `request_timeout`. Returns the response `data`.
        """
        query = build(self._require_client())
        resp = await asyncio.wait_for(query.execute(), timeout=self.request_timeout)
        return _response_data(resp)

    @staticmethod
    def check_table(table: str) -> None:
        if table not in TABLES:
            raise UnknownTableError(table, "table")

    @staticmethod
    def check_view(view: str) -> None:
        if view not in VIEWS:
            raise UnknownTableError(view, "view")

    def _find_cached(self, table: str, record_id: str) -> Optional[Row]:
        items = self.cache.read(table)
        if items is None:
            return None
        for item in items:
            if isinstance(item, dict) and item.get("id") == record_id:
                return item
        return None

    async def _read_snapshot(self, source: str, cache_name: str) -> List[Row]:
        if not self.monitor.is_online:
            logger.info("Offline mode: returning cached data for %s", source)
            return self.cache.read(cache_name) or []

        try:
            data = await self._execute(lambda c: c.table(source).select("*"))
        except Exception as exc:
            logger.error("Error fetching all records from %s: %s", source, exc)
            cached = self.cache.read(cache_name)
            if cached is not None:
                logger.info("Returning %d cached records for %s", len(cached), source)
                return cached
            logger.info("No cached data available for %s, returning empty list", source)
            return []

        rows = data if isinstance(data, list) else []
        logger.debug("Fetched %d records from %s", len(rows), source)
        self.cache.write(cache_name, rows)
        return rows

    # -----------------------
    # Reads (never raise)
    # -----------------------
    async def get_all(self, table: str) -> List[Row]:
        self.check_table(table)
        return await self._read_snapshot(table, table)

    async def get_by_id(self, table: str, record_id: str) -> Optional[Row]:
        self.check_table(table)
        if not self.monitor.is_online:
            logger.info("Offline mode: looking for cached record %s in %s", record_id, table)
            return self._find_cached(table, record_id)

        try:
            data = await self._execute(
                lambda c: c.table(table).select("*").eq("id", record_id).single()
            )
        except Exception as exc:
            if _error_code(exc) == NO_ROWS_CODE:
                logger.debug("No record found with ID %s in %s", record_id, table)
                return None
            logger.error("Error fetching record %s from %s: %s", record_id, table, exc)
            return self._find_cached(table, record_id)
        return _first_row(data)

    async def query(self, table: str, predicate: Callable[[Row], bool]) -> List[Row]:
        """All rows of `table` matching `predicate`, filtered in memory."""
        rows = await self.get_all(table)
        try:
            return [row for row in rows if predicate(row)]
        except Exception as exc:
            logger.error("Error querying records from %s: %s", table, exc)
            return []

    async def get_view(self, view: str) -> List[Row]:
        self.check_view(view)
        return await self._read_snapshot(view, f"view_{view}")

    # -----------------------
    # Writes (raise on failure)
    # -----------------------
    async def insert(self, table: str, record: Row) -> Row:
        self.check_table(table)
        if not self.monitor.is_online:
            raise OfflineError("insert", table)

        new_record = {**record, "id": record.get("id") or str(uuid.uuid4())}
        try:
            data = await self._execute(lambda c: c.table(table).insert(new_record))
        except Exception as exc:
            logger.error("Error inserting record into %s: %s", table, exc)
            raise BackendError("insert", table, _error_code(exc)) from exc

        row = _first_row(data)
        if row is None:
            logger.error("Insert into %s returned no row", table)
            raise BackendError("insert", table, "no_data_returned")
        logger.info("Inserted record into %s with ID %s", table, row.get("id"))

        items = self.cache.read(table) or []
        items.append(row)
        self.cache.write(table, items)

        self._notify(table, "insert", row)
        return row

    async def update(self, table: str, record: Row) -> Optional[Row]:
        """
        Partial update keyed by `record["id"]`.
        Returns the canonical row, or None when the id does not exist remotely.
        """
        self.check_table(table)
        record_id = record.get("id")
        if not record_id:
            raise ValueError("update requires an 'id' field")
        if not self.monitor.is_online:
            raise OfflineError("update", table)

        try:
            data = await self._execute(
                lambda c: c.table(table).update(record).eq("id", record_id)
            )
        except Exception as exc:
            logger.error("Error updating record %s in %s: %s", record_id, table, exc)
            raise BackendError("update", table, _error_code(exc)) from exc

        row = _first_row(data)
        if row is None:
            logger.info("No record found with ID %s in %s, nothing updated", record_id, table)
            return None
        logger.info("Updated record in %s with ID %s", table, record_id)

        items = self.cache.read(table)
        if items is not None:
            for index, item in enumerate(items):
                if isinstance(item, dict) and item.get("id") == record_id:
                    items[index] = {**item, **row}
                    self.cache.write(table, items)
                    break

        self._notify(table, "update", row)
        return row

    async def delete(self, table: str, record_id: str) -> bool:
        self.check_table(table)
        if not self.monitor.is_online:
            raise OfflineError("delete", table)

        # the prior row is the notification payload
        existing = await self.get_by_id(table, record_id)
        if existing is None:
            logger.info("No record found with ID %s in %s, nothing to delete", record_id, table)
            return False

        try:
            await self._execute(lambda c: c.table(table).delete().eq("id", record_id))
        except Exception as exc:
            logger.error("Error deleting record %s from %s: %s", record_id, table, exc)
            raise BackendError("delete", table, _error_code(exc)) from exc
        logger.info("Deleted record from %s with ID %s", table, record_id)

        items = self.cache.read(table)
        if items is not None:
            self.cache.write(
                table,
                [i for i in items if not (isinstance(i, dict) and i.get("id") == record_id)],
            )

        self._notify(table, "delete", existing)
        return True

    # -----------------------
    # Subscriptions
    # -----------------------
    def _invoke(self, callback: SubscriptionCallback, table: str, action: Action, row: Any) -> None:
        try:
            callback(table, action, row)
        except Exception:
            logger.exception("Subscriber callback failed for %s on %s", action, table)

    def _notify(self, table: str, action: Action, row: Row) -> None:
        logger.debug(
            "Notifying %d subscribers of %s on %s", len(self._subscriptions), action, table
        )
        for callback in list(self._subscriptions.values()):
            self._invoke(callback, table, action, row)

    def _remote_handler(self, handle: int, table: str) -> Callable[[Any], None]:
        def handler(payload: Any) -> None:
            action, row = parse_change_payload(payload)
            if action is None:
                logger.debug("Ignoring realtime payload for %s: %r", table, payload)
                return
            callback = self._subscriptions.get(handle)
            if callback is None:
                # event raced with unsubscribe
                return
            self._invoke(callback, table, action, row)

        return handler

    async def _open_channels(self, handle: int) -> List[Any]:
        client = self.client
        if client is None:
            logger.warning("Realtime unavailable: no Supabase client; local notifications only")
            return []

        channels: List[Any] = []
        for table in TABLES:
            channel = None
            try:
                channel = client.channel(f"{table}-changes-{handle}")
                channel.on_postgres_changes(
                    "*",
                    callback=self._remote_handler(handle, table),
                    schema="public",
                    table=table,
                )
                await _maybe_await(channel.subscribe())
                channels.append(channel)
            except Exception as exc:
                logger.error("Realtime subscription for %s failed: %s", table, exc)
                if channel is not None:
                    await self._remove_channel(client, channel)
        return channels

    async def _remove_channel(self, client: Any, channel: Any) -> None:
        try:
            await _maybe_await(client.remove_channel(channel))
        except Exception:
            logger.exception("Failed to remove realtime channel")

    async def subscribe(self, callback: SubscriptionCallback) -> Subscription:
        handle = self._next_subscription_id
        self._next_subscription_id += 1
        self._subscriptions[handle] = callback

        channels = await self._open_channels(handle)
        logger.info(
            "Subscription %d registered (%d realtime channels)", handle, len(channels)
        )

        async def teardown() -> None:
            self._subscriptions.pop(handle, None)
            self._live.pop(handle, None)
            client = self.client
            if client is not None:
                for channel in channels:
                    await self._remove_channel(client, channel)
            logger.info("Subscription %d removed", handle)

        subscription = Subscription(handle, teardown)
        self._live[handle] = subscription
        return subscription

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def close(self) -> None:
        """Unsubscribe every live subscription."""
        for subscription in list(self._live.values()):
            await subscription.unsubscribe()

    # -----------------------
    # Cache maintenance
    # -----------------------
    def clear_table_cache(self, name: str) -> None:
        logger.info("Clearing cache for %s", name)
        self.cache.remove(name)
        self.cache.remove(f"view_{name}")

    def clear_cache(self) -> None:
        for name in TABLES + VIEWS:
            self.clear_table_cache(name)
