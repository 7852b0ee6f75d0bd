# tests/conftest.py
import copy
import uuid
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from postgrest import APIError

from bakersdozen.services.connection_monitor import ConnectionMonitor
from bakersdozen.services.database import Database
from bakersdozen.services.local_cache import LocalCache, MemoryStorage


def no_rows_error():
    return APIError(
        {
            "message": "JSON object requested, multiple (or no) rows returned",
            "code": "PGRST116",
            "details": "The result contains 0 rows",
            "hint": None,
        }
    )


def rls_error():
    return APIError(
        {
            "message": 'new row violates row-level security policy for table "users"',
            "code": "42501",
            "details": None,
            "hint": None,
        }
    )


# --- Fake Supabase client (async SDK shape) ---
class FakeQuery:

    def __init__(self, table, op, payload=None):
        self._table = table
        self._op = op
        self._payload = payload
        self._filters = []
        self._single = False
        self._limit = None

    def select(self, *args, **kwargs):
        return self

    def eq(self, column, value):
        self._filters.append((column, value))
        return self

    def limit(self, n):
        self._limit = n
        return self

    def single(self):
        self._single = True
        return self

    def _matches(self, row):
        return all(row.get(c) == v for c, v in self._filters)

    async def execute(self):
        table = self._table
        table.client.calls.append((table.name, self._op))
        failure = table.fail_with or table.client.fail_with
        if failure is not None:
            raise failure
        if self._op == "insert" and table.insert_error is not None:
            raise table.insert_error

        if self._op == "select":
            rows = [copy.deepcopy(r) for r in table.rows if self._matches(r)]
            if self._limit is not None:
                rows = rows[: self._limit]
            if self._single:
                if len(rows) != 1:
                    raise no_rows_error()
                return SimpleNamespace(data=rows[0])
            return SimpleNamespace(data=rows)

        if self._op == "insert":
            row = copy.deepcopy(self._payload)
            table.rows.append(row)
            return SimpleNamespace(data=[copy.deepcopy(row)])

        if self._op == "upsert":
            row = copy.deepcopy(self._payload)
            table.rows = [r for r in table.rows if r.get("id") != row.get("id")]
            table.rows.append(row)
            return SimpleNamespace(data=[copy.deepcopy(row)])

        if self._op == "update":
            updated = []
            for r in table.rows:
                if self._matches(r):
                    r.update(copy.deepcopy(self._payload))
                    updated.append(copy.deepcopy(r))
            return SimpleNamespace(data=updated)

        if self._op == "delete":
            removed = [copy.deepcopy(r) for r in table.rows if self._matches(r)]
            table.rows = [r for r in table.rows if not self._matches(r)]
            return SimpleNamespace(data=removed)

        raise AssertionError(f"unexpected op {self._op}")


class FakeTable:

    def __init__(self, client, name):
        self.client = client
        self.name = name
        self.rows = []
        self.fail_with = None
        self.insert_error = None

    def select(self, *args, **kwargs):
        return FakeQuery(self, "select")

    def insert(self, payload):
        return FakeQuery(self, "insert", payload)

    def upsert(self, payload, **kwargs):
        return FakeQuery(self, "upsert", payload)

    def update(self, payload):
        return FakeQuery(self, "update", payload)

    def delete(self):
        return FakeQuery(self, "delete")


class FakeChannel:

    def __init__(self, topic):
        self.topic = topic
        self.handlers = []
        self.subscribed = False
        self.removed = False

    def on_postgres_changes(self, event, callback, table="*", schema="public", filter=None):
        self.handlers.append((event, table, callback))
        return self

    async def subscribe(self, callback=None):
        self.subscribed = True
        return self


class FakeAuth:

    def __init__(self, client):
        self.client = client
        self.accounts = {}
        self.current_user = None
        self.session = None
        self.listeners = []
        self.reset_requests = []
        self.updates = []
        self.tokens = {}

    def _fire(self, event, session):
        for cb in list(self.listeners):
            cb(event, session)

    def add_account(self, email, password="secret", user_id=None, metadata=None):
        user = SimpleNamespace(
            id=user_id or str(uuid.uuid4()),
            email=email,
            created_at=datetime(2024, 1, 2, tzinfo=timezone.utc),
            user_metadata=metadata or {},
        )
        self.accounts[email] = (password, user)
        return user

    async def sign_in_with_password(self, credentials):
        entry = self.accounts.get(credentials["email"])
        if entry is None or entry[0] != credentials["password"]:
            raise RuntimeError("Invalid login credentials")
        self.current_user = entry[1]
        token = self.issue_token(credentials["email"])
        self.session = SimpleNamespace(user=entry[1], access_token=token)
        self._fire("SIGNED_IN", self.session)
        return SimpleNamespace(user=entry[1], session=self.session)

    async def sign_up(self, credentials):
        if credentials["email"] in self.accounts:
            raise RuntimeError("User already registered")
        metadata = credentials.get("options", {}).get("data", {})
        user = self.add_account(credentials["email"], credentials["password"], metadata=metadata)
        return SimpleNamespace(user=user, session=None)

    def issue_token(self, email):
        user = self.accounts[email][1]
        token = f"token-{user.id}"
        self.tokens[token] = user
        return token

    async def get_user(self, jwt=None):
        if jwt is not None:
            if jwt not in self.tokens:
                raise RuntimeError("invalid JWT: unable to parse or verify signature")
            return SimpleNamespace(user=self.tokens[jwt])
        if self.current_user is None:
            return None
        return SimpleNamespace(user=self.current_user)

    async def get_session(self):
        return self.session

    async def sign_out(self):
        self.current_user = None
        self.session = None
        self._fire("SIGNED_OUT", None)

    async def reset_password_for_email(self, email, options=None):
        self.reset_requests.append((email, options))

    async def update_user(self, attributes):
        self.updates.append(attributes)
        self._fire("USER_UPDATED", self.session)
        return SimpleNamespace(user=self.current_user)

    def on_auth_state_change(self, callback):
        self.listeners.append(callback)

        def unsubscribe():
            if callback in self.listeners:
                self.listeners.remove(callback)

        return SimpleNamespace(unsubscribe=unsubscribe)


class FakeClient:

    def __init__(self):
        self._tables = {}
        self.calls = []
        self.fail_with = None
        self.channels = []
        self.auth = FakeAuth(self)

    def table(self, name):
        if name not in self._tables:
            self._tables[name] = FakeTable(self, name)
        return self._tables[name]

    def channel(self, topic):
        ch = FakeChannel(topic)
        self.channels.append(ch)
        return ch

    async def remove_channel(self, channel):
        channel.removed = True

    def live_channels(self):
        return [c for c in self.channels if c.subscribed and not c.removed]

    def emit(self, table, payload):
        """Deliver a realtime payload to every live channel watching `table`."""
        for ch in self.live_channels():
            for _event, watched, cb in ch.handlers:
                if watched == table:
                    cb(payload)

    def ops(self, op=None):
        return [c for c in self.calls if op is None or c[1] == op]


def change_payload(event, record=None, old_record=None, table="ingredients"):
    """realtime-py postgres_changes payload shape."""
    return {
        "data": {
            "schema": "public",
            "table": table,
            "type": event,
            "record": record,
            "old_record": old_record,
        },
        "ids": [1],
    }


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def fake_supabase_client(fake_client):
    return SimpleNamespace(client=fake_client)


@pytest.fixture
def monitor(fake_supabase_client):
    return ConnectionMonitor(fake_supabase_client, interval=0.01, timeout=1.0)


@pytest.fixture
def cache():
    return LocalCache(MemoryStorage(), prefix="bakersDozen_", version="1.0.0")


@pytest.fixture
def db(fake_supabase_client, monitor, cache):
    return Database(fake_supabase_client, monitor=monitor, cache=cache, request_timeout=1.0)


@pytest.fixture
def flour():
    return {"name": "Flour", "current_quantity": 10, "min_quantity": 2, "unit": "kg"}


@pytest.fixture
def make_change():
    return change_payload


@pytest.fixture
def make_rls_error():
    return rls_error
