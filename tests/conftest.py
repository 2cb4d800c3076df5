"""Shared fixtures: temp data directories and an in-memory stand-in for Supabase."""

import os
import sys
import tempfile
from types import SimpleNamespace

import pytest
from supabase import AuthError as SupabaseAuthError

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from backends import BackendSelector  # noqa: E402
from entities import new_id, now_iso  # noqa: E402
from local_store import LocalStore  # noqa: E402
from remote_store import RemoteStoreError  # noqa: E402


class FakeRemoteStore:
    """Owner-scoped in-memory tables with the RemoteStore interface."""

    def __init__(self):
        self.tables = {}
        self.fail = False
        self.calls = []
        self.access_token = None

    def set_access_token(self, token):
        self.access_token = token

    def _check(self, name, table):
        self.calls.append((name, table))
        if self.fail:
            raise RemoteStoreError(f"{name} {table}: network down")

    def _table(self, table):
        return self.tables.setdefault(table, [])

    async def list(self, table, owner_id, order="created_at", desc=True):
        self._check("list", table)
        rows = [dict(r) for r in self._table(table) if r["user_id"] == owner_id]
        return list(reversed(rows))

    async def select(self, table, owner_id, match):
        self._check("select", table)
        return [dict(r) for r in self._table(table)
                if r["user_id"] == owner_id and all(r.get(k) == v for k, v in match.items())]

    async def insert(self, table, owner_id, rows):
        self._check("insert", table)
        if isinstance(rows, dict):
            rows = [rows]
        stored = []
        for row in rows:
            now = now_iso()
            record = {"id": new_id(), "created_at": now, **row, "user_id": owner_id}
            if table == "notes":
                record.setdefault("updated_at", now)
            self._table(table).append(record)
            stored.append(dict(record))
        return stored

    async def upsert(self, table, owner_id, row, on_conflict):
        self._check("upsert", table)
        keys = [k for k in on_conflict.split(",") if k != "user_id"]
        existing = [r for r in self._table(table)
                    if r["user_id"] == owner_id and all(r.get(k) == row.get(k) for k in keys)]
        if existing:
            existing[0].update(row)
            return [dict(existing[0])]
        record = {**row, "user_id": owner_id}
        self._table(table).append(record)
        return [dict(record)]

    async def update(self, table, owner_id, row_id, values):
        self._check("update", table)
        updated = []
        for r in self._table(table):
            if r["user_id"] == owner_id and r["id"] == row_id:
                r.update(values)
                updated.append(dict(r))
        return updated

    async def delete(self, table, owner_id, match):
        self._check("delete", table)
        self.tables[table] = [
            r for r in self._table(table)
            if not (r["user_id"] == owner_id and all(r.get(k) == v for k, v in match.items()))
        ]

    async def count(self, table, owner_id):
        self._check("count", table)
        return len([r for r in self._table(table) if r["user_id"] == owner_id])

    def rows(self, table, owner_id=None):
        return [r for r in self._table(table) if owner_id is None or r["user_id"] == owner_id]

    async def close(self):
        pass


class FakeQuery:
    """Records one supabase-py query builder chain and runs it on in-memory tables."""

    def __init__(self, client, table):
        self.client = client
        self.table = table
        self.op = "select"
        self.payload = None
        self.filters = {}
        self.order_by = None
        self.count = None
        self.head = False
        self.on_conflict = None

    def select(self, *columns, count=None, head=None):
        self.op, self.count, self.head = "select", count, bool(head)
        return self

    def insert(self, payload):
        self.op, self.payload = "insert", payload
        return self

    def upsert(self, payload, on_conflict=""):
        self.op, self.payload, self.on_conflict = "upsert", payload, on_conflict
        return self

    def update(self, values):
        self.op, self.payload = "update", values
        return self

    def delete(self):
        self.op = "delete"
        return self

    def eq(self, column, value):
        self.filters[column] = value
        return self

    def match(self, query):
        self.filters.update(query)
        return self

    def order(self, column, desc=False):
        self.order_by = (column, desc)
        return self

    def _matching(self, rows):
        return [r for r in rows if all(r.get(k) == v for k, v in self.filters.items())]

    async def execute(self):
        self.client.queries.append(self)
        if self.client.error is not None:
            raise self.client.error
        rows = self.client.tables.setdefault(self.table, [])

        if self.op == "select":
            found = [dict(r) for r in self._matching(rows)]
            if self.order_by and self.order_by[1]:
                found.reverse()
            return SimpleNamespace(data=[] if self.head else found,
                                   count=len(found) if self.count else None)
        if self.op == "insert":
            payload = self.payload if isinstance(self.payload, list) else [self.payload]
            stored = []
            for row in payload:
                now = now_iso()
                record = {"id": new_id(), "created_at": now, **row}
                if self.table == "notes":
                    record.setdefault("updated_at", now)
                rows.append(record)
                stored.append(dict(record))
            return SimpleNamespace(data=stored, count=None)
        if self.op == "upsert":
            keys = self.on_conflict.split(",")
            for r in rows:
                if all(r.get(k) == self.payload.get(k) for k in keys):
                    r.update(self.payload)
                    return SimpleNamespace(data=[dict(r)], count=None)
            rows.append(dict(self.payload))
            return SimpleNamespace(data=[dict(self.payload)], count=None)
        if self.op == "update":
            updated = []
            for r in self._matching(rows):
                r.update(self.payload)
                updated.append(dict(r))
            return SimpleNamespace(data=updated, count=None)
        removed = self._matching(rows)
        self.client.tables[self.table] = [r for r in rows if r not in removed]
        return SimpleNamespace(data=[dict(r) for r in removed], count=None)


class RejectedRequest(SupabaseAuthError):
    """An auth error as supabase-py raises it for a 4xx response."""

    def __init__(self, message):
        Exception.__init__(self, message)
        self.message = message


def library_session(email="reader@example.com", token="jwt-1", user_id="user-1"):
    """A supabase-py Session look-alike."""
    return SimpleNamespace(access_token=token, refresh_token="refresh-1", expires_in=3600,
                           user=SimpleNamespace(id=user_id, email=email))


class FakeSupabaseAuth:
    """The auth half of the supabase client: emits SIGNED_IN / SIGNED_OUT like supabase-py."""

    def __init__(self):
        self.callbacks = {}
        self.requests = []
        self.error = None
        self.confirm_email = False

    def on_auth_state_change(self, callback):
        key = object()
        self.callbacks[key] = callback
        return SimpleNamespace(unsubscribe=lambda: self.callbacks.pop(key, None))

    def _notify(self, event, session):
        for callback in list(self.callbacks.values()):
            callback(event, session)

    def _check(self, name, payload):
        self.requests.append((name, payload))
        if self.error is not None:
            error, self.error = self.error, None
            raise error

    async def sign_in_with_password(self, credentials):
        self._check("sign_in_with_password", credentials)
        session = library_session(credentials["email"])
        self._notify("SIGNED_IN", session)
        return SimpleNamespace(user=session.user, session=session)

    async def sign_up(self, credentials):
        self._check("sign_up", credentials)
        if self.confirm_email:
            user = SimpleNamespace(id="user-9", email=credentials["email"])
            return SimpleNamespace(user=user, session=None)
        session = library_session(credentials["email"])
        self._notify("SIGNED_IN", session)
        return SimpleNamespace(user=session.user, session=session)

    async def sign_out(self):
        self._check("sign_out", None)
        self._notify("SIGNED_OUT", None)


class FakePostgrest:
    def __init__(self):
        self.token = None
        self.closed = False

    def auth(self, token):
        self.token = token

    async def aclose(self):
        self.closed = True


class FakeSupabaseClient:
    """Stand-in for supabase.AsyncClient: query builder over dict tables plus auth."""

    def __init__(self):
        self.tables = {}
        self.queries = []
        self.error = None
        self.auth = FakeSupabaseAuth()
        self.postgrest = FakePostgrest()

    def table(self, name):
        return FakeQuery(self, name)

    def rows(self, table, owner_id=None):
        return [r for r in self.tables.get(table, [])
                if owner_id is None or r.get("user_id") == owner_id]


@pytest.fixture
def temp_data_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def local(temp_data_dir):
    return LocalStore(temp_data_dir)


@pytest.fixture
def remote():
    return FakeRemoteStore()


@pytest.fixture
def session():
    """Mutable stand-in for the auth session: set session['user_id'] to sign in."""
    return {"user_id": None}


@pytest.fixture
def backends(local, remote, session):
    return BackendSelector(local, remote, owner_id=lambda: session["user_id"])


@pytest.fixture
def supabase_client():
    return FakeSupabaseClient()
