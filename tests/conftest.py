"""Shared fixtures: settings, a fake supabase client and instant sleeps."""

from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

from tripgen.config import Settings


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="development",
        supabase_url="",
        supabase_service_role_key="",
        supabase_anon_key="",
        job_store_backend="memory",
        openai_api_key="test-key",
        openai_base_url="https://llm.test/v1",
        store_health_check_interval_s=0,
    )


class RecordingSleep:
    """Async sleep replacement that records delays and returns immediately."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


class FakeQuery:
    def __init__(self, table: "FakeTable", action: str, payload: Any = None, **options):
        self._table = table
        self._action = action
        self._payload = payload
        self._options = options
        self._filters: List = []
        self._limit: Optional[int] = None
        self._order: Optional[tuple] = None

    def eq(self, column, value):
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column, values):
        self._filters.append(lambda row: row.get(column) in values)
        return self

    def order(self, column, desc=False):
        self._order = (column, desc)
        return self

    def limit(self, count):
        self._limit = count
        return self

    def _matching(self) -> List[Dict[str, Any]]:
        return [row for row in self._table.rows.values() if all(f(row) for f in self._filters)]

    def execute(self):
        client = self._table.client
        client.calls.append((self._table.name, self._action))
        if client.errors:
            error = client.errors.pop(0)
            if error is not None:
                raise error
        if self._action == "upsert":
            row = dict(self._payload)
            if row["id"] in self._table.rows and self._options.get("ignore_duplicates"):
                return SimpleNamespace(data=[])
            self._table.rows[row["id"]] = row
            return SimpleNamespace(data=[row])
        if self._action == "update":
            updated = []
            for row in self._matching():
                row.update(self._payload)
                updated.append(dict(row))
            return SimpleNamespace(data=updated)
        rows = self._matching()
        if self._order:
            column, desc = self._order
            rows.sort(key=lambda r: r.get(column) or "", reverse=desc)
        if self._limit is not None:
            rows = rows[: self._limit]
        return SimpleNamespace(data=[dict(r) for r in rows])


class FakeTable:
    def __init__(self, client: "FakeSupabaseClient", name: str):
        self.client = client
        self.name = name
        self.rows: Dict[Any, Dict[str, Any]] = client.tables.setdefault(name, {})

    def upsert(self, row, on_conflict=None, ignore_duplicates=False):
        return FakeQuery(self, "upsert", row, on_conflict=on_conflict, ignore_duplicates=ignore_duplicates)

    def update(self, payload):
        return FakeQuery(self, "update", payload)

    def select(self, columns="*"):
        return FakeQuery(self, "select", columns)


class FakeSupabaseClient:
    """Just enough of the supabase-py query builder for the job store.

    ``errors`` is consumed one entry per executed query; ``None`` entries let
    that query succeed.
    """

    def __init__(self):
        self.tables: Dict[str, Dict[Any, Dict[str, Any]]] = {}
        self.errors: List[Optional[BaseException]] = []
        self.calls: List[tuple] = []

    def table(self, name: str) -> FakeTable:
        return FakeTable(self, name)

    def rows(self, name: str = "jobs") -> Dict[Any, Dict[str, Any]]:
        return self.tables.get(name, {})


@pytest.fixture
def fake_supabase() -> FakeSupabaseClient:
    return FakeSupabaseClient()
