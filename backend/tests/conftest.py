"""Shared fixtures: a small customers/orders catalog and in-process fakes."""

from __future__ import annotations

import os
import sys
from typing import Any

import pytest

# Add backend to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from chatdb.llm.base import LLMAdapter, LLMConfig, LLMProvider, LLMResponse
from chatdb.schema.catalog import Column, DatabaseInfo, Relation, SchemaCatalog, Table, TableRole


CUSTOMER_ROWS = [
    {"id": 1, "name": "Mario Rossi", "email": "mario.rossi@example.com"},
    {"id": 2, "name": "Anna Bianchi", "email": "anna@example.org"},
]


def make_catalog() -> SchemaCatalog:
    customers = Table(
        name="customers",
        description="Registered customers",
        role=TableRole.MASTER,
        columns=(
            Column(name="id", data_type="INT", is_nullable=False, is_primary_key=True),
            Column(name="name", data_type="VARCHAR(100)"),
            Column(name="email", data_type="VARCHAR(255)", is_sensitive=True, masking_pattern="email"),
        ),
        row_count=2,
    )
    orders = Table(
        name="orders",
        role=TableRole.TRANSACTIONAL,
        columns=(
            Column(name="id", data_type="INT", is_nullable=False, is_primary_key=True),
            Column(name="customer_id", data_type="INT", is_foreign_key=True, foreign_key_ref="customers.id"),
            Column(name="total", data_type="DECIMAL(10,2)"),
        ),
        relations=(Relation(kind="many_to_one", source_column="customer_id", target_table="customers", target_column="id"),),
    )
    return SchemaCatalog(
        database=DatabaseInfo(name="shop"),
        tables=(customers, orders),
        sample_data={"customers": CUSTOMER_ROWS},
    )


class FakeDatabase:
    """Records every call; returns canned rows."""

    def __init__(self, rows: list[dict[str, Any]] | None = None, error: Exception | None = None):
        self.rows = rows if rows is not None else [dict(r) for r in CUSTOMER_ROWS]
        self.error = error
        self.executed: list[str] = []
        self.catalog = make_catalog()

    def connect(self, config) -> bool:
        return True

    def execute_query(self, sql: str) -> list[dict[str, Any]]:
        self.executed.append(sql)
        if self.error is not None:
            raise self.error
        return [dict(r) for r in self.rows]

    def get_tables(self) -> list[str]:
        return self.catalog.table_names()

    def get_table_schema(self, table_name: str) -> Table:
        return self.catalog.table(table_name)

    def get_sample_data(self, table_name: str, limit: int = 5) -> list[dict[str, Any]]:
        if table_name == "customers":
            return [dict(r) for r in CUSTOMER_ROWS][:limit]
        return []


class FakeAdapter(LLMAdapter):
    """Adapter that answers from a queue of canned completions."""

    provider = LLMProvider.OLLAMA

    def __init__(self, replies: list[str] | None = None, error: Exception | None = None, chunks=None):
        super().__init__()
        self.replies = list(replies or [])
        self.error = error
        self.chunks = list(chunks or [])
        self.requests = []
        self.disposed = False

    def _headers(self, config):
        return {}

    def _payload(self, request, config, stream):
        return {}

    def _parse_response(self, data):
        return LLMResponse(content="")

    def _iter_deltas(self, lines):
        return iter(())

    def complete(self, request):
        self._ensure_initialized()
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return LLMResponse(content=self.replies.pop(0) if self.replies else "")

    def stream_complete(self, request):
        self._ensure_initialized()
        self.requests.append(request)
        return iter(self.chunks)

    def dispose(self):
        self.disposed = True
        super().dispose()


@pytest.fixture
def catalog() -> SchemaCatalog:
    return make_catalog()


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def llm_config() -> LLMConfig:
    return LLMConfig(provider=LLMProvider.OLLAMA, model="llama3")
