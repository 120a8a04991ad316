"""Build a SchemaCatalog from a live database and suggest semantics for it."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable

from .catalog import DatabaseInfo, SchemaCatalog, Table, TableRole
from .merge import merge_catalogs

if TYPE_CHECKING:
    from ..core.db import DatabaseCapability
    from ..core.storage import LocalStorage

logger = logging.getLogger(__name__)

SENSITIVE_NAME_PATTERNS = (
    "password", "pwd", "secret", "token", "api_key", "apikey",
    "email", "mail",
    "phone", "telefono", "cellulare", "mobile",
    "ssn", "codice_fiscale", "cf", "tax_id",
    "credit_card", "carta", "card", "iban", "bank", "conto",
    "indirizzo", "address", "ip_address", "ip",
    "birth", "nascita", "dob",
    "salary", "stipendio", "income", "reddito",
)

# Checked in order; first matching role wins
ROLE_NAME_PATTERNS: tuple[tuple[TableRole, tuple[str, ...], tuple[str, ...]], ...] = (
    (TableRole.REFERENCE, ("type", "status", "categor", "config", "setting"), ("_types", "_stati")),
    (TableRole.TRANSACTIONAL, ("order", "ordin", "transaction", "log", "event", "audit", "payment", "pagament"), ()),
    (TableRole.MASTER, ("customer", "client", "user", "utent", "product", "prodott", "employee", "dipendent"), ()),
    (TableRole.SENSITIVE, ("credential", "auth", "secret", "private"), ()),
    (TableRole.AGGREGATE, ("summary", "report", "stat", "aggrega"), ("_agg", "_tot")),
)


class SchemaReader:
    """Reads tables, columns, relations and sample rows through a database capability."""

    def __init__(self, database: "DatabaseCapability", database_name: str, sample_data_limit: int = 5):
        self.database = database
        self.database_name = database_name
        self.sample_data_limit = sample_data_limit

    def read_full_schema(self, include_sample_data: bool = True) -> SchemaCatalog:
        logger.info(f"Reading schema for database: {self.database_name}")
        table_names = self.database.get_tables()
        logger.debug(f"Found {len(table_names)} tables")

        tables: list[Table] = []
        sample_data: dict[str, list[dict]] = {}
        for name in table_names:
            try:
                tables.append(self.database.get_table_schema(name))
                if include_sample_data:
                    rows = self.database.get_sample_data(name, self.sample_data_limit)
                    if rows:
                        sample_data[name] = rows
            except Exception as e:
                # One unreadable table should not hide the rest of the schema
                logger.warning(f"Failed to read table {name}: {e}")

        return SchemaCatalog(
            database=DatabaseInfo(name=self.database_name),
            tables=tuple(tables),
            sample_data=sample_data if include_sample_data and sample_data else None,
        )


def detect_sensitive_columns(tables: Iterable[Table]) -> list[str]:
    """Return ``table.column`` names whose column name looks sensitive."""
    found = []
    for table in tables:
        for column in table.columns:
            name = column.name.lower()
            if any(pattern in name for pattern in SENSITIVE_NAME_PATTERNS):
                found.append(f"{table.name}.{column.name}")
    return found


def suggest_table_roles(tables: Iterable[Table]) -> dict[str, TableRole]:
    suggestions = {}
    for table in tables:
        name = table.name.lower()
        role = TableRole.OTHER
        for candidate, fragments, suffixes in ROLE_NAME_PATTERNS:
            if any(f in name for f in fragments) or any(name.endswith(s) for s in suffixes):
                role = candidate
                break
        suggestions[table.name] = role
    return suggestions


def load_merged_catalog(
    reader: SchemaReader,
    storage: "LocalStorage",
    connection_id: str,
    include_sample_data: bool = True,
) -> SchemaCatalog:
    """Read the live schema and overlay the metadata saved for ``connection_id``."""
    live = reader.read_full_schema(include_sample_data=include_sample_data)
    saved = storage.load_schema_metadata(connection_id)
    if saved is None:
        logger.info(f"No saved metadata for {connection_id}; using live schema")
        return live
    logger.info(f"Merging saved metadata for {connection_id}")
    return merge_catalogs(live, saved)
