"""Reconcile a live structural read with user-edited schema metadata.

Structure comes from the live read: which tables and columns exist, types,
keys, relations and row counts. Semantics come from the saved copy when names
match: descriptions, sensitivity flags, masking patterns and table roles.
Both inputs are left untouched; the result is a new catalog.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Optional

from .catalog import Column, SchemaCatalog, Table


def merge_column(live: Column, saved: Optional[Column]) -> Column:
    if saved is None:
        return live
    return replace(
        live,
        description=saved.description if saved.description is not None else live.description,
        is_sensitive=saved.is_sensitive,
        masking_pattern=saved.masking_pattern,
    )


def merge_table(live: Table, saved: Optional[Table]) -> Table:
    if saved is None:
        return live
    saved_columns = {c.name: c for c in saved.columns}
    return replace(
        live,
        description=saved.description if saved.description is not None else live.description,
        role=saved.role,
        columns=tuple(merge_column(c, saved_columns.get(c.name)) for c in live.columns),
    )


def merge_catalogs(live: SchemaCatalog, saved: Optional[SchemaCatalog]) -> SchemaCatalog:
    """Return a new catalog: live structure overlaid with saved semantics.

    Tables or columns present only in ``saved`` are dropped; ones present
    only in ``live`` are kept as read.
    """
    if saved is None:
        return live

    saved_tables = {t.name: t for t in saved.tables}
    database = live.database
    if saved.database.description and not database.description:
        database = replace(database, description=saved.database.description)

    return replace(
        live,
        database=database,
        tables=tuple(merge_table(t, saved_tables.get(t.name)) for t in live.tables),
        created_at=saved.created_at,
        updated_at=datetime.now(),
    )
