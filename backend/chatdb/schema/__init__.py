"""Database schema catalog module.

Contains the catalog model, live/saved metadata merge and the schema reader.
"""

from .catalog import (
    Column,
    DatabaseInfo,
    MaskingKind,
    Relation,
    SchemaCatalog,
    Table,
    TableRole,
)
from .merge import merge_catalogs, merge_column, merge_table
from .reader import (
    SchemaReader,
    detect_sensitive_columns,
    load_merged_catalog,
    suggest_table_roles,
)

__all__ = [
    # Catalog
    "Column",
    "DatabaseInfo",
    "MaskingKind",
    "Relation",
    "SchemaCatalog",
    "Table",
    "TableRole",
    # Merge
    "merge_catalogs",
    "merge_column",
    "merge_table",
    # Reader
    "SchemaReader",
    "detect_sensitive_columns",
    "load_merged_catalog",
    "suggest_table_roles",
]
