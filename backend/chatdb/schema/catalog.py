"""In-memory schema catalog: tables, columns, relations and user semantics.

The catalog is an immutable snapshot. Edits and refreshes produce new objects
(``dataclasses.replace``); nothing mutates a catalog an in-flight turn reads.
Serialised form uses camelCase keys and also accepts snake_case on load.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional


class TableRole(str, Enum):
    SENSITIVE = "sensitive"
    REFERENCE = "reference"
    AGGREGATE = "aggregate"
    TRANSACTIONAL = "transactional"
    MASTER = "master"
    OTHER = "other"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @property
    def description(self) -> str:
        return _ROLE_DESCRIPTIONS[self]


_ROLE_DESCRIPTIONS = {
    TableRole.SENSITIVE: "Holds personal, financial or otherwise sensitive data",
    TableRole.REFERENCE: "Lookup, configuration or reference table",
    TableRole.AGGREGATE: "Aggregated or reporting data",
    TableRole.TRANSACTIONAL: "Records transactions, operations or events",
    TableRole.MASTER: "Main entity of the domain",
    TableRole.OTHER: "Other table",
}


class MaskingKind(str, Enum):
    """Built-in masking pattern names."""
    EMAIL = "email"
    PHONE = "phone"
    CREDIT_CARD = "credit_card"
    SSN = "ssn"
    FULL = "full"
    PARTIAL = "partial"


def _pick(data: Mapping[str, Any], camel: str, snake: str, default: Any = None) -> Any:
    if camel in data:
        return data[camel]
    return data.get(snake, default)


@dataclass(frozen=True)
class Column:
    name: str
    data_type: str = "VARCHAR"
    is_nullable: bool = True
    is_primary_key: bool = False
    is_foreign_key: bool = False
    foreign_key_ref: Optional[str] = None
    default_value: Optional[str] = None
    description: Optional[str] = None
    is_sensitive: bool = False
    # Any pattern name known to the masker; unknown names degrade at mask time
    masking_pattern: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "dataType": self.data_type,
            "isNullable": self.is_nullable,
            "isPrimaryKey": self.is_primary_key,
            "isForeignKey": self.is_foreign_key,
            "isSensitive": self.is_sensitive,
        }
        if self.foreign_key_ref is not None:
            data["foreignKeyReference"] = self.foreign_key_ref
        if self.default_value is not None:
            data["defaultValue"] = self.default_value
        if self.description is not None:
            data["description"] = self.description
        if self.masking_pattern is not None:
            data["maskingPattern"] = self.masking_pattern
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Column":
        pattern = _pick(data, "maskingPattern", "masking_pattern")
        return cls(
            name=data["name"],
            data_type=_pick(data, "dataType", "data_type", "VARCHAR"),
            is_nullable=bool(_pick(data, "isNullable", "is_nullable", True)),
            is_primary_key=bool(_pick(data, "isPrimaryKey", "is_primary_key", False)),
            is_foreign_key=bool(_pick(data, "isForeignKey", "is_foreign_key", False)),
            foreign_key_ref=_pick(data, "foreignKeyReference", "foreign_key_reference"),
            default_value=_pick(data, "defaultValue", "default_value"),
            description=data.get("description"),
            is_sensitive=bool(_pick(data, "isSensitive", "is_sensitive", False)),
            masking_pattern=str(pattern) if pattern else None,
        )


@dataclass(frozen=True)
class Relation:
    """Directional many-to-one link from ``source_column`` to ``target_table``."""
    kind: str
    source_column: str
    target_table: str
    target_column: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.kind,
            "foreignKey": self.source_column,
            "targetTable": self.target_table,
        }
        if self.target_column is not None:
            data["targetColumn"] = self.target_column
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Relation":
        return cls(
            kind=_pick(data, "type", "kind", "MANY_TO_ONE"),
            source_column=_pick(data, "foreignKey", "foreign_key", "") or data.get("source_column", ""),
            target_table=_pick(data, "targetTable", "target_table", ""),
            target_column=_pick(data, "targetColumn", "target_column"),
        )


@dataclass(frozen=True)
class Table:
    name: str
    description: Optional[str] = None
    role: TableRole = TableRole.OTHER
    columns: tuple[Column, ...] = ()
    relations: tuple[Relation, ...] = ()
    row_count: Optional[int] = None

    @property
    def primary_key_columns(self) -> list[Column]:
        return [c for c in self.columns if c.is_primary_key]

    @property
    def foreign_key_columns(self) -> list[Column]:
        return [c for c in self.columns if c.is_foreign_key]

    @property
    def sensitive_columns(self) -> list[Column]:
        return [c for c in self.columns if c.is_sensitive]

    def column(self, name: str) -> Column | None:
        lowered = name.lower()
        for col in self.columns:
            if col.name.lower() == lowered:
                return col
        return None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name}
        if self.description is not None:
            data["description"] = self.description
        data["role"] = self.role.value
        data["columns"] = [c.to_dict() for c in self.columns]
        data["relationships"] = [r.to_dict() for r in self.relations]
        if self.row_count is not None:
            data["rowCount"] = self.row_count
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Table":
        try:
            role = TableRole(data.get("role", TableRole.OTHER.value))
        except ValueError:
            role = TableRole.OTHER
        relations = data.get("relationships", data.get("relations", []))
        row_count = _pick(data, "rowCount", "row_count")
        return cls(
            name=data["name"],
            description=data.get("description"),
            role=role,
            columns=tuple(Column.from_dict(c) for c in data.get("columns", [])),
            relations=tuple(Relation.from_dict(r) for r in relations),
            row_count=int(row_count) if row_count is not None else None,
        )


@dataclass(frozen=True)
class DatabaseInfo:
    name: str
    description: Optional[str] = None
    charset: Optional[str] = None
    collation: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name}
        for key in ("description", "charset", "collation"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DatabaseInfo":
        return cls(
            name=data["name"],
            description=data.get("description"),
            charset=data.get("charset"),
            collation=data.get("collation"),
        )


@dataclass(frozen=True, eq=False)
class SchemaCatalog:
    database: DatabaseInfo
    tables: tuple[Table, ...] = ()
    sample_data: Optional[Mapping[str, list[dict[str, Any]]]] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: Optional[datetime] = None
    version: str = "1.0"

    @property
    def database_name(self) -> str:
        return self.database.name

    @property
    def sensitive_tables(self) -> list[Table]:
        return [t for t in self.tables if t.role == TableRole.SENSITIVE]

    @property
    def master_tables(self) -> list[Table]:
        return [t for t in self.tables if t.role == TableRole.MASTER]

    @property
    def total_columns(self) -> int:
        return sum(len(t.columns) for t in self.tables)

    @property
    def total_sensitive_columns(self) -> int:
        return sum(len(t.sensitive_columns) for t in self.tables)

    def table(self, name: str) -> Table | None:
        lowered = name.lower()
        for table in self.tables:
            if table.name.lower() == lowered:
                return table
        return None

    def table_names(self) -> list[str]:
        return [t.name for t in self.tables]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "version": self.version,
            "createdAt": self.created_at.isoformat(),
        }
        if self.updated_at is not None:
            data["updatedAt"] = self.updated_at.isoformat()
        data["database"] = self.database.to_dict()
        data["tables"] = [t.to_dict() for t in self.tables]
        if self.sample_data is not None:
            data["sampleData"] = {name: list(rows) for name, rows in self.sample_data.items()}
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SchemaCatalog":
        created = _pick(data, "createdAt", "created_at")
        updated = _pick(data, "updatedAt", "updated_at")
        sample = _pick(data, "sampleData", "sample_data")
        return cls(
            version=data.get("version", "1.0"),
            created_at=datetime.fromisoformat(created) if created else datetime.now(),
            updated_at=datetime.fromisoformat(updated) if updated else None,
            database=DatabaseInfo.from_dict(data["database"]),
            tables=tuple(Table.from_dict(t) for t in data.get("tables", [])),
            sample_data={name: list(rows) for name, rows in sample.items()} if sample else None,
        )

    @classmethod
    def empty(cls, database_name: str) -> "SchemaCatalog":
        return cls(database=DatabaseInfo(name=database_name))
