"""Unit tests for the schema catalog, merge-on-load and the schema reader."""

from __future__ import annotations

from dataclasses import replace
import json
import os
import sys

# Add backend to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from chatdb.core.storage import LocalStorage
from chatdb.schema import (
    Column,
    SchemaCatalog,
    SchemaReader,
    Table,
    TableRole,
    detect_sensitive_columns,
    load_merged_catalog,
    merge_catalogs,
    suggest_table_roles,
)

from conftest import FakeDatabase, make_catalog


class TestCatalog:
    """Tests for catalog helpers and serialisation."""

    def test_aggregates(self, catalog):
        """Counts and lookups reflect the tables."""
        assert catalog.database_name == "shop"
        assert catalog.total_columns == 6
        assert catalog.total_sensitive_columns == 1
        assert [t.name for t in catalog.sensitive_tables] == ["customers"]
        assert [t.name for t in catalog.master_tables] == ["customers"]
        assert catalog.table("CUSTOMERS").name == "customers"
        assert catalog.table("missing") is None

    def test_json_round_trip(self, catalog):
        """to_dict/from_dict preserve the catalog through JSON."""
        data = json.loads(json.dumps(catalog.to_dict()))
        restored = SchemaCatalog.from_dict(data)
        assert restored.to_dict() == catalog.to_dict()

    def test_camel_case_keys(self, catalog):
        """Serialised form uses camelCase keys."""
        data = catalog.to_dict()
        email = data["tables"][0]["columns"][2]
        assert email["isSensitive"] is True
        assert email["maskingPattern"] == "email"
        relation = data["tables"][1]["relationships"][0]
        assert relation["foreignKey"] == "customer_id"
        assert relation["targetTable"] == "customers"

    def test_snake_case_keys_accepted(self):
        """Loading also accepts snake_case keys."""
        column = Column.from_dict({"name": "email", "data_type": "TEXT", "is_sensitive": True})
        assert column.data_type == "TEXT"
        assert column.is_sensitive

    def test_role_display(self):
        """Roles expose a display name and description."""
        assert TableRole.MASTER.display_name == "Master"
        assert TableRole.REFERENCE.description


class TestMerge:
    """Tests for merge_catalogs."""

    def test_semantics_carry_over_by_name(self, catalog):
        """Saved descriptions, flags and roles overlay the live structure."""
        live = replace(catalog, tables=tuple(
            replace(t, description=None, role=TableRole.OTHER,
                    columns=tuple(replace(c, is_sensitive=False, masking_pattern=None) for c in t.columns))
            for t in catalog.tables
        ))
        merged = merge_catalogs(live, catalog)
        customers = merged.table("customers")
        assert customers.description == "Registered customers"
        assert customers.role == TableRole.MASTER
        assert customers.column("email").is_sensitive
        assert customers.column("email").masking_pattern == "email"
        assert merged.created_at == catalog.created_at
        assert merged.updated_at is not None

    def test_structure_comes_from_live(self, catalog):
        """Tables and columns absent from the live read are dropped."""
        live = replace(catalog, tables=(
            replace(catalog.tables[0], columns=catalog.tables[0].columns[:2] + (Column(name="phone"),)),
        ))
        merged = merge_catalogs(live, catalog)
        assert merged.table_names() == ["customers"]
        assert [c.name for c in merged.tables[0].columns] == ["id", "name", "phone"]
        assert merged.total_sensitive_columns == 0

    def test_inputs_not_mutated(self, catalog):
        """Merging leaves both inputs untouched."""
        live = make_catalog()
        before = live.to_dict()
        merge_catalogs(live, catalog)
        assert live.to_dict() == before

    def test_no_saved_returns_live(self, catalog):
        """Without saved metadata the live catalog is returned."""
        assert merge_catalogs(catalog, None) is catalog


class TestReader:
    """Tests for SchemaReader and the naming heuristics."""

    def test_read_full_schema(self):
        """Tables and sample rows are read through the capability."""
        reader = SchemaReader(FakeDatabase(), "shop", sample_data_limit=1)
        schema = reader.read_full_schema()
        assert schema.table_names() == ["customers", "orders"]
        assert list(schema.sample_data) == ["customers"]
        assert len(schema.sample_data["customers"]) == 1

    def test_read_without_samples(self):
        """Sample data can be skipped."""
        schema = SchemaReader(FakeDatabase(), "shop").read_full_schema(include_sample_data=False)
        assert schema.sample_data is None

    def test_unreadable_table_is_skipped(self):
        """A failing table does not hide the others."""
        db = FakeDatabase()
        original = db.get_table_schema

        def flaky(name):
            if name == "orders":
                raise RuntimeError("boom")
            return original(name)

        db.get_table_schema = flaky
        schema = SchemaReader(db, "shop").read_full_schema(include_sample_data=False)
        assert schema.table_names() == ["customers"]

    def test_detect_sensitive_columns(self, catalog):
        """Column names that look sensitive are reported as table.column."""
        assert detect_sensitive_columns(catalog.tables) == ["customers.email"]

    def test_suggest_table_roles(self):
        """Roles follow the name heuristics in order."""
        tables = [Table(name=n) for n in ("order_status", "orders", "customers", "user_credentials", "sales_summary", "misc")]
        roles = suggest_table_roles(tables)
        assert roles == {
            "order_status": TableRole.REFERENCE,
            "orders": TableRole.TRANSACTIONAL,
            "customers": TableRole.MASTER,
            "user_credentials": TableRole.MASTER,
            "sales_summary": TableRole.AGGREGATE,
            "misc": TableRole.OTHER,
        }

    def test_load_merged_catalog(self, tmp_path, catalog):
        """Saved metadata for the connection is applied to the live read."""
        storage = LocalStorage(tmp_path)
        edited = replace(catalog, tables=(
            replace(catalog.tables[0], description="Edited"),
            catalog.tables[1],
        ))
        storage.save_schema_metadata("localhost_3306_shop", edited)
        reader = SchemaReader(FakeDatabase(), "shop")
        merged = load_merged_catalog(reader, storage, "localhost_3306_shop")
        assert merged.table("customers").description == "Edited"
        unmerged = load_merged_catalog(reader, storage, "other")
        assert unmerged.table("customers").description == "Registered customers"
