"""Unit tests for the read-only query validator."""

from __future__ import annotations

import os
import sys

import pytest

# Add backend to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from chatdb.schema.catalog import SchemaCatalog
from chatdb.security.query_validator import (
    FORBIDDEN_KEYWORDS,
    LIMIT_SUGGESTION,
    QueryValidator,
    ValidationResult,
)


@pytest.fixture
def validator() -> QueryValidator:
    return QueryValidator()


class TestEntryKeyword:
    """Tests for the leading keyword check."""

    @pytest.mark.parametrize("sql", [
        "SELECT id FROM customers LIMIT 5",
        "show tables",
        "DESCRIBE customers",
        "DESC customers",
        "EXPLAIN SELECT id FROM customers LIMIT 1",
        "WITH c AS (SELECT id FROM customers) SELECT id FROM c LIMIT 1",
    ])
    def test_allowed_statements_pass(self, validator, catalog, sql):
        """Every allowed entry keyword should produce an executable result."""
        result = validator.validate(sql, catalog)
        assert result.is_valid, result.errors
        assert result.is_read_only
        assert result.can_execute

    def test_show_tables_has_no_sensitive_warning(self, validator, catalog):
        """SHOW TABLES should pass without sensitive exposure warnings."""
        result = validator.validate("SHOW TABLES", catalog)
        assert result.is_valid and result.is_read_only
        assert not any("sensitive" in w for w in result.warnings)

    def test_selective_prefix_is_not_select(self, validator, catalog):
        """A word that only starts with SELECT should not count as SELECT."""
        result = validator.validate("SELECTIVE stuff", catalog)
        assert not result.is_valid
        assert any("must start with" in e for e in result.errors)

    def test_empty_sql_is_rejected(self, validator, catalog):
        """Empty input should be invalid rather than raise."""
        result = validator.validate("", catalog)
        assert not result.is_valid
        assert not result.is_read_only


class TestForbiddenKeywords:
    """Tests for forbidden keyword detection."""

    @pytest.mark.parametrize("keyword", ["INSERT", "DROP", "UPDATE", "GRANT", "TRUNCATE"])
    def test_write_statements_are_rejected(self, validator, catalog, keyword):
        """Statements starting with a write verb should be rejected."""
        result = validator.validate(f"{keyword} customers", catalog)
        assert not result.is_valid
        assert not result.is_read_only
        assert f"Forbidden keyword found: {keyword}" in result.errors

    def test_keyword_inside_identifier_is_allowed(self, validator, catalog):
        """Column names like updated_at should not trip the UPDATE check."""
        result = validator.validate("SELECT updated_at, created_by FROM customers LIMIT 1", catalog)
        assert result.is_valid, result.errors

    def test_keyword_match_is_case_insensitive(self, validator, catalog):
        """Lowercase write verbs should be caught as well."""
        result = validator.validate("SELECT 1 FROM customers WHERE 1 = 1 union all delete", catalog)
        assert "Forbidden keyword found: DELETE" in result.errors

    def test_every_forbidden_keyword_is_listed(self):
        """The forbidden list should cover transaction and session control verbs."""
        for keyword in ("COMMIT", "ROLLBACK", "SET", "LOCK", "PREPARE", "DEALLOCATE"):
            assert keyword in FORBIDDEN_KEYWORDS


class TestDangerousPatterns:
    """Tests for injection and exfiltration patterns."""

    @pytest.mark.parametrize("sql,label", [
        ("SELECT * FROM customers INTO OUTFILE '/tmp/x'", "INTO OUTFILE"),
        ("SELECT LOAD_FILE('/etc/passwd')", "LOAD_FILE"),
        ("SELECT id FROM customers -- hidden", "line comment"),
        ("SELECT id /* x */ FROM customers", "block comment"),
        ("SELECT @@version", "system variable"),
        ("SELECT SLEEP(5)", "SLEEP()"),
        ("SELECT BENCHMARK(1000000, MD5('a'))", "BENCHMARK()"),
        ("SELECT id FROM customers UNION SELECT table_name FROM information_schema.tables", "UNION SELECT from information_schema"),
        ("SELECT id FROM customers UNION ALL SELECT table_name FROM information_schema.tables", "UNION SELECT from information_schema"),
    ])
    def test_pattern_is_reported(self, validator, catalog, sql, label):
        """Each dangerous construct should produce a labelled error."""
        result = validator.validate(sql, catalog)
        assert not result.is_valid
        assert f"Dangerous pattern detected: {label}" in result.errors

    def test_stacked_statements_are_rejected(self, validator, catalog):
        """A second statement after a semicolon should be rejected."""
        result = validator.validate("SELECT 1; SELECT 2", catalog)
        assert not result.is_valid
        assert "Multiple statements are not allowed" in result.errors

    def test_single_trailing_semicolon_is_allowed(self, validator, catalog):
        """One trailing semicolon should not count as a second statement."""
        result = validator.validate("SELECT id FROM customers LIMIT 5;", catalog)
        assert result.is_valid, result.errors


class TestWarnings:
    """Tests for schema-aware warnings and suggestions."""

    def test_unknown_table_warns(self, validator, catalog):
        """Tables missing from the catalog should warn but stay valid."""
        result = validator.validate("SELECT * FROM invoices LIMIT 5", catalog)
        assert result.is_valid
        assert "Table not found in schema: invoices" in result.warnings

    def test_system_schema_does_not_warn(self, validator, catalog):
        """Qualified references into system schemas should not warn."""
        result = validator.validate("SELECT table_name FROM information_schema.tables LIMIT 5", catalog)
        assert not any("Table not found" in w for w in result.warnings)

    def test_qualified_table_uses_table_part(self, validator, catalog):
        """shop.customers should resolve to the customers table."""
        result = validator.validate("SELECT id FROM shop.customers LIMIT 5", catalog)
        assert not any("Table not found" in w for w in result.warnings)

    def test_select_star_warns_about_sensitive_column(self, validator, catalog):
        """SELECT * over a table with a sensitive column should name it."""
        result = validator.validate("SELECT * FROM customers", catalog)
        assert result.is_valid
        assert "Query may expose sensitive data: customers.email" in result.warnings

    def test_named_sensitive_column_warns_once(self, validator, catalog):
        """Mentioning the column twice should still produce a single warning."""
        result = validator.validate("SELECT email FROM customers WHERE email LIKE '%x%' LIMIT 5", catalog)
        assert result.warnings.count("Query may expose sensitive data: customers.email") == 1

    def test_limit_suggestion(self, validator, catalog):
        """SELECT without LIMIT should carry a suggestion."""
        assert LIMIT_SUGGESTION in validator.validate("SELECT id FROM orders", catalog).suggestions
        assert LIMIT_SUGGESTION not in validator.validate("SELECT id FROM orders LIMIT 10", catalog).suggestions

    def test_empty_schema_warns_for_every_table(self, validator):
        """With an empty catalog every referenced table is unknown."""
        result = validator.validate("SELECT o.id FROM orders o JOIN customers c ON c.id = o.customer_id LIMIT 1",
                                    SchemaCatalog.empty("shop"))
        assert "Table not found in schema: orders" in result.warnings
        assert "Table not found in schema: customers" in result.warnings


class TestValidationResult:
    """Tests for the result value object."""

    def test_to_dict_uses_camel_case(self):
        """Serialised keys should match the wire format."""
        data = ValidationResult(is_valid=True, is_read_only=True, warnings=["w"]).to_dict()
        assert data == {
            "isValid": True,
            "isReadOnly": True,
            "errors": [],
            "warnings": ["w"],
            "suggestions": [],
        }

    def test_invalid_implies_not_read_only(self, validator, catalog):
        """An invalid SELECT should never be reported as read-only."""
        result = validator.validate("SELECT SLEEP(1)", catalog)
        assert not result.is_valid
        assert not result.is_read_only


class TestSanitize:
    """Tests for SQL display sanitisation."""

    def test_strips_comments_whitespace_and_semicolon(self, validator):
        """Comments, extra whitespace and the trailing semicolon should go."""
        sql = "SELECT id,   name -- names\nFROM /* all */ customers ;"
        assert validator.sanitize(sql) == "SELECT id, name FROM customers"

    def test_is_idempotent(self, validator):
        """Sanitising twice should equal sanitising once."""
        sql = "SELECT 1 ; ;  -- a\n /* b */"
        once = validator.sanitize(sql)
        assert validator.sanitize(once) == once

    def test_empty_input(self, validator):
        """Empty input should sanitise to an empty string."""
        assert validator.sanitize("") == ""
