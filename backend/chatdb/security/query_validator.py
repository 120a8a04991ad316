"""Read-only gate for model-generated SQL.

``QueryValidator.validate`` is a pure function of (sql, schema). It never
raises and never touches the database; callers must check
``result.is_valid and result.is_read_only`` before executing anything.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import re

from ..schema.catalog import SchemaCatalog

logger = logging.getLogger(__name__)

ALLOWED_START_KEYWORDS = ("SELECT", "SHOW", "DESCRIBE", "DESC", "EXPLAIN", "WITH")

FORBIDDEN_KEYWORDS = (
    "INSERT", "UPDATE", "DELETE", "DROP", "ALTER", "CREATE", "TRUNCATE",
    "REPLACE", "MERGE", "EXECUTE", "EXEC", "CALL", "GRANT", "REVOKE", "RENAME",
    "LOAD", "HANDLER", "DO", "FLUSH", "RESET", "PURGE", "START", "STOP",
    "LOCK", "UNLOCK", "XA", "SAVEPOINT", "ROLLBACK", "COMMIT", "SET",
    "PREPARE", "DEALLOCATE",
)

# (label, pattern) pairs; labels end up in user-visible errors
DANGEROUS_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = tuple(
    (label, re.compile(pattern, re.IGNORECASE | re.DOTALL))
    for label, pattern in (
        ("INTO OUTFILE", r"INTO\s+OUTFILE"),
        ("INTO DUMPFILE", r"INTO\s+DUMPFILE"),
        ("LOAD_FILE", r"LOAD_FILE"),
        ("line comment", r"--"),
        ("block comment", r"/\*"),
        ("stacked statement", r";\s*\w"),
        ("system variable", r"@@"),
        ("BENCHMARK()", r"BENCHMARK\s*\("),
        ("SLEEP()", r"SLEEP\s*\("),
        ("WAITFOR", r"\bWAITFOR\b"),
        ("UNION SELECT from information_schema", r"UNION\s+(?:ALL\s+)?SELECT.*?FROM\s+information_schema"),
    )
)

SYSTEM_TABLES = frozenset({"dual", "information_schema", "mysql", "performance_schema", "sys"})

_ENTRY_KEYWORD = re.compile(r"^(?:" + "|".join(ALLOWED_START_KEYWORDS) + r")\b")
_FORBIDDEN = tuple(
    (keyword, re.compile(rf"\b{keyword}\b", re.IGNORECASE)) for keyword in FORBIDDEN_KEYWORDS
)
_TABLE_REFERENCE = re.compile(
    r"\b(?:FROM|JOIN)\s+[`\"]?(\w+)[`\"]?(?:\s*\.\s*[`\"]?(\w+)[`\"]?)?",
    re.IGNORECASE,
)
_STAR_SELECT = re.compile(r"\bSELECT\s+(?:DISTINCT\s+)?(?:\w+\.)?\*|\.\*", re.IGNORECASE)
_TRAILING_SEMICOLON = re.compile(r";\s*$")
_LINE_COMMENT = re.compile(r"--.*$", re.MULTILINE)
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_WHITESPACE = re.compile(r"\s+")

LIMIT_SUGGESTION = "Consider adding a LIMIT clause to bound the result size"


@dataclass(frozen=True)
class ValidationResult:
    """Verdict for one statement. ``is_valid`` False forces ``is_read_only`` False."""
    is_valid: bool
    is_read_only: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)

    @property
    def can_execute(self) -> bool:
        return self.is_valid and self.is_read_only

    def to_dict(self) -> dict:
        return {
            "isValid": self.is_valid,
            "isReadOnly": self.is_read_only,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "suggestions": list(self.suggestions),
        }


def _extract_table_names(sql: str) -> list[str]:
    """Tables named after FROM/JOIN, with ``schema.table`` reduced to the table.

    References into a system schema are returned as the schema name so they
    are recognised as system tables.
    """
    tables: list[str] = []
    for match in _TABLE_REFERENCE.finditer(sql):
        first, second = match.group(1), match.group(2)
        if second and first.lower() not in SYSTEM_TABLES:
            name = second
        else:
            name = first
        if name not in tables:
            tables.append(name)
    return tables


def _sanitize_once(sql: str) -> str:
    text = _LINE_COMMENT.sub("", sql)
    text = _BLOCK_COMMENT.sub("", text)
    text = _WHITESPACE.sub(" ", text).strip()
    if text.endswith(";"):
        text = text[:-1].strip()
    return text


class QueryValidator:
    """Keyword and pattern based read-only validation against a schema catalog."""

    def validate(self, sql: str, schema: SchemaCatalog) -> ValidationResult:
        errors: list[str] = []
        warnings: list[str] = []
        suggestions: list[str] = []

        sql = sql or ""
        normalized = sql.strip().upper()

        starts_with_allowed = bool(_ENTRY_KEYWORD.match(normalized))
        if not starts_with_allowed:
            errors.append(
                f"Query must start with one of: {', '.join(ALLOWED_START_KEYWORDS)}"
            )

        for keyword, pattern in _FORBIDDEN:
            if pattern.search(sql):
                errors.append(f"Forbidden keyword found: {keyword}")

        for label, pattern in DANGEROUS_PATTERNS:
            if pattern.search(sql):
                errors.append(f"Dangerous pattern detected: {label}")

        body = _TRAILING_SEMICOLON.sub("", sql.strip())
        if body.count(";") > 0:
            errors.append("Multiple statements are not allowed")

        known_tables = {t.name.lower() for t in schema.tables}
        referenced = _extract_table_names(sql)
        for table in referenced:
            lowered = table.lower()
            if lowered not in known_tables and lowered not in SYSTEM_TABLES:
                warnings.append(f"Table not found in schema: {table}")

        self._check_sensitive_exposure(sql, schema, referenced, warnings)

        if "SELECT" in normalized and "LIMIT" not in normalized:
            suggestions.append(LIMIT_SUGGESTION)

        is_valid = not errors
        if errors:
            logger.debug(f"Validation failed with {len(errors)} error(s): {errors}")
        return ValidationResult(
            is_valid=is_valid,
            is_read_only=is_valid and starts_with_allowed,
            errors=errors,
            warnings=warnings,
            suggestions=suggestions,
        )

    @staticmethod
    def _check_sensitive_exposure(
        sql: str,
        schema: SchemaCatalog,
        referenced: list[str],
        warnings: list[str],
    ) -> None:
        """Warn about sensitive columns the statement may return.

        Any sensitive column whose bare name appears in the text is reported,
        without resolving which table it belongs to. A ``SELECT *`` also
        reports every sensitive column of the referenced tables.
        """
        lowered_sql = sql.lower()
        star_tables = set()
        if _STAR_SELECT.search(sql):
            star_tables = {name.lower() for name in referenced}

        for table in schema.tables:
            for column in table.sensitive_columns:
                exposed = column.name.lower() in lowered_sql or table.name.lower() in star_tables
                message = f"Query may expose sensitive data: {table.name}.{column.name}"
                if exposed and message not in warnings:
                    warnings.append(message)

    def sanitize(self, sql: str) -> str:
        """Normalise SQL for display.

        Strips ``--`` and ``/* */`` comments, collapses whitespace, trims and
        drops a trailing semicolon. The output is not validated; run
        :meth:`validate` again before executing it.
        """
        current = sql or ""
        while True:
            cleaned = _sanitize_once(current)
            if cleaned == current:
                return cleaned
            current = cleaned
