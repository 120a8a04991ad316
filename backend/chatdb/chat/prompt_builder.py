"""Render the schema catalog and conversation history into prompt text."""

from __future__ import annotations

import json
from typing import Optional, Sequence

from ..llm.prompts import (
    ASSISTANT_SYSTEM,
    MODELING_SUGGESTION,
    QUERY_VALIDATION,
    USER_PROMPT_HISTORY_HEADER,
    USER_PROMPT_QUESTION_HEADER,
)
from ..schema.catalog import Column, SchemaCatalog, Table

SAMPLE_ROWS_PER_TABLE = 3
HISTORY_CONTENT_LIMIT = 500
DEFAULT_MAX_HISTORY_MESSAGES = 5


def _column_flags(column: Column) -> str:
    flags = []
    if column.is_primary_key:
        flags.append("PK")
    if column.is_foreign_key:
        flags.append("FK")
    if column.is_sensitive:
        flags.append("SENSITIVE")
    if not column.is_nullable:
        flags.append("NOT NULL")
    return f" [{', '.join(flags)}]" if flags else ""


def _render_table(table: Table) -> list[str]:
    lines = [f"TABLE: {table.name}"]
    if table.description:
        lines.append(f"  Description: {table.description}")
    lines.append(f"  Role: {table.role.display_name}")
    lines.append("  Columns:")
    for column in table.columns:
        lines.append(f"    - {column.name} ({column.data_type}){_column_flags(column)}")
        if column.description:
            lines.append(f"      -> {column.description}")
        if column.is_foreign_key and column.foreign_key_ref:
            lines.append(f"      -> References: {column.foreign_key_ref}")
    if table.relations:
        lines.append("  Relationships:")
        for rel in table.relations:
            target = rel.target_table
            if rel.target_column:
                target = f"{target}.{rel.target_column}"
            lines.append(f"    - {rel.kind}: {table.name}.{rel.source_column} -> {target}")
    if table.row_count is not None:
        lines.append(f"  Estimated rows: {table.row_count}")
    return lines


class PromptBuilder:
    """Deterministic prompt rendering. Holds no state besides the history cap."""

    def __init__(self, max_history_messages: int = DEFAULT_MAX_HISTORY_MESSAGES):
        self.max_history_messages = max_history_messages

    def build_system_prompt(self, schema: SchemaCatalog) -> str:
        lines = [ASSISTANT_SYSTEM, ""]

        lines.append(f"DATABASE: {schema.database.name}")
        if schema.database.description:
            lines.append(f"Description: {schema.database.description}")
        lines.append("")

        lines.append("DATABASE SCHEMA:")
        lines.append("================")
        lines.append("")
        for table in schema.tables:
            lines.extend(_render_table(table))
            lines.append("")

        if schema.sample_data:
            lines.append("SAMPLE DATA (for context):")
            lines.append("==========================")
            for table_name, rows in schema.sample_data.items():
                lines.append("")
                lines.append(f"{table_name}:")
                lines.append(json.dumps(list(rows)[:SAMPLE_ROWS_PER_TABLE], ensure_ascii=False, default=str))

        return "\n".join(lines).rstrip() + "\n"

    def build_user_prompt(
        self,
        query: str,
        history: Optional[Sequence[dict[str, str]]] = None,
        max_history_messages: Optional[int] = None,
    ) -> str:
        """Prefix the question with the last few turns, each truncated to 500 chars."""
        limit = self.max_history_messages if max_history_messages is None else max_history_messages
        lines = []

        recent = list(history or [])[-limit:] if limit > 0 else []
        if recent:
            lines.append(USER_PROMPT_HISTORY_HEADER)
            for message in recent:
                role = "User" if message.get("role") == "user" else "Assistant"
                content = message.get("content") or ""
                if len(content) > HISTORY_CONTENT_LIMIT:
                    content = content[:HISTORY_CONTENT_LIMIT] + "..."
                lines.append(f"{role}: {content}")
            lines.append("")

        lines.append(USER_PROMPT_QUESTION_HEADER)
        lines.append(query)
        return "\n".join(lines) + "\n"

    def build_modeling_suggestion_prompt(self, schema: SchemaCatalog) -> str:
        schema_json = json.dumps(schema.to_dict(), ensure_ascii=False, default=str)
        return MODELING_SUGGESTION.format(schema_json=schema_json)

    def build_query_validation_prompt(self, sql: str, schema: SchemaCatalog) -> str:
        summary = "\n".join(
            f"{table.name}: [{', '.join(c.name for c in table.columns)}]" for table in schema.tables
        )
        return QUERY_VALIDATION.format(sql=sql, schema_summary=summary)
