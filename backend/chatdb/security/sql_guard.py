"""SQL extraction from model output and the database-side read-only gate."""

from __future__ import annotations

import logging
import re
from typing import Optional, Tuple

import sqlparse
from sqlparse.sql import Comment
from sqlparse.tokens import DDL, DML, Keyword

logger = logging.getLogger(__name__)

MIN_BARE_SQL_LENGTH = 10
MAX_BARE_SQL_LENGTH = 2000

READ_ONLY_ENTRY_WORDS = ("SELECT", "SHOW", "DESCRIBE", "DESC", "EXPLAIN", "WITH")

# Verbs the database layer refuses even when sqlparse tags them as plain keywords
BLOCKED_KEYWORDS = {
    "INSERT", "UPDATE", "DELETE", "REPLACE", "MERGE", "DROP", "ALTER", "CREATE",
    "TRUNCATE", "RENAME", "GRANT", "REVOKE", "CALL", "EXEC", "EXECUTE", "HANDLER",
    "LOAD", "LOCK", "UNLOCK", "FLUSH", "PURGE", "RESET", "KILL", "SHUTDOWN",
}

_FENCED_SQL = re.compile(r"```sql\s*(.*?)```", re.IGNORECASE | re.DOTALL)
_BARE_SELECT = re.compile(r"\b(SELECT\s+.*?(?:;|\Z))", re.IGNORECASE | re.DOTALL)


def extract_sql(text: str) -> Optional[str]:
    """Extract a candidate SQL statement from a model completion.

    A fenced ```sql block wins. Otherwise a bare ``SELECT ...`` in any case, running up to
    the first semicolon or the end of the text is accepted when its length is
    strictly between 10 and 2000 characters.

    Returns:
        The SQL text, or None when the completion carries no usable SQL.
    """
    if not text:
        return None

    fenced = _FENCED_SQL.search(text)
    if fenced:
        sql = fenced.group(1).strip()
        return sql or None

    bare = _BARE_SELECT.search(text)
    if bare:
        sql = bare.group(1).strip()
        if MIN_BARE_SQL_LENGTH < len(sql) < MAX_BARE_SQL_LENGTH:
            return sql
        logger.debug(f"Ignoring bare SELECT match of length {len(sql)}")
    return None


def _find_blocked_token(token) -> str | None:
    """Recursively look for write verbs, including ones hidden in comments."""
    if isinstance(token, Comment):
        words = set(re.findall(r"[A-Z_]+", str(token).upper()))
        hidden = words & BLOCKED_KEYWORDS
        if hidden:
            return f"Blocked keyword '{sorted(hidden)[0]}' found in comment"

    if getattr(token, "ttype", None) is not None:
        value = str(token).strip().upper()
        if token.ttype in (DML, DDL) and value != "SELECT":
            return f"Non-SELECT DML/DDL token: {value}"
        if token.ttype in Keyword and value in BLOCKED_KEYWORDS:
            return f"Blocked keyword: {value}"

    for sub in getattr(token, "tokens", ()):
        reason = _find_blocked_token(sub)
        if reason:
            return reason
    return None


def is_read_only_statement(sql: str) -> Tuple[bool, str]:
    """Check that ``sql`` is a single data-retrieval statement.

    This gate is enforced by the database capability itself and does not rely
    on any validation performed upstream.

    Returns:
        Tuple of (is_read_only, reason). ``reason`` is empty when allowed.
    """
    candidate = (sql or "").strip().rstrip(";").strip()
    if not candidate:
        return False, "Empty SQL"

    if ";" in candidate:
        return False, "Multiple statements not allowed (semicolon in query)"

    parsed = [stmt for stmt in sqlparse.parse(candidate) if str(stmt).strip()]
    if len(parsed) != 1:
        return False, f"Expected 1 statement, got {len(parsed)}"

    stmt = parsed[0]
    first_token = stmt.token_first(skip_cm=True, skip_ws=True)
    if first_token is None:
        return False, "Could not determine statement type"

    first_word = str(first_token).strip().split()[0].upper() if str(first_token).strip() else ""
    if first_word not in READ_ONLY_ENTRY_WORDS:
        return False, f"Statement must start with one of {', '.join(READ_ONLY_ENTRY_WORDS)}, got: {first_word}"

    reason = _find_blocked_token(stmt)
    if reason:
        return False, reason

    return True, ""
