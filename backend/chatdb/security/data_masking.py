"""Redaction of sensitive values in query results.

Masking is driven by schema metadata: a value is masked when its field name
matches a column flagged ``is_sensitive``. Values are never inspected to
decide whether they look sensitive.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
import re
from typing import Any, Mapping, Optional

import yaml

from ..schema.catalog import SchemaCatalog
from ..schema.reader import SENSITIVE_NAME_PATTERNS

logger = logging.getLogger(__name__)

_GROUP_REFERENCE = re.compile(r"\$(\d+)")


@dataclass(frozen=True)
class MaskingPattern:
    """Capture-group regex plus a ``$n`` replacement template."""
    pattern: str
    replacement: str

    def compile(self) -> re.Pattern[str]:
        return re.compile(self.pattern, re.DOTALL)

    def render(self, match: re.Match[str]) -> str:
        return _GROUP_REFERENCE.sub(lambda ref: match.group(int(ref.group(1))) or "", self.replacement)


DEFAULT_PATTERNS: dict[str, MaskingPattern] = {
    "email": MaskingPattern(r"^(.{2})(.*)(@.*)$", "$1***$3"),
    "phone": MaskingPattern(r"^(.{3})(.*)(.{4})$", "$1***$3"),
    "credit_card": MaskingPattern(r"^(.{4})(.*)(.{4})$", "$1 **** **** $3"),
    "ssn": MaskingPattern(r"^(.*)(.{3})$", "******$2"),
    "full": MaskingPattern(r".*", "[HIDDEN]"),
    "partial": MaskingPattern(r"^(.{3})(.*)$", "$1***"),
}

# Column-name fragments per pattern, checked in this order
PATTERN_NAME_HINTS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("email", ("email", "mail")),
    ("phone", ("phone", "telefono", "cellulare", "mobile")),
    ("credit_card", ("card", "carta", "credit")),
    ("ssn", ("ssn", "codice_fiscale", "cf", "tax")),
    ("full", ("password", "pwd", "secret", "token", "api_key")),
)


@dataclass(frozen=True)
class MaskingResult:
    masked_rows: list[dict[str, Any]]
    masked_field_names: list[str] = field(default_factory=list)


def detect_pattern(column_name: str) -> str:
    """Infer a masking pattern name from a column name; ``partial`` by default."""
    name = column_name.lower()
    for pattern_name, hints in PATTERN_NAME_HINTS:
        if any(hint in name for hint in hints):
            return pattern_name
    return "partial"


def _fallback_mask(value: str) -> str:
    if len(value) > 6:
        return f"{value[:3]}***{value[-3:]}"
    return "***"


def load_masking_patterns(path: str | Path) -> dict[str, MaskingPattern]:
    """Load extra masking patterns from a YAML file.

    Expected layout::

        patterns:
          iban:
            pattern: '^(.{4})(.*)(.{4})$'
            replacement: '$1 **** $3'

    Entries with a missing field or an invalid regex are skipped.
    """
    path = Path(path)
    if not path.exists():
        logger.warning(f"Masking patterns file not found: {path}")
        return {}

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    entries = data.get("patterns", data) if isinstance(data, dict) else {}
    patterns: dict[str, MaskingPattern] = {}
    for name, entry in entries.items():
        if not isinstance(entry, dict) or "pattern" not in entry or "replacement" not in entry:
            logger.warning(f"Skipping malformed masking pattern '{name}'")
            continue
        candidate = MaskingPattern(pattern=str(entry["pattern"]), replacement=str(entry["replacement"]))
        try:
            candidate.compile()
        except re.error as e:
            logger.warning(f"Skipping masking pattern '{name}' with invalid regex: {e}")
            continue
        patterns[str(name)] = candidate

    logger.info(f"Loaded {len(patterns)} masking pattern(s) from {path}")
    return patterns


class DataMasker:
    """Masks sensitive fields of result rows according to the schema catalog."""

    def __init__(self, extra_patterns: Optional[Mapping[str, MaskingPattern]] = None):
        self.patterns: dict[str, MaskingPattern] = {**DEFAULT_PATTERNS, **(extra_patterns or {})}
        self._compiled: dict[str, re.Pattern[str]] = {}
        for name, pattern in self.patterns.items():
            try:
                self._compiled[name] = pattern.compile()
            except re.error as e:
                logger.warning(f"Masking pattern '{name}' has an invalid regex: {e}")

    @classmethod
    def from_yaml(cls, path: str | Path) -> "DataMasker":
        return cls(load_masking_patterns(path))

    def mask_results(self, rows: list[dict[str, Any]], schema: SchemaCatalog) -> MaskingResult:
        """Return masked copies of ``rows`` and the names of the fields that were masked.

        When the schema declares no sensitive columns the input list itself is
        returned untouched.
        """
        if not rows:
            return MaskingResult(masked_rows=[], masked_field_names=[])

        sensitive: dict[str, str] = {}
        for table in schema.tables:
            for column in table.sensitive_columns:
                sensitive[column.name.lower()] = column.masking_pattern or detect_pattern(column.name)

        if not sensitive:
            return MaskingResult(masked_rows=rows, masked_field_names=[])

        masked_rows = []
        masked_fields: dict[str, None] = {}
        for row in rows:
            masked_row = {}
            for key, value in row.items():
                pattern_key = self._match_field(key, sensitive)
                if pattern_key is not None and value is not None:
                    masked_row[key] = self.apply_mask(str(value), pattern_key)
                    masked_fields[key] = None
                else:
                    masked_row[key] = value
            masked_rows.append(masked_row)

        return MaskingResult(masked_rows=masked_rows, masked_field_names=list(masked_fields))

    @staticmethod
    def _match_field(field_name: str, sensitive: Mapping[str, str]) -> str | None:
        lowered = field_name.lower()
        if lowered in sensitive:
            return sensitive[lowered]
        for key, pattern_key in sensitive.items():
            if key in lowered or lowered in key:
                return pattern_key
        return None

    def apply_mask(self, value: str, pattern_key: str) -> str:
        """Mask one value. Never raises; unmatched values degrade to a generic mask."""
        if not value:
            return value

        compiled = self._compiled.get(pattern_key)
        pattern = self.patterns.get(pattern_key)
        if compiled is None or pattern is None:
            return _fallback_mask(value)

        try:
            match = compiled.search(value)
            if match is None:
                return _fallback_mask(value)
            return value[:match.start()] + pattern.render(match) + value[match.end():]
        except (IndexError, re.error) as e:
            logger.debug(f"Masking pattern '{pattern_key}' failed: {e}")
            return _fallback_mask(value)

    def mask_value(self, value: str, pattern_key: str) -> str:
        return self.apply_mask(value, pattern_key)

    def mask_email(self, email: str) -> str:
        return self.apply_mask(email, "email")

    def mask_phone(self, phone: str) -> str:
        return self.apply_mask(phone, "phone")

    def mask_credit_card(self, card: str) -> str:
        return self.apply_mask(card, "credit_card")

    def mask_ssn(self, ssn: str) -> str:
        return self.apply_mask(ssn, "ssn")

    def mask_full(self, value: str) -> str:
        return self.apply_mask(value, "full")

    @staticmethod
    def detect_pattern(column_name: str) -> str:
        return detect_pattern(column_name)

    @staticmethod
    def detect_sensitive_columns(column_names: list[str]) -> list[str]:
        """Column names that look sensitive by name alone."""
        return [
            name for name in column_names
            if any(pattern in name.lower() for pattern in SENSITIVE_NAME_PATTERNS)
        ]
