"""Security module.

Contains SQL validation and extraction, result masking and audit logging.
"""

from .audit import (
    AuditEvent,
    AuditEventType,
    AuditLogger,
    AuditSeverity,
    AuditSink,
    InMemoryAuditSink,
    JsonlAuditSink,
)
from .data_masking import (
    DEFAULT_PATTERNS,
    DataMasker,
    MaskingPattern,
    MaskingResult,
    detect_pattern,
    load_masking_patterns,
)
from .query_validator import QueryValidator, ValidationResult
from .sql_guard import extract_sql, is_read_only_statement

__all__ = [
    # Audit
    "AuditEvent",
    "AuditEventType",
    "AuditLogger",
    "AuditSeverity",
    "AuditSink",
    "InMemoryAuditSink",
    "JsonlAuditSink",
    # Masking
    "DEFAULT_PATTERNS",
    "DataMasker",
    "MaskingPattern",
    "MaskingResult",
    "detect_pattern",
    "load_masking_patterns",
    # Validation
    "QueryValidator",
    "ValidationResult",
    "extract_sql",
    "is_read_only_statement",
]
