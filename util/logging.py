"""
Structured operation logging for search, ingestion and archival.

Every pipeline stage reports through the same "Operation: X, Status: Y, Details: {...}"
line format so batch and archive runs can be followed in plain log output.
"""

import logging
from typing import Any, Dict, List

SENSITIVE_FIELDS = ['nationalId', 'national_id', 'email', 'embedding', 'password', 'secret']


class StructuredLogger:
    """Structured logger for store, pipeline and routing operations."""

    def __init__(self, name: str = "docindex"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_search(self, target: str, partitions: List[str], total: int = None, status: str = "success"):
        """Log a search call against one or more partitions."""
        details = {"partitions": partitions}
        if total is not None:
            details["total"] = total
        self.log_operation(f"search.{target}", status, details)

    def log_route_decision(self, needs_hot: bool, needs_cold: bool, partitions: List[str]):
        """Log which partitions the router selected."""
        self.log_operation("router.route", "resolved", {
            "needs_hot": needs_hot,
            "needs_cold": needs_cold,
            "partitions": partitions
        })

    def log_invariant_violation(self, component: str, details: Dict[str, Any] = None):
        """Log a broken internal invariant. These should never happen."""
        self.log_operation(f"{component}.invariant", "violated", details, level=logging.ERROR)

    def log_batch_result(self, batch_number: int, size: int, succeeded: int, failed: int, error: str = None):
        """Log the outcome of one bulk write batch."""
        details = {
            "batch": batch_number,
            "size": size,
            "succeeded": succeeded,
            "failed": failed
        }
        if error:
            details["error"] = error[:200]

        if failed == 0:
            self.log_operation("ingest.batch", "success", details)
        elif succeeded > 0:
            self.log_operation("ingest.batch", "partial", details, level=logging.WARNING)
        else:
            self.log_operation("ingest.batch", "failed", details, level=logging.ERROR)

    def log_ingest_summary(self, partition: str, total: int, succeeded: int, failed: int, batches: int):
        """Log the end of an ingestion run."""
        self.log_operation("ingest.completed", "done", {
            "partition": partition,
            "total": total,
            "succeeded": succeeded,
            "failed": failed,
            "batches": batches
        })

    def log_archive_year(self, year: int, partition: str, status: str, details: Dict[str, Any] = None):
        """Log archival progress for a single calendar year."""
        log_details = {"year": year, "partition": partition}
        if details:
            log_details.update(details)

        level = logging.INFO
        if status == "duplicated":
            # Copy landed but the hot delete did not: documents now live in both partitions
            level = logging.ERROR
        elif status not in ("archived", "started", "copied"):
            level = logging.WARNING

        self.log_operation("archive.year", status, log_details, level=level)

    def log_archive_summary(self, hot: str, archived: int, years: int, failed_years: int):
        """Log the end of an archival run."""
        self.log_operation("archive.completed", "done" if failed_years == 0 else "partial", {
            "hot": hot,
            "archived": archived,
            "years": years,
            "failed_years": failed_years
        })

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()


def audit_event(event_type: str, identifiers: Dict[str, Any], payload: Dict[str, Any] = None, sensitive_fields: List[str] = None):
    """General audit event logging with privacy controls."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    log_details = identifiers.copy() if identifiers else {}

    if payload:
        log_details["payload"] = sanitize_payload(payload, sensitive_fields=sensitive_fields)

    logger.log_operation(event_type.replace(".", "_"), "audit", log_details)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for audit logging."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload
