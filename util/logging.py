"""
Structured logging for the similar-notes index.
Reindex passes, provider failures, store operations and queries all go through here.
"""

import logging
from typing import Any, Dict, List, Optional

SENSITIVE_FIELDS = ['provider_credential', 'providerCredential', 'api_key', 'authorization', 'content', 'text']


class StructuredLogger:
    """Structured logger for index, provider and query operations."""

    def __init__(self, name: str = "similar_notes"):
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
            message += f", Details: {sanitize_payload(details)}"

        self.logger.log(level, message)

    def log_vector_operation(self, operation: str, path: str, details: Dict[str, Any] = None, status: str = "success"):
        """Log a store operation on one record."""
        log_details = {"path": path}
        if details:
            log_details.update(details)

        level = logging.INFO if status == "success" else logging.WARNING
        self.log_operation(f"vector.{operation}", status, log_details, level)

    def log_reindex_pass(self, scope: str, report: Dict[str, Any], start_time: float, end_time: float,
                         error: Optional[BaseException] = None):
        """Log the outcome of a reindex pass."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {"duration_ms": duration_ms}
        log_details.update(report)

        if error is not None:
            status = "failed"
            log_details["error"] = f"{type(error).__name__}: {error}"
        elif report.get("aborted"):
            status = "aborted"
        elif report.get("cancelled"):
            status = "cancelled"
        elif report.get("failed"):
            status = "partial"
        else:
            status = "success"

        level = logging.ERROR if error is not None else logging.INFO
        self.log_operation(f"reindex.{scope}", status, log_details, level)

    def log_provider_failure(self, path: str, error: Exception, attempt: int, will_retry: bool):
        """Log an embedding provider failure for one note."""
        log_details = {
            "path": path,
            "error_type": type(error).__name__,
            "error": str(error)[:200],
            "attempt": attempt,
            "will_retry": will_retry,
        }
        retry_after = getattr(error, "retry_after", None)
        if retry_after is not None:
            log_details["retry_after"] = retry_after

        self.log_operation("provider.embed", "retrying" if will_retry else "failed", log_details, logging.WARNING)

    def log_query(self, target: str, k: int, result_count: int, candidate_count: int, approximate: bool = False):
        """Log a similarity query."""
        log_details = {
            "target": target,
            "k": k,
            "results": result_count,
            "candidates": candidate_count,
            "approximate": approximate,
        }
        self.log_operation("query.similar", "success", log_details, logging.DEBUG)

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


def sanitize_payload(payload: Any, sensitive_fields: List[str] = None) -> Any:
    """Redact secrets and note text before they reach a log line."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if k in sensitive_fields:
                sanitized[k] = "[REDACTED]"
            else:
                sanitized[k] = sanitize_payload(v, sensitive_fields)
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        if len(payload) > 10:
            return [sanitize_payload(item, sensitive_fields) for item in payload[:10]] + [f"... {len(payload) - 10} more"]
        return [sanitize_payload(item, sensitive_fields) for item in payload]
    else:
        return payload


# Global logger instance
logger = StructuredLogger()
