"""
Tests for structured logging and payload sanitization.
"""

import logging

import pytest

from similar_notes.core.errors import RateLimitedError
from util.logging import StructuredLogger, sanitize_payload


@pytest.fixture
def structured_logger():
    return StructuredLogger("similar_notes.test")


class TestSanitizePayload:
    """Secrets and note text never reach log lines."""

    def test_redacts_sensitive_keys(self):
        payload = {"providerCredential": "sk-secret", "text": "private note body", "path": "a.md"}

        sanitized = sanitize_payload(payload)

        assert sanitized["providerCredential"] == "[REDACTED]"
        assert sanitized["text"] == "[REDACTED]"
        assert sanitized["path"] == "a.md"

    def test_nested_payloads(self):
        sanitized = sanitize_payload({"request": {"api_key": "sk", "model": "m"}})

        assert sanitized == {"request": {"api_key": "[REDACTED]", "model": "m"}}

    def test_truncates_long_strings(self):
        sanitized = sanitize_payload({"error": "x" * 500})

        assert sanitized["error"] == "x" * 100 + "..."

    def test_caps_long_lists(self):
        sanitized = sanitize_payload(list(range(25)))

        assert sanitized[:10] == list(range(10))
        assert sanitized[-1] == "... 15 more"

    def test_custom_sensitive_fields(self):
        assert sanitize_payload({"path": "a.md"}, sensitive_fields=["path"]) == {"path": "[REDACTED]"}


class TestStructuredLogger:

    def test_log_operation(self, structured_logger, caplog):
        with caplog.at_level(logging.INFO, logger="similar_notes.test"):
            structured_logger.log_operation("session.initialize", "ready", {"providerCredential": "sk-123"})

        assert "Operation: session.initialize, Status: ready" in caplog.text
        assert "sk-123" not in caplog.text

    def test_vector_operation_failure_logs_warning(self, structured_logger, caplog):
        with caplog.at_level(logging.INFO, logger="similar_notes.test"):
            structured_logger.log_vector_operation("put", "a.md", {"error": "disk full"}, status="failed")

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert "vector.put" in record.getMessage()

    @pytest.mark.parametrize("report,status", [
        ({"aborted": True, "cancelled": False, "failed": 0}, "aborted"),
        ({"aborted": False, "cancelled": True, "failed": 0}, "cancelled"),
        ({"aborted": False, "cancelled": False, "failed": 2}, "partial"),
        ({"aborted": False, "cancelled": False, "failed": 0}, "success"),
    ])
    def test_reindex_pass_status(self, structured_logger, caplog, report, status):
        with caplog.at_level(logging.INFO, logger="similar_notes.test"):
            structured_logger.log_reindex_pass("all", report, 10.0, 10.5)

        message = caplog.records[-1].getMessage()
        assert f"Operation: reindex.all, Status: {status}" in message
        assert "'duration_ms': 500.0" in message

    def test_reindex_pass_that_raised_is_failed(self, structured_logger, caplog):
        report = {"aborted": False, "cancelled": False, "failed": 0}
        with caplog.at_level(logging.INFO, logger="similar_notes.test"):
            structured_logger.log_reindex_pass("all", report, 10.0, 10.5, error=RuntimeError("vault went away"))

        record = caplog.records[-1]
        assert record.levelno == logging.ERROR
        assert "Operation: reindex.all, Status: failed" in record.getMessage()
        assert "RuntimeError: vault went away" in record.getMessage()

    def test_provider_failure_includes_retry_after(self, structured_logger, caplog):
        error = RateLimitedError("slow down", retry_after=3.0)
        with caplog.at_level(logging.INFO, logger="similar_notes.test"):
            structured_logger.log_provider_failure("a.md", error, attempt=1, will_retry=True)

        message = caplog.records[-1].getMessage()
        assert "Status: retrying" in message
        assert "'retry_after': 3.0" in message
        assert "'error_type': 'RateLimitedError'" in message

    def test_query_logs_at_debug(self, structured_logger, caplog):
        with caplog.at_level(logging.INFO, logger="similar_notes.test"):
            structured_logger.log_query("a.md", 5, 3, 10)
        assert "query.similar" not in caplog.text

        with caplog.at_level(logging.DEBUG, logger="similar_notes.test"):
            structured_logger.log_query("a.md", 5, 3, 10)
        assert "query.similar" in caplog.text


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
