"""Tests for structured logging."""

import json
import logging
import sys

from peekstash.infrastructure.observability.logging import (
    CompactExceptionFormatter,
    CorrelationIdFilter,
    CustomJsonFormatter,
    configure_logging,
    get_correlation_id,
    set_correlation_id,
)


class TestCorrelationId:
    """Test correlation ID functionality."""

    def test_set_and_get_correlation_id(self) -> None:
        assert set_correlation_id("sync-123") == "sync-123"
        assert get_correlation_id() == "sync-123"

    def test_set_correlation_id_generates_uuid_when_none(self) -> None:
        result = set_correlation_id(None)
        assert len(result) == 36
        assert get_correlation_id() == result

    def test_filter_stamps_record(self) -> None:
        set_correlation_id("req-9")
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)

        assert CorrelationIdFilter().filter(record) is True
        assert record.correlation_id == "req-9"  # type: ignore[attr-defined]


class TestLoggingConfiguration:
    def test_level_applied(self) -> None:
        configure_logging(log_level="DEBUG")
        assert logging.getLogger("peekstash.test").getEffectiveLevel() == logging.DEBUG

        configure_logging(log_level="WARNING")
        assert logging.getLogger("peekstash.test").getEffectiveLevel() == logging.WARNING

    def test_handlers_replaced_not_stacked(self) -> None:
        configure_logging()
        configure_logging()
        assert len(logging.getLogger().handlers) == 1

    def test_json_format_selected(self) -> None:
        configure_logging(json_format=True)
        (handler,) = logging.getLogger().handlers
        assert isinstance(handler.formatter, CustomJsonFormatter)

    def test_httpx_quieted(self) -> None:
        configure_logging(log_level="DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING


class TestFormatters:
    def test_json_record_carries_correlation_id(self) -> None:
        set_correlation_id("abc")
        record = logging.LogRecord("peekstash.sync", logging.INFO, __file__, 7, "done", None, None)
        CorrelationIdFilter().filter(record)

        payload = json.loads(CustomJsonFormatter("%(message)s").format(record))

        assert payload["message"] == "done"
        assert payload["level"] == "INFO"
        assert payload["logger"] == "peekstash.sync"
        assert payload["correlation_id"] == "abc"

    def test_compact_exception_chain_root_cause_first(self) -> None:
        try:
            try:
                raise ConnectionError("refused")
            except ConnectionError as e:
                raise RuntimeError("Stash request failed") from e
        except RuntimeError:
            text = CompactExceptionFormatter().formatException(sys.exc_info())

        lines = [line for line in text.splitlines() if line.startswith("╰─►")]
        assert lines == [
            "╰─► ConnectionError: refused",
            "╰─► RuntimeError: Stash request failed",
        ]
