"""Log setup for peekstash: plain or JSON output, correlation ids, compact tracebacks."""

import contextvars
import logging
import sys
import traceback
import uuid
from pathlib import Path
from typing import Any

from pythonjsonlogger import jsonlogger

# Hey future me, the correlation id follows one HTTP request or one sync run through every
# log line it produces. contextvars is asyncio-safe: each task gets its own copy, so a sync
# run started from the scheduler never leaks its id into a concurrent request's logs.
correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)

# Loggers that drown a sync in per-request chatter at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore", "asyncio", "aiosqlite", "uvicorn.access")

_TEXT_FORMAT = "%(asctime)s │ %(levelname)-7s │ %(name)s:%(lineno)d │ %(message)s"
_JSON_FORMAT = "%(timestamp)s %(level)s %(name)s %(message)s"


def get_correlation_id() -> str:
    """Correlation id of the current task, "" outside a request or sync run."""
    return correlation_id_var.get()


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Bind ``correlation_id`` (or a fresh UUID4) to the current task and return it."""
    value = correlation_id or str(uuid.uuid4())
    correlation_id_var.set(value)
    return value


class CorrelationIdFilter(logging.Filter):
    """Stamp every record with the task's correlation id. Never drops a record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get()
        return True


def _exception_chain(exc: BaseException) -> list[BaseException]:
    """Explicit and implicit causes of ``exc``, root cause first."""
    chain: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain[::-1]


def _own_frames(tb: Any) -> list[str]:
    lines: list[str] = []
    for frame in traceback.extract_tb(tb):
        # library frames are noise next to the one line that matters
        if "/site-packages/" in frame.filename or "peekstash" not in frame.filename:
            continue
        lines.append(f'    File "{Path(frame.filename).name}", line {frame.lineno}, in {frame.name}')
        if frame.line:
            lines.append(f"      {frame.line.strip()}")
    return lines


class CompactExceptionFormatter(logging.Formatter):
    """Text formatter printing each exception of a chain as one ``╰─►`` block.

    Example::

        ERROR   │ peekstash.application.services.stash_sync_service:412 │ Sync failed for scene
        ╰─► ConnectError: All connection attempts failed
        ╰─► StashApiError: Stash request failed: All connection attempts failed
            File "stash_client.py", line 98, in _execute
              response = await client.post(self.url, json=payload)
    """

    def formatException(self, ei: Any) -> str:
        exc_value = ei[1]
        if exc_value is None:
            return ""
        blocks: list[str] = []
        for exc in _exception_chain(exc_value):
            blocks.append(f"╰─► {type(exc).__name__}: {exc}")
            if exc.__traceback__ is not None:
                blocks.extend(_own_frames(exc.__traceback__))
        return "\n".join(blocks)


class CustomJsonFormatter(jsonlogger.JsonFormatter):  # type: ignore[misc]
    """One JSON object per record, for log shippers."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record.update(
            timestamp=self.formatTime(record, self.datefmt),
            level=record.levelname,
            logger=record.name,
            module=record.module,
            function=record.funcName,
            line=record.lineno,
        )
        correlation_id = getattr(record, "correlation_id", "")
        if correlation_id:
            log_record["correlation_id"] = correlation_id
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            log_record["stack_info"] = self.formatStack(record.stack_info)


def _build_formatter(json_format: bool) -> logging.Formatter:
    if json_format:
        return CustomJsonFormatter(_JSON_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    return CompactExceptionFormatter(fmt=_TEXT_FORMAT, datefmt="%H:%M:%S")


# Listen future me, the FastAPI lifespan calls this once at startup. Existing root handlers
# are replaced rather than stacked, so calling it again from tests is fine.
def configure_logging(
    log_level: str = "INFO",
    json_format: bool = False,
    app_name: str = "peekstash",
) -> None:
    """Route all logging to stdout at ``log_level``.

    Args:
        log_level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL). Unknown names fall back to INFO.
        json_format: Emit JSON objects instead of the compact text layout.
        app_name: Reported once in the "Logging configured" line.
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(_build_formatter(json_format))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging configured",
        extra={"app_name": app_name, "log_level": log_level, "json_format": json_format},
    )
