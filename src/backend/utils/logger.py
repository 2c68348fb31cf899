"""
Logging for MCP Chat Relay: standard ``logging`` with python-json-logger.

Destinations:
- stderr: colored one-line records for humans
- logs/conversations.jsonl: INFO and above (chat turns, tool calls), JSON
- logs/errors.jsonl: ERROR and above, JSON

Message and tool payloads stay out of the logs unless ENABLE_CONTENT_LOGGING
is on, and even then pass through PII redaction first.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import uuid

from pathlib import Path
from typing import Any, cast

from pythonjsonlogger import json as jsonlogger

from api.middleware.request_context import get_request_context
from core.constants import (
    LOG_BACKUP_COUNT_CONVERSATIONS,
    LOG_BACKUP_COUNT_ERRORS,
    LOG_MAX_SIZE,
    LOG_PREVIEW_LENGTH,
    PROJECT_ROOT,
    SESSION_ID_LENGTH,
    get_settings,
)

DEFAULT_LOGGER_NAME = "mcp-chat-relay"

# Applied in order; the API key pattern must run before the generic secret one
REDACTION_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b"), "[EMAIL]"),
    (re.compile(r"\b(?:\d{4}[- ]?){3}\d{4}\b"), "[CARD]"),
    (re.compile(r"\b(sk-|pk-|api[-_]?key[-_]?)[A-Za-z0-9]{20,}\b"), "[API_KEY]"),
    (re.compile(r"\b(password|secret|token)\s*[:=]\s*\S+"), "[REDACTED]"),
]

_CONVERSATION_FIELDS = "%(timestamp)s %(levelname)s %(message)s %(request_id)s %(chat_mode)s %(tool)s"
_ERROR_FIELDS = "%(timestamp)s %(levelname)s %(name)s %(message)s"


def redact(text: str) -> str:
    for pattern, replacement in REDACTION_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class MinLevelFilter(logging.Filter):
    """Pass records at or above ``level``."""

    def __init__(self, level: int):
        super().__init__()
        self.level = level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= self.level


class ColoredConsoleFormatter(logging.Formatter):
    """``HH:MM:SS [LEVEL] logger - message`` with the level (and HTTP status) colored."""

    RESET = "\x1b[0m"
    BOLD = "\x1b[1m"
    LEVEL_COLORS = {
        logging.DEBUG: "\x1b[38;20m",
        logging.INFO: "\x1b[32;20m",
        logging.WARNING: "\x1b[33;20m",
        logging.ERROR: "\x1b[31;20m",
        logging.CRITICAL: "\x1b[31;1m",
    }

    def _paint(self, text: str, level: int) -> str:
        color = self.LEVEL_COLORS.get(level)
        return f"{color}{text}{self.RESET}" if color else text

    def _access_message(self, args: tuple[Any, ...]) -> str:
        # uvicorn.access args: (client_addr, method, full_path, http_version, status_code)
        client_addr, method, full_path, http_version, status_code = args
        status = int(cast(Any, status_code))
        level = logging.INFO if status < 400 else logging.WARNING if status < 500 else logging.ERROR
        return (
            f'{client_addr} - "{self.BOLD}{method}{self.RESET} {full_path} HTTP/{http_version}" '
            f"{self._paint(str(status_code), level)}"
        )

    def format(self, record: logging.LogRecord) -> str:
        record.asctime = self.formatTime(record, "%H:%M:%S")
        access = record.name == "uvicorn.access" and isinstance(record.args, tuple) and len(record.args) == 5
        message = self._access_message(cast(tuple, record.args)) if access else record.getMessage()

        line = f"{record.asctime} {self._paint(f'[{record.levelname}]', record.levelno)} {record.name} - {message}"
        if record.exc_info and not access:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_uvicorn_logging() -> None:
    """Route uvicorn's own loggers through the relay's console format."""
    logging.getLogger("uvicorn").handlers = []
    logging.getLogger("uvicorn").setLevel(logging.INFO)

    for name in ("uvicorn.access", "uvicorn.error"):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(ColoredConsoleFormatter())
        uv_logger = logging.getLogger(name)
        uv_logger.handlers = [handler]
        uv_logger.setLevel(logging.INFO)
        uv_logger.propagate = False


def _json_file_handler(path: Path, level: int, backup_count: int, fields: str) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=LOG_MAX_SIZE, backupCount=backup_count, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.addFilter(MinLevelFilter(level))
    handler.setFormatter(jsonlogger.JsonFormatter(fields, timestamp=True))
    return handler


def setup_logging(
    name: str = DEFAULT_LOGGER_NAME,
    debug: bool | None = None,
    log_dir: Path | None = None,
) -> logging.Logger:
    """Configure ``name`` with the console handler and both JSONL files.

    Args:
        name: Logger name
        debug: Show DEBUG on the console; read from the DEBUG env var when None
        log_dir: Directory for the JSONL files (default ``<project>/logs``)
    """
    if debug is None:
        debug = os.getenv("DEBUG", "false").lower() in ("true", "1", "yes")
    log_dir = log_dir or PROJECT_ROOT / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG if debug else logging.INFO)
    console.setFormatter(ColoredConsoleFormatter())

    relay_logger = logging.getLogger(name)
    relay_logger.setLevel(logging.DEBUG)
    relay_logger.handlers = [
        console,
        _json_file_handler(
            log_dir / "conversations.jsonl", logging.INFO, LOG_BACKUP_COUNT_CONVERSATIONS, _CONVERSATION_FIELDS
        ),
        _json_file_handler(log_dir / "errors.jsonl", logging.ERROR, LOG_BACKUP_COUNT_ERRORS, _ERROR_FIELDS),
    ]
    return relay_logger


class ChatLogger:
    """Relay-wide logger.

    Keyword arguments become structured ``extra`` fields, merged with the
    current request context and a per-process instance ID.
    """

    def __init__(self, name: str = DEFAULT_LOGGER_NAME):
        self.logger = setup_logging(name)
        self.instance_id = uuid.uuid4().hex[:SESSION_ID_LENGTH]

    def _extra(self, fields: dict[str, Any]) -> dict[str, Any]:
        fields.setdefault("instance_id", self.instance_id)
        if ctx := get_request_context():
            fields.update(ctx.to_log_context())
        return fields

    def debug(self, message: str, **kwargs: Any) -> None:
        self.logger.debug(message, extra=self._extra(kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        self.logger.info(message, extra=self._extra(kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        self.logger.warning(message, extra=self._extra(kwargs))

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        self.logger.error(message, extra=self._extra(kwargs), exc_info=exc_info)

    def _should_log_content(self) -> bool:
        try:
            return bool(get_settings().enable_content_logging)
        except Exception:
            # Unloadable settings (bad env) keep payloads hidden
            return False

    def _preview(self, value: Any) -> str:
        text = redact(str(value).replace("\n", " "))
        return text if len(text) <= LOG_PREVIEW_LENGTH else text[:LOG_PREVIEW_LENGTH] + "..."

    def log_chat_turn(
        self,
        mode: str,
        message_count: int,
        duration_ms: float | None = None,
        tool_names: list[str] | None = None,
        outcome: str = "completed",
    ) -> None:
        """One INFO line per finished turn. Never includes message text."""
        summary = f"Chat turn {outcome}: mode={mode} messages={message_count}"
        fields: dict[str, Any] = {"chat_turn": True, "chat_mode": mode, "messages": message_count, "outcome": outcome}
        if tool_names:
            summary += f" [{len(tool_names)} tools]"
            fields["tool_names"] = tool_names
        if duration_ms is not None:
            summary += f" [{duration_ms:.0f}ms]"
            fields["ms"] = int(duration_ms)

        self.logger.info(summary, extra=self._extra(fields))

    def log_function_call(self, function_name: str, args: dict[str, Any], result: Any, success: bool = True) -> None:
        """One INFO line per MCP tool call; arguments and result only with content logging."""
        show_content = self._should_log_content()
        status = "ok" if success else "error"
        if show_content:
            message = f"Tool call: {function_name}({self._preview(args)}) -> {status}: {self._preview(result)}"
        else:
            message = f"Tool call: {function_name}(...) -> {status}: [HIDDEN]"

        self.logger.info(
            message,
            extra=self._extra({"tool": function_name, "success": success, "content_logging": show_content}),
        )


logger = ChatLogger()
