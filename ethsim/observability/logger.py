"""structlog setup for the simulator.

Every event goes through stdlib logging so the console, the log file and
third-party loggers (httpx, telegram) share one format. Per-request
context (``user_id`` in bot handlers, ``tick_id`` in the poller) is bound
with ``log_context`` and merged into every event logged inside it.

The Telegram bot token appears in every Bot API URL; it is scrubbed from
all string values, not only from fields named like a secret.
"""

from __future__ import annotations

import logging
import os
import re
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

import structlog

_SECRET_KEYS = frozenset({"token", "bot_token", "telegram_bot_token"})
# <numeric bot id>:<35-char secret>, as embedded in https://api.telegram.org/bot<token>/...
_TOKEN_RE = re.compile(r"\d{5,}:[A-Za-z0-9_-]{20,}")

_configured_by: str | None = None  # "default" | "explicit"
_handlers: list[logging.Handler] = []


def scrub(value: str) -> str:
    return _TOKEN_RE.sub("***", value)


def _redact_processor(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    for key, value in list(event_dict.items()):
        if key.lower() in _SECRET_KEYS:
            event_dict[key] = "***REDACTED***"
        elif isinstance(value, str):
            event_dict[key] = scrub(value)
    return event_dict


class _ScrubFilter(logging.Filter):
    """Scrub tokens from records emitted by plain stdlib loggers."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = scrub(record.msg)
        if record.args:
            record.args = tuple(scrub(a) if isinstance(a, str) else a for a in record.args)
        return True


def configure_logging(
    level: str = "INFO",
    fmt: str = "json",
    log_file: str | None = None,
    *,
    default: bool = False,
) -> None:
    """Install handlers and the structlog pipeline.

    An explicit call (the CLI, after reading config.yaml) replaces the
    env-driven default that ``get_logger`` installs on first use; a second
    explicit call is a no-op.
    """
    global _configured_by
    if _configured_by == "explicit" or (_configured_by == "default" and default):
        return

    log_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    for old in _handlers:
        root.removeHandler(old)
        old.close()
    _handlers.clear()

    _handlers.append(logging.StreamHandler(sys.stderr))
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        _handlers.append(logging.FileHandler(str(log_path)))

    shared: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        _redact_processor,
    ]
    if fmt == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    formatter = structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=shared)
    for handler in _handlers:
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        handler.addFilter(_ScrubFilter())
        root.addHandler(handler)
    root.setLevel(log_level)

    # Per-request lines from these libraries carry the bot token and are noise at INFO
    for noisy in ("httpx", "telegram.ext.Updater"):
        logging.getLogger(noisy).setLevel(max(log_level, logging.WARNING))

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _configured_by = "default" if default else "explicit"


@contextmanager
def log_context(**values: Any) -> Iterator[None]:
    """Bind ``values`` to every event logged inside the block."""
    with structlog.contextvars.bound_contextvars(**values):
        yield


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    if _configured_by is None:
        configure_logging(
            level=os.environ.get("LOG_LEVEL", "INFO"),
            fmt=os.environ.get("LOG_FORMAT", "console"),
            default=True,
        )
    return structlog.get_logger(name)
