"""Loguru configuration for SocialTree.

One patched logger is shared by every module. Records carry the context of
the user-facing action being served (a short request id, the acting user
and the operation name) so that fan-out writes issued on behalf of one
action can be grouped together in the logs.

Sinks:
    - console: colored lines in development, one JSON object per line when
      ``LOG_JSON`` is set (production and staging)
    - file: ``data_dir/socialtree.log`` when ``LOG_TO_FILE`` is set, rotated
      and compressed

Example:
    >>> from socialtree.logging import logger, operation_context
    >>> with operation_context("like_post", user_id="u1"):
    ...     logger.info("Liking post")
    >>> # JSON lines now carry request_id, user_id and operation
"""

import json
import sys
import traceback
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any

from loguru import logger as loguru_logger

from socialtree.config import settings

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
operation_var: ContextVar[str | None] = ContextVar("operation", default=None)

# Field name in JSON output -> context variable
CONTEXT_FIELDS: dict[str, ContextVar[str | None]] = {
    "request_id": request_id_var,
    "user_id": user_id_var,
    "operation": operation_var,
}

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> "
    "<level>{level.icon} {level: <7}</level> "
    "<dim>{name}.{function}:{line}</dim> "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} {level: <7} {name}:{line} {message}"


# =============================================================================
# JSON Records
# =============================================================================


def _exception_fields(exception: Any) -> dict[str, Any]:
    kind, value, tb = exception
    return {
        "type": kind.__name__ if kind else None,
        "value": str(value),
        "traceback": traceback.format_exception(kind, value, tb),
    }


def serialize(record: dict[str, Any]) -> str:
    """Render a loguru record as one JSON line.

    Context variables that are set and fields bound with ``logger.bind()``
    are added next to the standard fields.
    """
    payload: dict[str, Any] = {
        "time": record["time"].isoformat(),
        "level": record["level"].name,
        "logger": record["name"],
        "function": record["function"],
        "line": record["line"],
        "message": record["message"],
    }
    payload.update(
        (field, value) for field, var in CONTEXT_FIELDS.items() if (value := var.get())
    )
    payload.update(record["extra"])
    if record["exception"]:
        payload["exception"] = _exception_fields(record["exception"])
    return json.dumps(payload, default=str)


def patching(record: dict[str, Any]) -> None:
    record["serialized"] = serialize(record)


def custom_formatter(record: dict[str, Any]) -> str:
    """Loguru format callable emitting the pre-rendered JSON line."""
    return "{serialized}\n"


# =============================================================================
# Sinks
# =============================================================================


def setup_logging(
    level: str = "INFO",
    json_logs: bool = False,
    log_file: Path | None = None,
    colorize: bool = True,
) -> Any:
    """(Re)configure the loguru sinks and return the patched logger.

    Args:
        level: Minimum level for every sink
        json_logs: Emit JSON lines on stdout instead of colored text
        log_file: Also write to this file (rotated at 100 MB, kept 30 days)
        colorize: Color the console output (ignored for JSON)
    """
    loguru_logger.remove()
    patched = loguru_logger.patch(patching)

    if json_logs:
        patched.add(sys.stdout, level=level, format=custom_formatter)
    else:
        patched.add(sys.stdout, level=level, format=CONSOLE_FORMAT, colorize=colorize)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        patched.add(
            log_file,
            level=level,
            format=custom_formatter if json_logs else FILE_FORMAT,
            rotation="100 MB",
            retention="30 days",
            compression="zip",
            enqueue=True,
        )

    return patched


logger = setup_logging(
    level=settings.log_level,
    json_logs=settings.log_json,
    log_file=settings.data_dir / "socialtree.log" if settings.log_to_file else None,
    colorize=not settings.log_json,
)


# =============================================================================
# Action Context
# =============================================================================


def set_request_context(
    request_id: str | None = None,
    user_id: str | None = None,
    operation: str | None = None,
) -> None:
    """Set the given context fields; fields passed as None are left alone."""
    values = {"request_id": request_id, "user_id": user_id, "operation": operation}
    for field, value in values.items():
        if value is not None:
            CONTEXT_FIELDS[field].set(value)


def clear_request_context() -> None:
    for var in CONTEXT_FIELDS.values():
        var.set(None)


def get_request_context() -> dict[str, str | None]:
    return {field: var.get() for field, var in CONTEXT_FIELDS.items()}


@contextmanager
def operation_context(operation: str, user_id: str | None = None) -> Iterator[str]:
    """Scope logging context to one user-facing action.

    A fresh request id is generated for the block. Previous values are
    restored on exit, so nested actions do not leak into their callers.

    Args:
        operation: Operation name
        user_id: Acting user, if known

    Yields:
        The generated request id

    Example:
        >>> with operation_context("share_post", user_id="u1") as request_id:
        ...     logger.info("Sharing")
    """
    request_id = uuid.uuid4().hex[:12]
    tokens = [
        (request_id_var, request_id_var.set(request_id)),
        (operation_var, operation_var.set(operation)),
    ]
    if user_id:
        tokens.append((user_id_var, user_id_var.set(user_id)))
    try:
        yield request_id
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


__all__ = [
    "logger",
    "request_id_var",
    "user_id_var",
    "operation_var",
    "CONTEXT_FIELDS",
    "set_request_context",
    "clear_request_context",
    "get_request_context",
    "operation_context",
    "setup_logging",
    "serialize",
]
