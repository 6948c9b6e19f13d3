"""
Structured logging for the object cache.

Provides:
- Context variables for cycle_id, phase, component (using contextvars)
- JSONFormatter for machine-readable logs to file
- RichHandler for pretty console output
- ContextLogger wrapper that attaches context to all log calls
- setup_logging() that configures both file and console handlers
- Context manager log_context() for scoped context
- get_logger() factory
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator

from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

# Context variables for structured logging
_cycle_id_var: ContextVar[str | None] = ContextVar("cycle_id", default=None)
_phase_var: ContextVar[str | None] = ContextVar("phase", default=None)
_component_var: ContextVar[str | None] = ContextVar("component", default=None)


def get_cycle_id() -> str | None:
    """Get the current reclamation cycle ID from context."""
    return _cycle_id_var.get()


def get_phase() -> str | None:
    """Get the current reclamation phase from context."""
    return _phase_var.get()


def get_component() -> str | None:
    """Get the current component name from context."""
    return _component_var.get()


def _current_context() -> dict[str, str]:
    context: dict[str, str] = {}
    cycle_id = get_cycle_id()
    phase = get_phase()
    component = get_component()
    if cycle_id:
        context["cycle_id"] = cycle_id
    if phase:
        context["phase"] = phase
    if component:
        context["component"] = component
    return context


@contextmanager
def log_context(
    cycle_id: str | None = None,
    phase: str | None = None,
    component: str | None = None,
) -> Generator[None, None, None]:
    """Context manager for scoped logging context.

    Args:
        cycle_id: Reclamation cycle ID to set in context.
        phase: Phase name (expiration, eviction) to set in context.
        component: Component name (gateway, scheduler) to set in context.

    Yields:
        None. Context variables are set for the duration of the context.
    """
    tokens = []
    if cycle_id is not None:
        tokens.append((_cycle_id_var, _cycle_id_var.set(cycle_id)))
    if phase is not None:
        tokens.append((_phase_var, _phase_var.set(phase)))
    if component is not None:
        tokens.append((_component_var, _component_var.set(component)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


class JSONFormatter(logging.Formatter):
    """JSON formatter for machine-readable log files.

    Produces JSON Lines format with structured context.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON."""
        log_obj: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_obj.update(_current_context())

        if hasattr(record, "extra"):
            log_obj["extra"] = record.extra

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, default=str)


class ContextRichHandler(RichHandler):
    """Rich handler that includes cycle context and fields in console output."""

    def get_level_text(self, record: logging.LogRecord) -> Text:
        """Override to add context prefix."""
        level_text = super().get_level_text(record)

        parts: list[str] = []
        cycle_id = get_cycle_id()
        phase = get_phase()
        component = get_component()

        if cycle_id:
            parts.append(f"[dim]{cycle_id[-8:]}[/dim]")
        if phase:
            parts.append(f"[cyan]{phase}[/cyan]")
        if component:
            parts.append(f"[magenta]{component}[/magenta]")

        if parts:
            return Text.from_markup(f"{level_text} {' '.join(parts)}")

        return level_text

    def render_message(self, record: logging.LogRecord, message: str):  # type: ignore[override]
        fields = getattr(record, "extra", None) or {}
        shown = {k: v for k, v in fields.items() if k not in ("cycle_id", "phase", "component")}
        if shown:
            message = f"{message} " + " ".join(f"{k}={v}" for k, v in shown.items())
        return super().render_message(record, message)


class ContextLogger:
    """Logger wrapper that automatically attaches context to log calls.

    Keyword arguments other than the standard logging ones become
    structured fields: ``logger.info("Deleted", key="a", size=10)``.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    @property
    def name(self) -> str:
        """Get the logger name."""
        return self._logger.name

    def isEnabledFor(self, level: int) -> bool:
        return self._logger.isEnabledFor(level)

    def _log(
        self,
        level: int,
        msg: str,
        *args: Any,
        exc_info: bool = False,
        **kwargs: Any,
    ) -> None:
        """Internal logging method that adds context."""
        extra = kwargs.pop("extra", {})
        extra.update(_current_context())

        for key in list(kwargs.keys()):
            if key not in ("stack_info", "stacklevel"):
                extra[key] = kwargs.pop(key)

        self._logger.log(level, msg, *args, exc_info=exc_info, extra={"extra": extra})

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log debug message."""
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log info message."""
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log warning message."""
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, exc_info: bool = False, **kwargs: Any) -> None:
        """Log error message."""
        self._log(logging.ERROR, msg, *args, exc_info=exc_info, **kwargs)

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log exception with traceback."""
        self._log(logging.ERROR, msg, *args, exc_info=True, **kwargs)


_console: Console | None = None
_setup_done: bool = False


def get_console() -> Console:
    """Get the global rich console."""
    global _console
    if _console is None:
        _console = Console(stderr=True)
    return _console


def setup_logging(
    log_level: str = "INFO",
    log_file: Path | None = None,
    console_output: bool = True,
) -> None:
    """Set up logging with JSON file handler and rich console handler.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Path to log file. If None, only console logging is enabled.
        console_output: Whether to enable console output.
    """
    global _setup_done

    root_logger = logging.getLogger("oc")
    root_logger.setLevel(getattr(logging, log_level.upper()))
    root_logger.handlers.clear()

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        file_handler.setLevel(logging.DEBUG)
        root_logger.addHandler(file_handler)

    if console_output:
        rich_handler = ContextRichHandler(
            console=get_console(),
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
            tracebacks_show_locals=False,
            markup=False,
        )
        rich_handler.setLevel(getattr(logging, log_level.upper()))
        root_logger.addHandler(rich_handler)

    root_logger.propagate = False

    for noisy_logger in ["aiosqlite", "asyncio", "httpx", "uvicorn.access"]:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    _setup_done = True


def get_logger(name: str) -> ContextLogger:
    """Get a context-aware logger.

    Args:
        name: Logger name (usually __name__).

    Returns:
        ContextLogger wrapper around the standard logger.
    """
    if not _setup_done:
        setup_logging()

    if name != "oc" and not name.startswith("oc."):
        name = f"oc.{name}"

    return ContextLogger(logging.getLogger(name))
