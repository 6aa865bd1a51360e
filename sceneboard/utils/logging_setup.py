from __future__ import annotations

import contextvars
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional

LOG_FIELDS = ("session_id", "scene_id", "operation")
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(session_id)s | %(scene_id)s | %(operation)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Copied into every asyncio task at creation, so a scene task keeps the
# session/scene/operation of the request that submitted it.
_CONTEXT_VARS: Dict[str, contextvars.ContextVar[Optional[str]]] = {
    field: contextvars.ContextVar(f"log_{field}", default=None) for field in LOG_FIELDS
}


def current_log_context() -> Dict[str, str]:
    """Fields set by the enclosing log_context blocks, unset ones omitted."""
    context = {}
    for field, var in _CONTEXT_VARS.items():
        value = var.get()
        if value is not None:
            context[field] = value
    return context


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        context = current_log_context()
        for field in LOG_FIELDS:
            setattr(record, field, context.get(field, "-"))
        return True


@contextmanager
def log_context(**fields) -> Iterator[None]:
    """
    Tag log records emitted inside the block, e.g.
    ``with log_context(session_id=sid, scene_id=3, operation="animate")``.

    None values leave the outer value in place; blocks nest.
    """
    unknown = set(fields) - set(LOG_FIELDS)
    if unknown:
        raise TypeError(f"Unknown log context fields: {sorted(unknown)}")
    tokens = []
    for field, value in fields.items():
        if value is not None:
            var = _CONTEXT_VARS[field]
            tokens.append((var, var.set(str(value))))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")
    return resolved


def configure_logging(
    log_file: str = "logs/sceneboard.log",
    level: int | str = logging.INFO,
    enable_console: bool = False,
    force: bool = False,
) -> logging.Logger:
    root = logging.getLogger()
    if getattr(root, "_sceneboard_logging_configured", False) and not force:
        return root

    if force:
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()

    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
    context_filter = ContextFilter()

    # Filters sit on the handlers: records propagated from child loggers skip root's own filters.
    handlers = [logging.FileHandler(log_path, encoding="utf-8")]
    if enable_console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(context_filter)
        root.addHandler(handler)

    root.setLevel(_resolve_level(level))
    logging.captureWarnings(True)
    root._sceneboard_logging_configured = True
    return root
