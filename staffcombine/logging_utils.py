from __future__ import annotations

"""Logging helpers for structured payloads and contextual metadata."""

from typing import Any, Dict, Optional
from pathlib import Path
import logging
import logging.config
import json
from datetime import datetime, timezone
import os
import sys
import contextvars

from staffcombine.config import _app_env, project_root


LOGGING_CONFIG_DIR = Path(__file__).resolve().parent / "logging_config"


def summarize_payload(value: Any, *, max_list: int = 20, max_str: int = 200, depth: int = 3) -> Any:
    """Return a safe, size-limited summary of a payload for logging."""
    if depth <= 0:
        return f"<{type(value).__name__}>"
    if hasattr(value, "summary") and callable(value.summary):
        return summarize_payload(value.summary(), max_list=max_list, max_str=max_str, depth=depth)
    if isinstance(value, dict):
        items = list(value.items())
        summarized: Dict[str, Any] = {}
        for key, val in items[:max_list]:
            summarized[str(key)] = summarize_payload(val, max_list=max_list, max_str=max_str, depth=depth - 1)
        if len(items) > max_list:
            summarized["__truncated__"] = True
            summarized["__len__"] = len(items)
        return summarized
    if isinstance(value, (list, tuple)):
        if len(value) > max_list:
            return {
                "__len__": len(value),
                "sample": [
                    summarize_payload(item, max_list=max_list, max_str=max_str, depth=depth - 1)
                    for item in value[:5]
                ],
            }
        return [
            summarize_payload(item, max_list=max_list, max_str=max_str, depth=depth - 1)
            for item in value
        ]
    if isinstance(value, str):
        if len(value) > max_str:
            return value[:max_str] + "...(truncated)"
        return value
    if isinstance(value, bytes):
        return {"__bytes__": len(value)}
    if isinstance(value, Path):
        return str(value)
    return value



DEFAULT_LOG_FORMAT = (
    "%(asctime)s %(levelname)s %(name)s %(filename)s:%(lineno)d:%(funcName)s "
    "task_id=%(task_id)s staff_id=%(staff_id)s %(message)s"
)


_task_id = contextvars.ContextVar("log_task_id", default="-")
_staff_id = contextvars.ContextVar("log_staff_id", default="-")


def set_log_context(*, task_id: Optional[str] = None, staff_id: Optional[int | str] = None) -> None:
    """Set context variables for log enrichment."""
    if task_id is not None:
        _task_id.set(task_id)
    if staff_id is not None:
        _staff_id.set(str(staff_id))


def clear_log_context() -> None:
    """Reset log context variables to their default values."""
    _task_id.set("-")
    _staff_id.set("-")


class LoggingContextFilter(logging.Filter):
    """Inject task/staff IDs into each log record."""
    def filter(self, record: logging.LogRecord) -> bool:
        record.task_id = _task_id.get()
        record.staff_id = _staff_id.get()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record, carrying the combine context."""
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "task_id": getattr(record, "task_id", "-"),
            "staff_id": getattr(record, "staff_id", "-"),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


def _use_json_logs() -> bool:
    """Return True when environment config requests JSON logs."""
    return os.getenv("LOG_FORMAT", "").lower() == "json" or os.getenv(
        "LOG_JSON", ""
    ).lower() in {"1", "true", "yes"}


def is_dev_env() -> bool:
    """Return True when running in development-like environments."""
    return _app_env().lower() in {"dev", "development", "local", "test"}


def _file_logs_enabled() -> bool:
    return os.getenv("STAFFCOMBINE_LOG_FILES", "").lower() in {"1", "true", "yes"}


def build_formatter() -> logging.Formatter:
    """Build the active log formatter based on environment settings."""
    if _use_json_logs():
        return JsonFormatter()
    return logging.Formatter(DEFAULT_LOG_FORMAT)


def attach_context_filter(handler: logging.Handler) -> None:
    """Ensure a handler includes the logging context filter."""
    if not any(isinstance(f, LoggingContextFilter) for f in handler.filters):
        handler.addFilter(LoggingContextFilter())


def logging_config_path() -> Path:
    """Packaged dev/prod config, or LOG_CONFIG resolved against the project root."""
    override = os.getenv("LOG_CONFIG")
    if override:
        candidate = Path(override).expanduser()
        return candidate if candidate.is_absolute() else project_root() / candidate
    app_env = _app_env().lower()
    name = "logging.prod.json" if app_env in {"prod", "production"} else "logging.dev.json"
    return LOGGING_CONFIG_DIR / name


def configure_logging() -> None:
    """Load logging configuration and apply environment overrides.

    All console output goes to stderr; stdout belongs to the CLI report.
    """
    config_path = logging_config_path()
    if config_path.exists():
        with config_path.open("r", encoding="utf-8") as handle:
            config = json.load(handle)
        if _use_json_logs() and "json" in config.get("formatters", {}):
            for handler in config.get("handlers", {}).values():
                handler["formatter"] = "json"
        logging.config.dictConfig(config)
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(build_formatter())
        attach_context_filter(handler)
        logging.basicConfig(level=logging.INFO, handlers=[handler], force=True)
        logging.getLogger(__name__).warning(
            "Logging config %s not found, using stderr defaults", config_path
        )
    level_override = os.getenv("STAFFCOMBINE_LOG_LEVEL")
    if level_override:
        logging.getLogger().setLevel(level_override.upper())


def get_logger(module_name: str) -> logging.Logger:
    """Return a logger and attach a per-module file handler when enabled in dev."""
    logger = logging.getLogger(module_name)
    if getattr(logger, "_file_handler_attached", False):
        return logger
    if not is_dev_env() or not _file_logs_enabled():
        logger.propagate = True
        return logger
    log_dir = Path(os.getenv("STAFFCOMBINE_LOG_DIR", "logs"))
    log_dir.mkdir(parents=True, exist_ok=True)
    filename = module_name.replace(".", "_") + ".log"
    handler = logging.FileHandler(log_dir / filename, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(build_formatter())
    attach_context_filter(handler)
    logger.addHandler(handler)
    logger.propagate = True
    setattr(logger, "_file_handler_attached", True)
    return logger
