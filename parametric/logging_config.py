"""structlog setup for the ``parametric.*`` loggers.

``setup_logging`` sends every subsystem logger to its own rotating
file and to a combined ``parametric.log``, with console output on the
root logger. ``init_logging`` runs it once per process and is what
``ParametricBuilder.from_config`` calls.
"""

import logging
import logging.handlers
import re
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

SUBSYSTEMS = ("builder", "invoke", "security", "registry", "config")

LOGGER_PREFIX = "parametric"

# Event keys whose values are never written
_SECRET_KEY = re.compile(r"(?i)(password|passwd|secret|token|api_?key|credential)")

# ``password=hunter2`` inside raw command arguments
_SECRET_ARG = re.compile(r"(?i)\b(password|passwd|secret|token|api[_-]?key)=\S+")

_REDACTED = "***"

_configured = False


def _scrub_args(value: str) -> str:
    return _SECRET_ARG.sub(lambda m: f"{m.group(1)}={_REDACTED}", value)


def sanitize_secrets(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Redact secret-named fields and ``key=value`` secrets in raw arguments."""
    for key, value in event_dict.items():
        if key != "event" and _SECRET_KEY.search(key):
            event_dict[key] = _REDACTED
        elif isinstance(value, str):
            event_dict[key] = _scrub_args(value)
        elif isinstance(value, (list, tuple)):
            event_dict[key] = type(value)(
                _scrub_args(v) if isinstance(v, str) else v for v in value
            )
    return event_dict


def _level(name: Optional[str], default: int) -> int:
    if not name:
        return default
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else default


def _formatter(colors: bool, pre_chain: list) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=colors),
        ],
    )


def setup_logging(config=None) -> None:
    """Configure the stdlib handlers and route structlog through them.

    Without a config: INFO, ``./logs``, 10 MB files with 5 backups, and
    structlog loggers stay uncached so a later call can replace this.
    If the log directory cannot be created only the console is used.
    """
    if config is not None:
        log_dir = config.log_dir
        level = _level(config.logging_level, logging.INFO)
        subsystem_levels = config.logging_subsystem_levels
        max_bytes = config.logging_max_file_size_mb * 1024 * 1024
        backup_count = config.logging_backup_count
    else:
        log_dir = Path("logs")
        level = logging.INFO
        subsystem_levels = {}
        max_bytes = 10 * 1024 * 1024
        backup_count = 5

    shared = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        sanitize_secrets,
    ]
    file_formatter = _formatter(False, shared)

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        to_files = True
    except OSError as exc:
        print(
            f"WARNING: Cannot create log directory {log_dir}: {exc}. "
            "Falling back to console-only logging.",
            file=sys.stderr,
        )
        to_files = False

    def add_file(target: logging.Logger, filename: str, handler_level: int) -> None:
        handler = logging.handlers.RotatingFileHandler(
            log_dir / filename,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        handler.setLevel(handler_level)
        handler.setFormatter(file_formatter)
        target.addHandler(handler)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.handlers.clear()
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(_formatter(sys.stdout.isatty(), shared))
    root.addHandler(console)

    package_logger = logging.getLogger(LOGGER_PREFIX)
    package_logger.setLevel(logging.DEBUG)
    package_logger.handlers.clear()
    if to_files:
        add_file(package_logger, f"{LOGGER_PREFIX}.log", level)

    for subsystem in SUBSYSTEMS:
        sub_level = _level(subsystem_levels.get(subsystem), level)
        sub_logger = logging.getLogger(f"{LOGGER_PREFIX}.{subsystem}")
        sub_logger.setLevel(sub_level)
        sub_logger.handlers.clear()
        if to_files:
            add_file(sub_logger, f"{subsystem}.log", sub_level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=config is not None,
    )


def init_logging(config=None) -> bool:
    """Run ``setup_logging`` on the first call only.

    Returns True when logging was configured by this call.
    """
    global _configured
    if _configured:
        return False
    setup_logging(config)
    _configured = True
    return True
