"""Logging configuration for the controller.

Every module gets its logger through `getLogger`, which keeps all
loggers below `runner_controller`:

``` python
import runner_controller.app_config.logging as logging

logger = logging.getLogger(__name__)
```

A reconcile pass wraps its logger with `with_runner`, so every line it
emits names the runner (`namespace/name`) it belongs to. In json
format the runner is a separate `runner` field.

`configure_logging()` must run once at startup, before anything logs.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from logging import Logger, LoggerAdapter
from typing import Any, Final

from runner_controller.errors.errors import ConfigurationError

__app_root_logger: Final[str] = "runner_controller"

# Client libraries that log every request to the API server at INFO.
_CHATTY_LOGGERS: Final[tuple[str, ...]] = ("httpx", "httpcore", "kr8s")


def getLogger(name: str) -> Logger:
    """Return a logger with the name prefixed with our app name, if not already done."""
    if name.startswith(__app_root_logger + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{__app_root_logger}.{name}")


def with_runner(logger: Logger, runner: str) -> LoggerAdapter:
    """Amend `logger` adding the `runner` key (`namespace/name`) to every log message."""
    return _RunnerAdapter(logger, {"runner": runner})


class _RunnerAdapter(LoggerAdapter):
    def process(self, msg: str, kwargs: MutableMapping[str, Any]) -> tuple[str, MutableMapping[str, Any]]:
        runner = (self.extra or {}).get("runner")
        kwargs["extra"] = {**(self.extra or {}), **(kwargs.get("extra") or {})}
        return f"[{runner}] {msg}", kwargs


class _ControllerLogFormatter(logging.Formatter):
    """Plain single line format with ISO-8601 UTC timestamps."""

    def __init__(self) -> None:
        super().__init__(fmt="%(asctime)s [%(levelname)s] %(name)s (%(filename)s:%(lineno)d) - %(message)s")

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        return datetime.fromtimestamp(record.created, UTC).isoformat(timespec="milliseconds")


class _ControllerJsonFormatter(_ControllerLogFormatter):
    """One json object per line, extra record attributes become top level fields."""

    fields: Final[tuple[str, ...]] = ("name", "pathname", "module", "lineno")
    _builtin_attrs: Final[frozenset[str]] = frozenset(
        logging.LogRecord("", 0, "", 0, None, None, None).__dict__
    ).union({"asctime", "message", "taskName"})

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "message": record.getMessage(),
            **{f: getattr(record, f, None) for f in self.fields},
            **{k: v for k, v in record.__dict__.items() if k not in self._builtin_attrs},
        }
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class LogFormatStyle(StrEnum):
    """Supported log formats."""

    plain = "plain"
    json = "json"

    def to_formatter(self) -> logging.Formatter:
        """Return the formatter instance corresponding to this format style."""
        match self:
            case LogFormatStyle.json:
                return _ControllerJsonFormatter()
            case _:
                return _ControllerLogFormatter()


def _level(name: str) -> int:
    level = logging.getLevelNamesMapping().get(name.upper())
    if level is None:
        raise ConfigurationError(message=f"Logging config problem: level name '{name}' is not known.")
    return level


def _override_levels_from_env(prefix: str) -> dict[int, list[str]]:
    """Read `{prefix}{LEVEL}_LOGGING=name.one,name.two` for every known level."""
    levels: dict[int, list[str]] = {}
    for name, level in logging.getLevelNamesMapping().items():
        value = os.environ.get(f"{prefix}{name}_LOGGING", "").strip()
        for logger_name in (n.strip() for n in value.split(",") if n.strip()):
            names = levels.setdefault(level, [])
            if logger_name not in names:
                names.append(logger_name)
    return levels


@dataclass
class Config:
    """Configuration for logging."""

    format_style: LogFormatStyle = LogFormatStyle.plain
    root_level: int = logging.WARNING
    app_level: int = logging.INFO
    override_levels: dict[int, list[str]] = field(default_factory=dict)

    def update_override_levels(self, others: dict[int, list[str]]) -> None:
        """Add the given logger names to the override levels."""
        for level, names in others.items():
            current = self.override_levels.get(level, [])
            self.override_levels[level] = current + [n for n in names if n not in current]

    @classmethod
    def from_env(cls, prefix: str = "") -> Config:
        """Read `LOG_ROOT_LEVEL`, `LOG_APP_LEVEL`, `LOG_FORMAT_STYLE` and `{LEVEL}_LOGGING`."""
        style = os.environ.get(f"{prefix}LOG_FORMAT_STYLE", "plain").lower()
        return Config(
            format_style=LogFormatStyle.json if style == "json" else LogFormatStyle.plain,
            root_level=_level(os.environ.get(f"{prefix}LOG_ROOT_LEVEL", "WARNING")),
            app_level=_level(os.environ.get(f"{prefix}LOG_APP_LEVEL", "INFO")),
            override_levels=_override_levels_from_env(prefix),
        )


def configure_logging(cfg: Config | None = None) -> None:
    """Install a single stream handler on the root logger.

    The root logger uses `root_level`, everything below
    `runner_controller` uses `app_level`, and the HTTP client libraries
    are held at WARNING. `override_levels` then sets the threshold of
    individual loggers, by default read from environment variables like
    `DEBUG_LOGGING=runner_controller.runner,kr8s`.
    """
    if cfg is None:
        cfg = Config.from_env()
    # imported libraries may have installed their own handlers
    loggers = [lg for lg in logging.Logger.manager.loggerDict.values() if isinstance(lg, Logger)]
    for lg in [*loggers, logging.root]:
        lg.setLevel(logging.NOTSET)
        for hdl in list(lg.handlers):
            lg.removeHandler(hdl)

    handler = logging.StreamHandler()
    handler.setFormatter(cfg.format_style.to_formatter())
    logging.root.setLevel(cfg.root_level)
    logging.root.addHandler(handler)
    logging.getLogger(__app_root_logger).setLevel(cfg.app_level)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = getLogger(__name__)
    for level, names in cfg.override_levels.items():
        for name in names:
            logger.info(f"Set threshold level: {name} -> {logging.getLevelName(level)}")
            logging.getLogger(name).setLevel(level)
