"""
Rich console logging for pbrtapi.

Every module asks ``RichLogger.get_logger("pbrtapi.<module>")`` for its
logger. Console output goes to stderr so that commands which print scene
paths or fingerprints on stdout stay machine-readable. Optional log files
are shared by every logger.
"""

import logging
import os
from typing import Any, Dict, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme
from rich.traceback import install

install(show_locals=False)

# Between INFO and WARNING, used when a model or render step completes
SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "success": SUCCESS,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def level_from_name(name: Any, default: int = logging.INFO) -> int:
    """Map a level name such as ``"debug"`` to its numeric value."""
    if isinstance(name, int):
        return name
    return LEVELS.get(str(name).lower(), default)


def _success(self: logging.Logger, message: str, *args: Any, **kwargs: Any) -> None:
    if self.isEnabledFor(SUCCESS):
        self._log(SUCCESS, message, args, **kwargs)


class RichLogger:
    """
    Factory and registry for the project's loggers.
    """

    _loggers: Dict[str, logging.Logger] = {}
    _file_handlers: Dict[str, logging.FileHandler] = {}

    THEME = {
        "logging.level.success": "green bold",
        "logging.level.warning": "yellow",
        "logging.level.error": "red bold",
        "logging.level.critical": "red bold reverse",
        "repr.path": "magenta",
    }

    @classmethod
    def _console_handler(cls, theme: Optional[Dict[str, str]] = None) -> RichHandler:
        styles = dict(cls.THEME)
        styles.update(theme or {})
        # Scene paths contain brackets, so markup stays off
        handler = RichHandler(
            console=Console(theme=Theme(styles), stderr=True),
            rich_tracebacks=True,
            tracebacks_show_locals=False,
            markup=False,
            show_path=True,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        return handler

    @classmethod
    def get_logger(
        cls,
        name: str,
        log_level: int = logging.INFO,
        log_file: Optional[str] = None,
        theme: Optional[Dict[str, str]] = None,
    ) -> logging.Logger:
        """
        Get a configured logger instance.

        Args:
            name: Dotted logger name, e.g. ``"pbrtapi.utils.cache"``
            log_level: Initial level
            log_file: Optional file that also receives this logger's records
            theme: Style overrides for the console

        Returns:
            The logger; repeated calls with one name return the same object
        """
        if name in cls._loggers:
            return cls._loggers[name]

        logger = logging.getLogger(name)
        logger.setLevel(log_level)
        logger.propagate = False
        logger.handlers.clear()
        logger.addHandler(cls._console_handler(theme))

        for handler in cls._file_handlers.values():
            logger.addHandler(handler)
        if log_file:
            cls.add_file_handler(log_file, logger)

        logger.success = _success.__get__(logger)
        cls._loggers[name] = logger
        return logger

    @classmethod
    def add_file_handler(cls, log_file: str, logger: Optional[logging.Logger] = None) -> None:
        """
        Send records to ``log_file`` as well as the console.

        Args:
            log_file: Path of the log file; its folder is created
            logger: Only this logger, or every known logger when None
        """
        handler = cls._file_handlers.get(log_file)
        if handler is None:
            try:
                log_dir = os.path.dirname(log_file)
                if log_dir:
                    os.makedirs(log_dir, exist_ok=True)
                handler = logging.FileHandler(log_file, encoding="utf-8")
            except OSError as e:
                logging.getLogger("pbrtapi").warning(f"Cannot log to {log_file}: {e}")
                return
            handler.setFormatter(logging.Formatter(FILE_FORMAT))
            cls._file_handlers[log_file] = handler

        targets = [logger] if logger is not None else list(cls._loggers.values())
        for target in targets:
            if handler not in target.handlers:
                target.addHandler(handler)

    @classmethod
    def set_level(cls, level_name: Any) -> None:
        """Set the level of every known logger."""
        level = level_from_name(level_name)
        for logger in cls._loggers.values():
            logger.setLevel(level)

    @classmethod
    def configure_from_settings(cls, settings: Dict[str, Any]) -> None:
        """
        Apply the ``logging`` section of the configuration.

        Args:
            settings: Mapping with ``file``, ``level``, ``console`` and ``debug`` keys
        """
        log_file = settings.get("file")
        log_level = settings.get("level", "INFO")
        debug = settings.get("debug", {})

        cls.set_level(log_level)
        if log_file:
            cls.add_file_handler(log_file)

        if not settings.get("console", True):
            for logger in cls._loggers.values():
                for handler in [h for h in logger.handlers if isinstance(h, RichHandler)]:
                    logger.removeHandler(handler)

        install(show_locals=debug.get("show_locals", False))

        if debug.get("log_config", False):
            logger = cls.get_logger("pbrtapi.config")
            logger.debug(
                f"Logging: level={log_level} file={log_file or 'None'} "
                f"console={settings.get('console', True)} debug={debug.get('enabled', False)}"
            )
