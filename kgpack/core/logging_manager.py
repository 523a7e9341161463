from __future__ import annotations

import logging
import logging.handlers
import os
import pathlib
import sys
from typing import Any, Dict, List, Optional

import structlog
from pythonjsonlogger import jsonlogger

from kgpack.core.config_manager import ConfigManager


class LoggingManager:
    """Manages logging configuration and access.

    Configures Python's logging module with a console handler (and an
    optional rotating file handler) and sets up structlog on top of it.
    Components log through ``structlog.get_logger`` with key/value context.
    """

    # Mapping from string log levels to logging module constants
    LOG_LEVELS = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
        "critical": logging.CRITICAL,
    }

    def __init__(self, config_manager: ConfigManager) -> None:
        """Initialize the Logging Manager.

        Args:
            config_manager: The Configuration Manager to use for logging settings.
        """
        self._config_manager = config_manager
        self._root_logger: Optional[logging.Logger] = None
        self._console_handler: Optional[logging.Handler] = None
        self._file_handler: Optional[logging.Handler] = None
        self._handlers: List[logging.Handler] = []
        self._log_format = "text"
        self._initialized = False

    def initialize(self) -> None:
        """Set up handlers and structlog according to the ``logging`` section."""
        logging_config = self._config_manager.get("logging", {})
        log_level = self.LOG_LEVELS.get(str(logging_config.get("level", "INFO")).lower(), logging.INFO)
        self._log_format = str(logging_config.get("format", "text")).lower()

        self._root_logger = logging.getLogger()
        self._root_logger.setLevel(log_level)

        # Remove any existing handlers
        for handler in list(self._root_logger.handlers):
            self._root_logger.removeHandler(handler)

        formatter = self._create_formatter()

        if logging_config.get("console", {}).get("enabled", True):
            console_level_str = str(logging_config.get("console", {}).get("level", "INFO")).lower()
            self._console_handler = logging.StreamHandler(sys.stdout)
            self._console_handler.setLevel(self.LOG_LEVELS.get(console_level_str, logging.INFO))
            self._console_handler.setFormatter(formatter)
            self._root_logger.addHandler(self._console_handler)
            self._handlers.append(self._console_handler)

        file_config = logging_config.get("file", {})
        if file_config.get("enabled", False):
            file_path = pathlib.Path(file_config.get("path", "logs/kgpack.log"))
            os.makedirs(file_path.parent, exist_ok=True)

            # Parse rotation (e.g., "10 MB")
            rotation = file_config.get("rotation", "10 MB")
            if isinstance(rotation, str) and "MB" in rotation:
                max_bytes = int(rotation.split()[0]) * 1024 * 1024
            else:
                max_bytes = 10 * 1024 * 1024

            # Parse retention (e.g., "5 days")
            retention = file_config.get("retention", "5 days")
            if isinstance(retention, str) and "days" in retention:
                backup_count = int(retention.split()[0])
            else:
                backup_count = 5

            self._file_handler = logging.handlers.RotatingFileHandler(
                file_path,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
            self._file_handler.setLevel(log_level)
            self._file_handler.setFormatter(formatter)
            self._root_logger.addHandler(self._file_handler)
            self._handlers.append(self._file_handler)

        self._configure_structlog()
        self._initialized = True

    def _create_formatter(self) -> logging.Formatter:
        """Create the handler formatter for the configured log format.

        Returns:
            logging.Formatter: JSON formatter or a structlog console renderer.
        """
        if self._log_format == "json":
            return jsonlogger.JsonFormatter(
                fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
                datefmt="%Y-%m-%dT%H:%M:%S%z",
                json_ensure_ascii=False,
            )
        return structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(colors=False),
            foreign_pre_chain=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            ],
        )

    def _configure_structlog(self) -> None:
        """Configure structlog for structured logging."""
        processors: List[Any] = [
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
        ]
        if self._log_format == "json":
            processors.append(structlog.stdlib.render_to_log_kwargs)
        else:
            processors.insert(3, structlog.processors.TimeStamper(fmt="%H:%M:%S"))
            processors.append(structlog.stdlib.ProcessorFormatter.wrap_for_formatter)

        structlog.configure(
            processors=processors,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=False,
        )

    def shutdown(self) -> None:
        """Flush and close all handlers installed by this manager."""
        if not self._initialized:
            return

        for handler in self._handlers:
            if self._root_logger is not None:
                self._root_logger.removeHandler(handler)
            handler.flush()
            handler.close()
        self._handlers.clear()
        structlog.reset_defaults()
        self._initialized = False

    def status(self) -> Dict[str, Any]:
        """Get the status of the Logging Manager."""
        return {
            "initialized": self._initialized,
            "format": self._log_format,
            "handlers": len(self._handlers),
            "file_logging": self._file_handler is not None,
        }
