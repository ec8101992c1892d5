"""Application logging with rotation"""
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from dnsmasq_dhcp.config import settings

LOGGER_NAME = "dnsmasq-dhcp"


class OperationLogger:
    """Logger for tracking reservation changes with rotation."""

    def __init__(self, log_file: Optional[Path] = None, console_output: bool = False):
        self.log_file = log_file or settings.log_file
        self.console_output = console_output
        self._setup_logger()

    def _setup_logger(self):
        """Setup the logger with rotation."""
        self.logger = logging.getLogger(LOGGER_NAME)
        self.logger.setLevel(logging.DEBUG)
        # Root carries the same file handler
        self.logger.propagate = False

        # Clear any existing handlers
        self.logger.handlers.clear()

        self.log_file.parent.mkdir(parents=True, exist_ok=True)

        # Rotating file handler (100 MB max)
        file_handler = RotatingFileHandler(
            self.log_file,
            maxBytes=100 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8"
        )
        file_handler.setLevel(logging.DEBUG)

        # Format: timestamp | level | logger | message
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
        file_handler.setFormatter(formatter)

        self.logger.addHandler(file_handler)

        if self.console_output:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(logging.INFO)
            console_handler.setFormatter(formatter)
            self.logger.addHandler(console_handler)

        # Route uvicorn and library logs into the same file
        root_logger = logging.getLogger()
        root_logger.setLevel(logging.INFO)
        root_logger.handlers.clear()
        root_logger.addHandler(file_handler)
        if self.console_output:
            root_logger.addHandler(console_handler)

        for logger_name in ["uvicorn", "uvicorn.access", "uvicorn.error"]:
            logger_obj = logging.getLogger(logger_name)
            logger_obj.handlers.clear()
            logger_obj.propagate = True

    def log_operation(
        self,
        operator: str,
        action: str,
        obj: str,
        details: Optional[str] = None,
        level: str = "INFO",
    ):
        """Log an operation.

        Args:
            operator: Who requested the change (client address or "system")
            action: Action type (CREATE, DELETE, RELOAD, CLEANUP)
            obj: Object being operated on
            details: Additional details
            level: Log level (INFO, WARNING, ERROR)
        """
        message = f"{operator} | {action} | {obj}"
        if details:
            message += f" | {details}"

        if level == "ERROR":
            self.logger.error(message)
        elif level == "WARNING":
            self.logger.warning(message)
        else:
            self.logger.info(message)

    def get_logs(self, limit: int = 100, filter_operator: Optional[str] = None) -> list:
        """Get recent operation entries, newest first.

        Args:
            limit: Maximum number of entries to return
            filter_operator: Optional operator filter

        Returns:
            List of log entries
        """
        entries = []

        if not self.log_file.exists():
            return entries

        with open(self.log_file, "r", encoding="utf-8") as f:
            lines = f.readlines()

        for line in reversed(lines):
            line = line.strip()
            if not line:
                continue

            parts = line.split(" | ")
            # Only records written by log_operation carry operator/action/object
            if len(parts) < 6 or parts[2] != LOGGER_NAME:
                continue

            entry = {
                "timestamp": parts[0],
                "level": parts[1].strip(),
                "logger": parts[2],
                "operator": parts[3],
                "action": parts[4],
                "object": parts[5],
                "details": " | ".join(parts[6:]),
            }

            if filter_operator and entry["operator"] != filter_operator:
                continue

            entries.append(entry)

            if len(entries) >= limit:
                break

        return entries


# Global logger instance
operation_logger = OperationLogger(console_output=settings.debug)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for a specific module.

    Args:
        name: Module name (e.g., 'lease_watcher')

    Returns:
        Logger instance
    """
    return logging.getLogger(f"{LOGGER_NAME}.{name}")
