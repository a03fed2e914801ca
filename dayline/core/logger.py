"""
Logging setup for dayline

Every module asks for its logger through get_logger(); the first call wires
the root logger to the console plus two rotating files under logging.logs_dir:
dayline.log (everything) and error.log (batch failures, exhausted retries).
"""

import logging
import logging.handlers
import re
from pathlib import Path
from typing import Optional

from dayline.config.loader import get_config

# Gemini authenticates with a query parameter, so request URLs carry the key
_SECRET_PATTERN = re.compile(r"(key=|Bearer )[^&\s'\"]+")

# httpx logs every request URL at INFO
NOISY_LOGGERS = ("httpx", "httpcore")

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s"

_SIZE_UNITS = {"KB": 1024, "MB": 1024**2, "GB": 1024**3}


def redact_secrets(text: str) -> str:
    """Mask API keys and bearer tokens in a log line or URL"""
    return _SECRET_PATTERN.sub(lambda m: f"{m.group(1)}***", text)


class SecretRedactionFilter(logging.Filter):
    """Rewrite records so credentials never reach a handler"""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_secrets(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def parse_size(value) -> int:
    """Turn "10MB" style settings into a byte count; bare numbers are bytes"""
    text = str(value).strip().upper()
    for suffix, factor in _SIZE_UNITS.items():
        if text.endswith(suffix):
            return int(text[: -len(suffix)]) * factor
    return int(text)


class LoggerManager:
    """Owns the root handlers and hands out named loggers"""

    def __init__(self):
        self._loggers: dict = {}
        self._redaction = SecretRedactionFilter()
        self.configure()

    def configure(self) -> None:
        """(Re)install handlers from the current logging.* settings"""
        config = get_config()
        logs_dir = Path(config.get("logging.logs_dir", "./logs"))
        logs_dir.mkdir(parents=True, exist_ok=True)

        level_name = str(config.get("logging.level", "INFO")).upper()
        max_bytes = parse_size(config.get("logging.max_file_size", "10MB"))
        backups = config.get("logging.backup_count", 5)

        root = logging.getLogger()
        root.setLevel(getattr(logging, level_name, logging.INFO))
        root.handlers.clear()

        console = logging.StreamHandler()
        console.setLevel(logging.DEBUG)
        self._attach(root, console, CONSOLE_FORMAT)

        for filename, level in (("dayline.log", logging.DEBUG), ("error.log", logging.ERROR)):
            handler = logging.handlers.RotatingFileHandler(
                logs_dir / filename,
                maxBytes=max_bytes,
                backupCount=backups,
                encoding="utf-8",
            )
            handler.setLevel(level)
            self._attach(root, handler, FILE_FORMAT)

        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    def _attach(self, root: logging.Logger, handler: logging.Handler, fmt: str) -> None:
        handler.setFormatter(logging.Formatter(fmt))
        handler.addFilter(self._redaction)
        root.addHandler(handler)

    def get_logger(self, name: str) -> logging.Logger:
        return self._loggers.setdefault(name, logging.getLogger(name))


# Created on first use; the config loader must not import this module at load time
_manager: Optional[LoggerManager] = None


def get_logger(name: str) -> logging.Logger:
    """Return a named logger, configuring the root logger on first call"""
    global _manager
    if _manager is None:
        _manager = LoggerManager()
    return _manager.get_logger(name)


def setup_logging() -> None:
    """Apply logging settings again, e.g. after the config file changed"""
    global _manager
    if _manager is None:
        _manager = LoggerManager()
    else:
        _manager.configure()
