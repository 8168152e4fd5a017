"""
Centralized logging for Scribe.

Logs to file so the pipeline can run headless behind the status server.
Set SCRIBE_LOG_DIR to move the log directory, SCRIBE_LOG_LEVEL to change verbosity.
"""

import logging
import os
from pathlib import Path

# Default logs directory lives next to the project root
DEFAULT_LOGS_DIR = Path(__file__).parent.parent.parent / "logs"

LOG_FILE_NAME = "scribe.log"


def get_logs_dir() -> Path:
    """Return the logs directory, honouring SCRIBE_LOG_DIR."""
    return Path(os.environ.get("SCRIBE_LOG_DIR", DEFAULT_LOGS_DIR))


class ScribeLogger:
    """Centralized logger for the Scribe pipeline."""

    _instance = None
    _logger = None

    def __init__(self):
        """Initialize the logger (singleton)."""
        if ScribeLogger._logger is None:
            ScribeLogger._logger = self._setup_logger()

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get the singleton root logger for the pipeline."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._logger

    def _setup_logger(self) -> logging.Logger:
        """Set up the file logger."""
        logger = logging.getLogger('scribe')
        level_name = os.environ.get("SCRIBE_LOG_LEVEL", "INFO").upper()
        logger.setLevel(getattr(logging, level_name, logging.INFO))

        # Remove any existing handlers
        logger.handlers = []

        # Format: [2024-01-15 14:30:25] ERROR - message
        formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s - %(name)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        logs_dir = get_logs_dir()
        try:
            logs_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(logs_dir / LOG_FILE_NAME, mode='a', encoding='utf-8')
        except OSError:
            # Logs dir not writable - log to stderr instead
            file_handler = logging.StreamHandler()
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

        return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a child logger under the 'scribe' namespace.

    Args:
        name: Module name, usually __name__

    Returns:
        Logger that propagates to the configured scribe handlers
    """
    root = ScribeLogger.get_logger()
    if name == root.name or name.startswith(root.name + "."):
        return logging.getLogger(name)
    return root.getChild(name)


# Convenience functions for logging
def log_error(message, exception=None):
    """
    Log an error message to file.

    Args:
        message: Error message string
        exception: Optional exception object to include traceback
    """
    logger = ScribeLogger.get_logger()
    if exception:
        logger.error(f"{message}: {str(exception)}", exc_info=exception)
    else:
        logger.error(message)


def log_exception(exception, context=""):
    """
    Log an exception with full traceback.

    Args:
        exception: Exception object
        context: Optional context string (e.g., "in transcription worker")
    """
    logger = ScribeLogger.get_logger()
    if context:
        logger.error(f"Exception {context}", exc_info=exception)
    else:
        logger.error("Exception occurred", exc_info=exception)
