import logging
import sys

from logging.handlers import RotatingFileHandler
from pathlib import Path

from karaoke_server.config import Settings, get_settings

NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "supabase", "postgrest", "websockets")


# ANSI color codes for terminal output
class LogColors:
    RESET = "\033[0m"
    RED = "\033[91m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    MAGENTA = "\033[95m"
    GRAY = "\033[90m"


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name per severity"""

    COLORS = {
        logging.DEBUG: LogColors.GRAY,
        logging.INFO: LogColors.BLUE,
        logging.WARNING: LogColors.YELLOW,
        logging.ERROR: LogColors.RED,
        logging.CRITICAL: LogColors.MAGENTA,
    }

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        color = self.COLORS.get(record.levelno)
        if color:
            record.levelname = f"{color}{levelname}{LogColors.RESET}"
        try:
            return super().format(record)
        finally:
            # Handlers share the record, restore the plain name
            record.levelname = levelname


def _build_formatter(settings: Settings) -> logging.Formatter:
    if settings.is_development:
        return ColoredFormatter(
            fmt="%(levelname)s:\t%(asctime)s - %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
    return logging.Formatter(
        fmt="%(levelname)s:%(asctime)s:%(name)s:%(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )


def setup_logging(settings: Settings | None = None) -> None:
    """
    Configure the root logger for the karaoke server.

    Call once at startup, before the FastAPI app is created. Development gets
    colored console output; production gets a plain format plus a rotating
    file under ``logs/``.
    """
    settings = settings or get_settings()

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level)
    root_logger.handlers.clear()

    formatter = _build_formatter(settings)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(settings.log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if settings.is_production:
        log_dir = Path("logs")
        log_dir.mkdir(exist_ok=True)

        file_handler = RotatingFileHandler(
            filename=log_dir / "karaoke-server.log",
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8"
        )
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    # Let uvicorn propagate into our handlers
    for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        logging.getLogger(name).handlers.clear()


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a module.

    Usage:
        from karaoke_server.core.logging import get_logger
        logger = get_logger(__name__)
    """
    return logging.getLogger(name)
