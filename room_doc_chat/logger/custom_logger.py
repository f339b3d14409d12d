import logging
import os

from rich.console import Console
from rich.logging import RichHandler

# -------------------------------------------------
# Console with proper color handling
# -------------------------------------------------
console = Console(force_terminal=True, color_system="truecolor")

# -------------------------------------------------
# Noisy libraries and the level they are pinned to
# -------------------------------------------------
_QUIET_LOGGERS = {
    "sqlalchemy.engine": logging.WARNING,
    "sqlalchemy.pool": logging.WARNING,
    "sqlalchemy.dialects": logging.WARNING,
    "sqlalchemy.orm": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "uvicorn": logging.INFO,
    "uvicorn.access": logging.WARNING,
    "uvicorn.error": logging.INFO,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "urllib3": logging.WARNING,
    "faiss": logging.WARNING,
}


class CustomLogger:
    """
    Configures the root logger once with a RichHandler and hands out
    named loggers. LOG_LEVEL env var selects the level (default INFO).
    """

    _configured = False

    def __init__(self, name: str = "room_doc_chat"):
        self.name = name
        if not CustomLogger._configured:
            self._configure()
            CustomLogger._configured = True

    @staticmethod
    def _configure() -> None:
        level = os.getenv("LOG_LEVEL", "INFO").upper()

        logging.basicConfig(
            level=level,
            format="%(message)s",  # Rich handles formatting
            datefmt="[%H:%M:%S.%f]",
            handlers=[
                RichHandler(
                    console=console,
                    rich_tracebacks=True,
                    tracebacks_show_locals=False,
                    show_time=True,
                    show_level=True,
                    show_path=True,
                    log_time_format="%H:%M:%S.%f",
                )
            ],
        )

        for logger_name, logger_level in _QUIET_LOGGERS.items():
            logging.getLogger(logger_name).setLevel(logger_level)

    def get_logger(self, name: str | None = None) -> logging.Logger:
        return logging.getLogger(name or self.name)
