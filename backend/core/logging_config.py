import logging

from backend.core import config

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger once for the process."""
    global _configured

    if _configured:
        return

    logging.basicConfig(level=level or config.LOG_LEVEL, format=LOG_FORMAT)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if config.SQL_ECHO else logging.WARNING)
    _configured = True
