"""Process-wide logging setup."""
import logging
import sys

from fileshare.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Install a single stdout handler at LOG_LEVEL. Safe to call more than once."""
    level_name = (level or settings.LOG_LEVEL).upper()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        handlers=[handler],
        force=True,
    )
