import logging
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_CONFIGURED = False


def configure_logging(level: Optional[Union[int, str]] = None) -> None:
    """Idempotent root logger setup: one stream handler, level from LOG_LEVEL by default."""
    global _CONFIGURED
    if _CONFIGURED:
        return

    if level is None:
        from .config import get_settings

        level = get_settings().log_level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)

    _CONFIGURED = True
