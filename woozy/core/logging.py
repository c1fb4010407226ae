from __future__ import annotations

from functools import lru_cache
import logging

from woozy.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@lru_cache
def configure_logging() -> None:
    # Configure the root logger once per process; repeated app factories reuse it.
    settings = get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format=_LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S")
    # SQLAlchemy echoes every statement at INFO; keep it quiet unless debugging.
    logging.getLogger("sqlalchemy.engine").setLevel(max(level, logging.WARNING))
