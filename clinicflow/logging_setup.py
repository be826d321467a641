from __future__ import annotations

import logging

from .config import LOG_LEVEL


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=getattr(logging, level or LOG_LEVEL, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # requests/urllib3 are chatty at INFO
    logging.getLogger("urllib3").setLevel(logging.WARNING)
