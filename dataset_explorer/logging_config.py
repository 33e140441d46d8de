"""
Centralized logging configuration.

Configure once at application startup, not per module.
"""
from __future__ import annotations

import logging
import sys


def configure_logging(level: str | int = logging.INFO) -> None:
    """Install one stdout handler on the root logger.

    Idempotent: does nothing when the root logger already has handlers.
    """
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    logging.getLogger("dataset_explorer").setLevel(level)

    # Reduce noise
    logging.getLogger("urllib3").setLevel(logging.WARNING)
