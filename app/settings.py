from __future__ import annotations

import logging
import os
from pathlib import Path


DATA_DIR = Path(os.environ.get("SHIFT_SCHEDULER_DATA_DIR", Path(__file__).resolve().parent / "data"))
DATABASE_URL = os.environ.get(
    "SHIFT_SCHEDULER_DATABASE_URL",
    f"sqlite:///{(DATA_DIR / 'scheduler.db').as_posix()}",
)
LOG_LEVEL = os.environ.get("SHIFT_SCHEDULER_LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

MAX_SUGGESTIONS = 3
DEFAULT_REQUIRED_EMPLOYEES = 1
EVALUATOR_WORKERS = 3


def configure_logging(level: str | int | None = None) -> None:
    """Install the root handler once; later calls only adjust the level."""
    resolved = level if level is not None else LOG_LEVEL
    if isinstance(resolved, str):
        resolved = logging.getLevelName(resolved.upper())
        if not isinstance(resolved, int):
            resolved = logging.INFO
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=resolved, format=LOG_FORMAT)
    root.setLevel(resolved)
