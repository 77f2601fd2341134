"""
Logging configuration
"""

import json
import logging
import sys
from core.config import settings


class ContextFormatter(logging.Formatter):
    """Appends the structured error context passed as extra={"error_context": ...}"""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        error_context = getattr(record, "error_context", None)
        if error_context:
            line += f" | context={json.dumps(error_context, default=str, sort_keys=True)}"
        return line


def setup_logging(level: str = None):
    """Configure root logging to stdout at LOG_LEVEL"""
    level_name = (level or settings.LOG_LEVEL).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ContextFormatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))
    logging.basicConfig(level=log_level, handlers=[handler], force=True)

    # Per-request transport logging drowns the per-source summaries
    for noisy in ("sqlalchemy.engine", "sqlalchemy.pool", "httpx", "httpcore", "apscheduler"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured at {level_name} level")
