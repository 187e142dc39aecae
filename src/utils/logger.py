# src/utils/logger.py

import logging
import os
from config import get_config

CONTEXT_FIELDS = ("request_id", "guard_id", "visit_id")


class GateContextFilter(logging.Filter):
    """Render the ``extra=`` ids passed by the store and dispatcher as ``[key=value ...]``."""

    def filter(self, record):
        parts = [f"{key}={getattr(record, key)}" for key in CONTEXT_FIELDS if getattr(record, key, None) is not None]
        record.context = f" [{' '.join(parts)}]" if parts else ""
        return True


def setup_logger(name):
    """Logger for a gate service module: console always, file under LOG_DIR when writable."""

    config = get_config()
    log_level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)

    logger = logging.getLogger(name)
    logger.setLevel(log_level)

    # App, scheduler thread and scripts all import the same modules
    if logger.handlers:
        return logger

    context_filter = GateContextFilter()

    console_handler = logging.StreamHandler()
    console_handler.addFilter(context_filter)
    console_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(levelname)s - %(message)s%(context)s")
    )
    logger.addHandler(console_handler)

    log_dir = os.getenv("LOG_DIR", "/tmp/logs")
    try:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(os.path.join(log_dir, "neuvis.log"))
    except OSError as e:
        logger.warning(f"Could not open log file in {log_dir}: {e}")
    else:
        file_handler.addFilter(context_filter)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s [%(threadName)s] - %(levelname)s - %(message)s%(context)s")
        )
        logger.addHandler(file_handler)

    return logger
