import json
import logging
import sys
from datetime import datetime
from typing import Any

import os

# Configure logging levels
LOG_LEVEL_STR = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_LEVEL = getattr(logging, LOG_LEVEL_STR, logging.INFO)

class JSONFormatter(logging.Formatter):
    """
    Formatter that renders each LogRecord as a single JSON line.
    """
    def format(self, record: logging.LogRecord) -> str:
        log_record: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "request_id"):
            log_record["request_id"] = record.request_id # type: ignore

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        # Structured fields passed via extra={"data": {...}}
        if hasattr(record, "data"):
             log_record["data"] = record.data # type: ignore

        return json.dumps(log_record, default=str)

def setup_logging():
    """
    Configures the root logger to use JSON formatting.
    """
    logger = logging.getLogger()
    logger.setLevel(LOG_LEVEL)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

    # Remove existing handlers to avoid duplicates (e.g. from Uvicorn's default config)
    logger.handlers = []
    logger.addHandler(handler)

    logging.getLogger("uvicorn.access").disabled = True

    # Stripe's SDK logs every request at INFO
    for noisy_logger in ["stripe", "httpcore", "httpx", "urllib3"]:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    return logger
