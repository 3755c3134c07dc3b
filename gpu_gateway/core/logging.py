# Copyright (c) 2026 GPU Gateway Contributors. All Rights Reserved.

"""
Structured Logging — One JSON object per line, tagged with request context.

Components attach context through `extra=`, e.g.
    logger.info("Rate limit exceeded", extra=ctx.log_extra())
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Iterable, Optional

CONTEXT_FIELDS = ("request_id", "client_key", "worker_id", "job_id", "target")

# Third-party loggers that log every backend call or access line at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


class StructuredFormatter(logging.Formatter):
    """JSON log formatter with request/client/worker context."""

    def __init__(self, service: str = "gpu-gateway", environment: Optional[str] = None) -> None:
        super().__init__()
        self._service = service
        self._environment = environment

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "service": self._service,
            "module": record.name,
            "message": record.getMessage(),
        }
        if self._environment:
            log_entry["env"] = self._environment

        for key in CONTEXT_FIELDS:
            val = getattr(record, key, None)
            if val:
                log_entry[key] = val

        if record.exc_info and record.exc_info[0]:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


def setup_logging(
    level: str = "INFO",
    environment: Optional[str] = None,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """Route all gateway logging to stdout as JSON lines."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter(environment=environment))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(handler)

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)
