from __future__ import annotations

import json
import logging
import sys
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator

# Metadata passed via logger.info(..., extra={}) that ends up in the payload.
EXTRA_FIELDS = (
    "event",
    "method",
    "user_id",
    "shape",
    "step",
    "epoch",
    "loss",
    "metric",
    "value",
    "elapsed_s",
    "output_path",
    "exception_type",
)


class JsonFormatter(logging.Formatter):
    """
    A structured JSON formatter for experiment logs.

    One JSON object per line, so runs can be grepped or loaded with pandas.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_payload: Dict[str, Any] = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for attr in EXTRA_FIELDS:
            if hasattr(record, attr):
                log_payload[attr] = getattr(record, attr)

        if record.exc_info:
            log_payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(log_payload, ensure_ascii=False, default=str)


def configure_logger(name: str = "ordrec", level: int = logging.INFO) -> logging.Logger:
    """
    Configure and return a logger with JSON formatting.

    Prevents duplicate handlers and ensures clean structured logs.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)

    logger.propagate = False
    return logger


@contextmanager
def log_stage(logger: logging.Logger, event: str, **extra: Any) -> Iterator[None]:
    """
    Log `<event>_start` / `<event>_success` around a block, with elapsed time.

    Failures are logged as `<event>_failure` and re-raised unchanged.
    """
    logger.info(f"{event} started", extra={"event": f"{event}_start", **extra})
    started = time.perf_counter()
    try:
        yield
    except Exception as exc:
        logger.error(
            f"{event} failed",
            extra={
                "event": f"{event}_failure",
                "exception_type": type(exc).__name__,
                **extra,
            },
            exc_info=True,
        )
        raise
    elapsed = round(time.perf_counter() - started, 4)
    logger.info(
        f"{event} finished",
        extra={"event": f"{event}_success", "elapsed_s": elapsed, **extra},
    )
