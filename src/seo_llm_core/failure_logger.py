import json
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

import httpx

# Child of the library logger so failures also reach its handlers
failure_logger = logging.getLogger("seo_llm_core.failures")


class JsonFormatter(logging.Formatter):
    """Writes each record as one JSON object per line."""

    def format(self, record):
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
        }
        if isinstance(record.msg, dict):
            log_record.update(record.msg)
        else:
            log_record["message"] = record.getMessage()
        return json.dumps(log_record, default=str)


def setup_failure_logger(log_dir: str = "logs", filename: str = "failures.log") -> logging.Logger:
    """Attach a rotating JSON file handler for failed provider calls."""
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.abspath(os.path.join(log_dir, filename))
    failure_logger.setLevel(logging.INFO)

    # Add the handler only once per file
    for handler in failure_logger.handlers:
        if isinstance(handler, RotatingFileHandler) and handler.baseFilename == log_path:
            return failure_logger

    handler = RotatingFileHandler(
        log_path,
        maxBytes=5 * 1024 * 1024,  # 5 MB
        backupCount=2,
    )
    handler.setFormatter(JsonFormatter())
    failure_logger.addHandler(handler)
    return failure_logger


def log_failure(
    credential: str,
    model: str,
    attempt: int,
    error: BaseException,
    prompt_chars: Optional[int] = None,
):
    """Logs a structured record for a failed provider attempt."""
    original = getattr(error, "original", None)
    raw_response = None
    response = getattr(original, "response", None)
    if response is not None:
        try:
            raw_response = response.text
        except (AttributeError, httpx.ResponseNotRead):
            # Streamed error bodies are not loaded
            raw_response = None

    log_data = {
        "credential": credential,
        "model": model,
        "attempt_number": attempt,
        "error_type": getattr(error, "error_type", type(error).__name__),
        "error_class": type(original or error).__name__,
        "error_message": str(error)[:500],
        "raw_response": raw_response[:500] if isinstance(raw_response, str) else None,
        "prompt_chars": prompt_chars,
    }
    failure_logger.error(log_data)
