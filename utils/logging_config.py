import logging
import os
import sys
from pathlib import Path

from config import settings
from utils.structured_logging import StructuredFormatter


def _log_file_handler():
    """File handler under LOG_DIR, or None where only stdout is available"""
    if settings.NODE_ENV == "test" or os.getenv("VERCEL") or os.getenv("AWS_LAMBDA_FUNCTION_NAME"):
        return None
    try:
        log_dir = Path(settings.LOG_DIR)
        log_dir.mkdir(exist_ok=True)
        return logging.FileHandler(log_dir / "academy_core.log")
    except OSError:
        return None


def setup_logging(log_level: str = "INFO", json_output: bool = False) -> logging.Logger:
    """
    Root logging for plain ``logging`` callers (uvicorn, alembic, the exception handlers)
    """
    handlers = [logging.StreamHandler(sys.stdout)]
    file_handler = _log_file_handler()
    if file_handler is not None:
        handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )

    if json_output:
        for handler in handlers:
            handler.setFormatter(StructuredFormatter())

    return logging.getLogger("academy_core")


logger = setup_logging(settings.LOG_LEVEL, json_output=settings.LOG_JSON)
