"""
Structured Logging with Correlation IDs
JSON log lines for the reconciliation core, tagged by component category
"""

import logging
import json
import sys
import time
import traceback
from typing import Dict, Any, Optional
from datetime import datetime
from contextvars import ContextVar
import uuid
from enum import Enum
from pydantic import BaseModel, Field

# Context variable for storing correlation ID
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# ============================================================================
# LOG LEVELS AND CATEGORIES
# ============================================================================


class LogLevel(str, Enum):
    """Log severity levels"""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogCategory(str, Enum):
    """Log categories, one per core component plus infrastructure"""

    PAYMENT = "payment"
    SUBSCRIPTION = "subscription"
    PROGRESS = "progress"
    ACHIEVEMENT = "achievement"
    ENTITLEMENT = "entitlement"
    STATS = "stats"
    AUTHENTICATION = "authentication"
    NOTIFICATION = "notification"
    DATABASE = "database"
    REQUEST = "request"
    ERROR = "error"
    SYSTEM = "system"


# ============================================================================
# STRUCTURED LOG MODEL
# ============================================================================


class StructuredLogEntry(BaseModel):
    """Standard structured log entry format"""

    timestamp: str = Field(default_factory=lambda: datetime.utcnow().isoformat())
    level: str = Field(..., description="Log severity level")
    category: str = Field(..., description="Log category for filtering")
    message: str = Field(..., description="Log message")
    correlation_id: Optional[str] = Field(None, description="Request correlation ID")
    user_id: Optional[str] = Field(None, description="User identifier")

    # Entity context
    entity: Optional[str] = Field(None, description="Entity kind, e.g. payment")
    key: Optional[str] = Field(None, description="Entity key, e.g. a transaction id")
    from_state: Optional[str] = Field(None, description="State before a transition")
    to_state: Optional[str] = Field(None, description="State after a transition")

    # Error context
    error_type: Optional[str] = Field(None, description="Error class name")
    error_message: Optional[str] = Field(None, description="Error message")
    error_stack: Optional[str] = Field(None, description="Stack trace")

    duration_ms: Optional[float] = Field(None, description="Operation duration")

    extra: Optional[Dict[str, Any]] = Field(default_factory=dict, description="Additional context")


# ============================================================================
# STRUCTURED LOGGER CLASS
# ============================================================================


class StructuredLogger:
    """Logger with structured output and correlation IDs"""

    def __init__(self, name: str, level: str = "INFO"):
        self.name = name
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level))

        self.logger.handlers = []

        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        self.logger.addHandler(handler)

        # Disable propagation to avoid duplicate logs
        self.logger.propagate = False

    def _create_log_entry(self, level: str, category: str, message: str, **kwargs) -> StructuredLogEntry:
        for field in ("user_id", "key", "from_state", "to_state"):
            value = kwargs.get(field)
            if value is not None:
                kwargs[field] = str(value.value if isinstance(value, Enum) else value)
        return StructuredLogEntry(
            level=level, category=category, message=message, correlation_id=correlation_id_var.get(), **kwargs
        )

    def debug(self, message: str, category: str = LogCategory.SYSTEM, **kwargs):
        entry = self._create_log_entry(LogLevel.DEBUG, category, message, **kwargs)
        self.logger.debug(entry.model_dump_json())

    def info(self, message: str, category: str = LogCategory.SYSTEM, **kwargs):
        entry = self._create_log_entry(LogLevel.INFO, category, message, **kwargs)
        self.logger.info(entry.model_dump_json())

    def warning(self, message: str, category: str = LogCategory.SYSTEM, **kwargs):
        entry = self._create_log_entry(LogLevel.WARNING, category, message, **kwargs)
        self.logger.warning(entry.model_dump_json())

    def error(self, message: str, category: str = LogCategory.ERROR, exception: Optional[Exception] = None, **kwargs):
        """Log error message with optional exception"""
        if exception:
            kwargs["error_type"] = type(exception).__name__
            kwargs["error_message"] = str(exception)
            kwargs["error_stack"] = traceback.format_exc()

        entry = self._create_log_entry(LogLevel.ERROR, category, message, **kwargs)
        self.logger.error(entry.model_dump_json())

    def transition(self, category: str, entity: str, key: Any, from_state: Optional[str], to_state: str, **kwargs):
        """Log a state change of a persisted entity"""
        entry = self._create_log_entry(
            LogLevel.INFO,
            category,
            f"{entity} {key}: {from_state or 'none'} -> {to_state}",
            entity=entity,
            key=key,
            from_state=from_state,
            to_state=to_state,
            **kwargs,
        )
        self.logger.info(entry.model_dump_json())


# ============================================================================
# CUSTOM FORMATTER
# ============================================================================


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured JSON output"""

    def format(self, record: logging.LogRecord) -> str:
        # If message is already JSON, return as-is
        if isinstance(record.msg, str) and record.msg.startswith("{"):
            return record.msg

        entry = {
            "timestamp": datetime.utcnow().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": correlation_id_var.get(),
        }

        if record.exc_info:
            entry["error_stack"] = self.formatException(record.exc_info)

        return json.dumps(entry)


# ============================================================================
# CORRELATION ID MANAGEMENT
# ============================================================================


def generate_correlation_id() -> str:
    return f"corr_{uuid.uuid4().hex[:16]}"


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Set correlation ID in context"""
    if not correlation_id:
        correlation_id = generate_correlation_id()

    correlation_id_var.set(correlation_id)
    return correlation_id


# ============================================================================
# REQUEST LOGGING MIDDLEWARE
# ============================================================================


async def log_request_middleware(request, call_next):
    """Tag each request with a correlation ID and log its outcome and duration"""
    correlation_id = set_correlation_id(request.headers.get("X-Correlation-ID"))
    request.state.correlation_id = correlation_id

    logger = get_logger("api.request")
    started = time.perf_counter()

    response = await call_next(request)

    duration_ms = (time.perf_counter() - started) * 1000
    response.headers["X-Correlation-ID"] = correlation_id
    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code}",
        category=LogCategory.REQUEST,
        duration_ms=duration_ms,
    )
    return response


# ============================================================================
# LOGGER FACTORY
# ============================================================================

# Global logger cache
_loggers: Dict[str, StructuredLogger] = {}


def get_logger(name: str, level: Optional[str] = None) -> StructuredLogger:
    """Get or create a structured logger"""

    if name not in _loggers:
        if level is None:
            from config import settings

            level = settings.LOG_LEVEL.upper()
        _loggers[name] = StructuredLogger(name, level)

    return _loggers[name]
