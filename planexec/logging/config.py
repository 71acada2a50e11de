"""
Structured logging configuration for planexec
"""

import sys
import json
import uuid
import logging
from typing import Any, Dict, List, Optional
from datetime import datetime

import structlog
from structlog.stdlib import LoggerFactory


class PlanexecJSONRenderer:
    """Custom JSON renderer for planexec logs"""

    def __call__(self, logger, name, event_dict):
        """Render log event as JSON"""
        if "timestamp" not in event_dict:
            event_dict["timestamp"] = datetime.utcnow().isoformat() + "Z"

        event_dict["service"] = "planexec"
        event_dict["version"] = "0.1.0"

        if "event" not in event_dict:
            event_dict["event"] = event_dict.get("msg", "log_event")
        event_dict.pop("msg", None)

        return json.dumps(event_dict, ensure_ascii=False, separators=(',', ':'), default=str)


def configure_logging(
    log_level: str = "INFO",
    json_format: bool = True,
    include_timestamps: bool = True
) -> None:
    """
    Configure structured logging for planexec

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Whether to use JSON format
        include_timestamps: Whether to include timestamps
    """
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if include_timestamps:
        processors.append(structlog.processors.TimeStamper(fmt="iso"))

    if json_format:
        processors.append(PlanexecJSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.reset_defaults()

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(message)s",
        stream=sys.stderr,
        force=True
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Get a structured logger instance

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structured logger
    """
    return structlog.get_logger(name)


def log_execution(
    execution_id: str,
    plan_request_id: str,
    status: str,
    duration_ms: float,
    error: Optional[str] = None,
    **kwargs
) -> None:
    """Log the terminal outcome of an execution"""
    logger = structlog.get_logger("planexec.execution")
    level = "info" if status == "COMPLETED" else "warning"

    log_data: Dict[str, Any] = {
        "execution_id": execution_id,
        "plan_request_id": plan_request_id,
        "status": status,
        "duration_ms": duration_ms,
        **kwargs
    }
    if error:
        log_data["error"] = error

    getattr(logger, level)("Execution finished", **log_data)


def log_step_execution(
    execution_id: str,
    step_index: int,
    tool: str,
    status: str,
    duration_ms: float,
    retry_count: int = 0,
    error: Optional[str] = None,
    **kwargs
) -> None:
    """Log a step reaching a terminal state"""
    logger = structlog.get_logger("planexec.step")
    level = "info" if status == "COMPLETED" else "error"

    log_data: Dict[str, Any] = {
        "execution_id": execution_id,
        "step_index": step_index,
        "tool": tool,
        "status": status,
        "duration_ms": duration_ms,
        "retry_count": retry_count,
        **kwargs
    }
    if error:
        log_data["error"] = error

    getattr(logger, level)("Step execution", **log_data)


def log_rollback(
    execution_id: Optional[str],
    total_steps: int,
    success: bool,
    errors: Optional[List[str]] = None,
    **kwargs
) -> None:
    """Log a rollback attempt"""
    logger = structlog.get_logger("planexec.rollback")
    level = "info" if success else "error"

    getattr(logger, level)(
        "Rollback executed",
        execution_id=execution_id,
        total_steps=total_steps,
        success=success,
        errors=errors or [],
        **kwargs
    )


def log_request_start(method: str, path: str, request_id: str, **kwargs) -> None:
    """Log the start of an HTTP request"""
    logger = structlog.get_logger("planexec.request")
    logger.info("Request started", method=method, path=path, request_id=request_id, **kwargs)


def log_request_end(
    method: str,
    path: str,
    request_id: str,
    status_code: int,
    duration_ms: float,
    **kwargs
) -> None:
    """Log the end of an HTTP request"""
    logger = structlog.get_logger("planexec.request")
    logger.info(
        "Request completed",
        method=method,
        path=path,
        request_id=request_id,
        status_code=status_code,
        duration_ms=duration_ms,
        **kwargs
    )


def log_system(
    component: str,
    event: str,
    level: str = "info",
    **kwargs
) -> None:
    """Log system-level events"""
    logger = structlog.get_logger("planexec.system")
    getattr(logger, level)(event, component=component, **kwargs)


def generate_execution_id() -> str:
    """Generate a unique execution ID"""
    return str(uuid.uuid4())


def generate_request_id() -> str:
    """Generate a unique HTTP request ID"""
    return str(uuid.uuid4())
