# shared/logging.py
import structlog
import logging
import sys
from typing import Any, Dict, Optional

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

# Get logger instance
logger = structlog.get_logger()

# Configure standard library logging
logging.basicConfig(
    format="%(message)s",
    stream=sys.stdout,
    level=logging.INFO,
)

def setup_logging(level: str = "INFO", json_logs: bool = True):
    """Setup logging configuration"""
    log_level = getattr(logging, level.upper())
    logging.getLogger().setLevel(log_level)

    if not json_logs:
        # Human-readable output for local runs
        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.UnicodeDecoder(),
                structlog.dev.ConsoleRenderer()
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

def log_task_transition(
    task_id: str,
    agent_type: str,
    from_status: Optional[str],
    to_status: str,
    retry_count: int = 0,
    error_message: Optional[str] = None
):
    """Log a task lifecycle transition"""
    extra_data = {
        "task_id": task_id,
        "agent_type": agent_type,
        "from_status": from_status,
        "to_status": to_status,
        "retry_count": retry_count
    }

    if error_message:
        extra_data["error_message"] = error_message
        logger.warning("Task transition", **extra_data)
    else:
        logger.info("Task transition", **extra_data)

def log_agent_execution(
    agent_name: str,
    task_id: str,
    execution_time_ms: int,
    success: bool,
    error_message: Optional[str] = None
):
    """Log agent executor outcome"""
    extra_data = {
        "agent_name": agent_name,
        "task_id": task_id,
        "execution_time_ms": execution_time_ms,
        "success": success
    }

    if error_message:
        extra_data["error_message"] = error_message
        logger.error("Agent execution failed", **extra_data)
    else:
        logger.info("Agent execution completed", **extra_data)

def log_circuit_breaker_event(
    agent_name: str,
    event_type: str,
    state: str,
    failure_count: int,
    additional_context: Optional[Dict[str, Any]] = None
):
    """Log circuit breaker state changes"""
    extra_data = {
        "agent_name": agent_name,
        "event_type": event_type,
        "circuit_state": state,
        "failure_count": failure_count
    }

    if additional_context:
        extra_data.update(additional_context)

    logger.info("Circuit breaker event", **extra_data)

def log_sweep_summary(
    selected: int,
    succeeded: int,
    failed: int,
    duration_ms: int
):
    """Log the outcome of a pending-task sweep"""
    logger.info("Pending task sweep finished",
               selected=selected,
               succeeded=succeeded,
               failed=failed,
               duration_ms=duration_ms)
