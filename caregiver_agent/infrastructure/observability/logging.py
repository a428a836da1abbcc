import structlog
import logging
import sys
from typing import Dict, Any, List, Optional
from collections import defaultdict
import os


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "caregiver-agent"
) -> None:
    """Setup structured logging configuration"""

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
        version=os.getenv("SERVICE_VERSION", "unknown")
    )


def bind_turn(turn_id: str, entity_id: str, user_id: str) -> None:
    """Bind turn identifiers for the duration of one conversation turn"""
    structlog.contextvars.bind_contextvars(turn_id=turn_id, entity_id=entity_id, user_id=user_id)


def unbind_turn() -> None:
    structlog.contextvars.unbind_contextvars("turn_id", "entity_id", "user_id")


class ConversationLogger:
    """Specialized logger for conversation engine events"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_turn_transition(
        self,
        from_state: Optional[str],
        to_state: str,
        model_calls: int = 0,
        detail: Optional[Dict[str, Any]] = None
    ):
        """Log a conversation state machine transition"""

        self.logger.info(
            "turn_transition",
            from_state=from_state,
            to_state=to_state,
            model_calls=model_calls,
            detail=detail or {}
        )

    def log_tool_execution(
        self,
        tool_name: str,
        entity_id: str,
        arguments: Dict[str, Any],
        duration_ms: Optional[float] = None,
        success: bool = True,
        error: Optional[str] = None
    ):
        """Log tool execution events"""

        self.logger.info(
            "tool_execution",
            tool_name=tool_name,
            entity_id=entity_id,
            arguments=arguments,
            duration_ms=duration_ms,
            success=success,
            error=error
        )

    def log_context_update(
        self,
        entity_id: str,
        context_type: str,
        action: str,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log context assembly and cache activity"""

        self.logger.debug(
            "context_update",
            entity_id=entity_id,
            context_type=context_type,
            action=action,
            details=details or {}
        )


conversation_logger = ConversationLogger("caregiver_agent")


class LatencyStats:
    """Running count/total/min/max for one operation"""

    def __init__(self):
        self.count = 0
        self.total_ms = 0.0
        self.min_ms: Optional[float] = None
        self.max_ms = 0.0

    def add(self, duration_ms: float):
        self.count += 1
        self.total_ms += duration_ms
        self.min_ms = duration_ms if self.min_ms is None else min(self.min_ms, duration_ms)
        self.max_ms = max(self.max_ms, duration_ms)

    def summary(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "avg": self.total_ms / self.count if self.count else 0,
            "min": self.min_ms or 0,
            "max": self.max_ms,
        }


class MetricsCollector:
    """In-process turn and tool metrics, also emitted as log events"""

    def __init__(self):
        self.latencies: Dict[str, LatencyStats] = defaultdict(LatencyStats)
        self.counters: Dict[str, int] = defaultdict(int)

    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        self.latencies[operation].add(duration_ms)
        conversation_logger.logger.info(
            "metric",
            metric_type="latency",
            operation=operation,
            duration_ms=round(duration_ms, 2),
            tags=tags or {}
        )

    def increment_counter(self, name: str, value: int = 1):
        self.counters[name] += value

    def record_turn(
        self,
        status: str,
        duration_ms: float,
        model_calls: int,
        tools_used: List[str],
        success: bool
    ):
        """Record the outcome of one conversation turn"""

        self.record_latency("conversation_turn", duration_ms, tags={"status": status})
        self.increment_counter("turns.success" if success else "turns.failure")
        self.increment_counter(f"turns.status.{status}")
        self.increment_counter("model_calls", model_calls)
        for tool_name in tools_used:
            self.increment_counter(f"tool_calls.{tool_name}")

    def get_metrics_summary(self) -> Dict[str, Any]:
        summary: Dict[str, Any] = {f"latency.{op}": stats.summary() for op, stats in self.latencies.items()}
        summary.update(self.counters)
        return summary


metrics = MetricsCollector()
