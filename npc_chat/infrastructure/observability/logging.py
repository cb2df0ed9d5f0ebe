import structlog
import logging
import sys
from typing import Dict, Any, List, Optional
from dataclasses import dataclass
import os
from importlib import metadata

# Third-party loggers that are chatty at INFO during model calls
NOISY_LOGGERS = ("httpx", "httpcore", "openai", "anthropic", "langchain_core")


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "npc-chat"
) -> None:
    """Route SDK logs through structlog on top of stdlib logging.

    ``log_format`` is ``"json"`` for machine-readable output or ``"console"``
    for local development. The service name and environment are bound once
    and merged into every event; ``npc_name`` is bound while a turn runs.
    """

    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_service_context,
    ]

    if log_format == "console":
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
    )


def _sdk_version() -> str:
    try:
        return metadata.version("npc-chat")
    except metadata.PackageNotFoundError:
        return "unknown"


SDK_VERSION = _sdk_version()


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Stamp every event with the SDK version"""

    event_dict.setdefault("sdk_version", SDK_VERSION)
    return event_dict


class ConversationLogger:
    """Specialized logger for conversation events"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_turn_event(
        self,
        mode: str,
        npc_name: str,
        success: bool,
        duration_ms: Optional[float] = None,
        error: Optional[str] = None,
        **kwargs
    ):
        """Log the outcome of a single turn"""

        log = self.logger.info if success else self.logger.warning
        log(
            "turn_event",
            mode=mode,
            npc_name=npc_name,
            success=success,
            duration_ms=duration_ms,
            error=error,
            **kwargs
        )

    def log_history_update(
        self,
        npc_name: str,
        action: str,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log explicit history management calls"""

        self.logger.info(
            "history_update",
            npc_name=npc_name,
            action=action,
            details=details or {}
        )


# Global logger instance
conversation_logger = ConversationLogger("npc_chat")


@dataclass
class LatencyStats:
    count: int = 0
    total_ms: float = 0.0
    min_ms: Optional[float] = None
    max_ms: float = 0.0

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
    """In-process turn metrics, each sample also emitted as a debug log event"""

    def __init__(self):
        self.latencies: Dict[str, LatencyStats] = {}
        self.counters: Dict[str, int] = {}
        self.gauges: Dict[str, float] = {}

    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        self.latencies.setdefault(operation, LatencyStats()).add(duration_ms)
        conversation_logger.logger.debug(
            "metric", metric_type="latency", operation=operation, duration_ms=round(duration_ms, 3), tags=tags or {}
        )

    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        self.counters[name] = self.counters.get(name, 0) + value
        conversation_logger.logger.debug("metric", metric_type="counter", name=name, value=value, tags=tags or {})

    def set_gauge(self, name: str, value: float):
        self.gauges[name] = value
        conversation_logger.logger.debug("metric", metric_type="gauge", name=name, value=value)

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Flat view: ``latency.<operation>`` stats, then counters and gauges by name"""

        summary: Dict[str, Any] = {
            f"latency.{operation}": stats.summary() for operation, stats in self.latencies.items()
        }
        summary.update(self.counters)
        summary.update(self.gauges)
        return summary

    def reset(self):
        self.latencies.clear()
        self.counters.clear()
        self.gauges.clear()


# Global metrics collector
metrics = MetricsCollector()
