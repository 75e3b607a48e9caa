"""Observability helpers for SeekRAG."""

from __future__ import annotations

import logging
import time

import structlog
from prometheus_client import Counter, Histogram

_logger_configured = False


def configure_logging(level: int = logging.INFO) -> None:
    global _logger_configured  # noqa: PLW0603 - module-level guard
    if _logger_configured:
        return
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _logger_configured = True


def bind_correlation_id(correlation_id: str) -> None:
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)


def clear_correlation_id() -> None:
    structlog.contextvars.clear_contextvars()


def get_logger(name: str = "seekrag") -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


class ClientMetrics:
    """Prometheus metrics for ingestion and query orchestration."""

    uploads = Counter(
        "seekrag_document_uploads_total",
        "Documents accepted for upload, by submission outcome.",
        ["outcome"],
    )
    poll_latency = Histogram(
        "seekrag_status_poll_duration_seconds",
        "Time spent on a single document status request.",
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0),
    )
    polls = Counter(
        "seekrag_status_polls_total",
        "Status polls by observed document status.",
        ["status"],
    )
    stream_events = Counter(
        "seekrag_stream_events_total",
        "Knowledge stream events applied to sessions, by tag.",
        ["tag"],
    )
    anomalies = Counter(
        "seekrag_protocol_anomalies_total",
        "Discarded events and inconsistent status reports.",
        ["kind"],
    )
    query_latency = Histogram(
        "seekrag_query_duration_seconds",
        "Time from query submission to the final event.",
        buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
    )

    @classmethod
    def observe_poll(cls, status: str) -> None:
        cls.polls.labels(status=status).inc()

    @classmethod
    def observe_event(cls, tag: str) -> None:
        cls.stream_events.labels(tag=tag).inc()

    @classmethod
    def observe_anomaly(cls, kind: str) -> None:
        cls.anomalies.labels(kind=kind).inc()


class TimedSection:
    """Context manager capturing elapsed time for metrics."""

    def __init__(self, callback) -> None:
        self._callback = callback
        self._start = 0.0

    def __enter__(self) -> "TimedSection":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        duration = time.perf_counter() - self._start
        self._callback(duration)


__all__ = [
    "ClientMetrics",
    "TimedSection",
    "bind_correlation_id",
    "clear_correlation_id",
    "configure_logging",
    "get_logger",
]
