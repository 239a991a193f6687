"""
Monitoring infrastructure for the fee splitter service.

This package provides:
- Metrics collection (counters, gauges, histograms) with Prometheus export
- Structured logging with JSON output
- Flask request logging middleware

Usage:
    from monitoring import metrics, get_logger

    metrics.increment("deposits_total")
    logger = get_logger(__name__)
    logger.info("Deposit split", extra={"denom": "uluna"})
"""

from monitoring.logging import LoggingContext, configure_logging, get_logger
from monitoring.metrics import MetricsCollector, metrics
from monitoring.middleware import setup_request_logging

__all__ = [
    "LoggingContext",
    "MetricsCollector",
    "configure_logging",
    "get_logger",
    "metrics",
    "setup_request_logging",
]
