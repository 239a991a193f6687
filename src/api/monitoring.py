"""
Monitoring and metrics API endpoints.

This blueprint provides:
- /metrics: Prometheus-compatible metrics endpoint
- /metrics/json: JSON format metrics
- /health: Basic health check
"""

import time

from flask import Blueprint, Response, jsonify

from api.state import get_service
from migrations import CONTRACT_VERSION
from monitoring import metrics
from split_engine import total_accrued

monitoring_bp = Blueprint("monitoring", __name__)

_startup_time = time.time()


@monitoring_bp.route("/metrics", methods=["GET"])
def prometheus_metrics():
    """Metrics in Prometheus text exposition format."""
    _update_dynamic_metrics()
    return Response(metrics.to_prometheus(), mimetype="text/plain; charset=utf-8")


@monitoring_bp.route("/metrics/json", methods=["GET"])
def json_metrics():
    _update_dynamic_metrics()
    return jsonify(metrics.get_all())


@monitoring_bp.route("/health", methods=["GET"])
def health():
    """
    Basic health check endpoint.

    Returns service status, the block height and storage availability.
    """
    service = get_service()
    storage_ok = service.storage.is_available()
    return jsonify({
        "status": "healthy" if storage_ok else "degraded",
        "service": "Fee Splitter API",
        "version": CONTRACT_VERSION,
        "uptime_seconds": time.time() - _startup_time,
        "checks": {
            "splitter": {
                "status": "ok" if service.initialized else "not_instantiated",
                "block_height": service.chain.height,
                "allocations": len(service.splitter.registry) if service.initialized else 0,
            },
            "storage": {
                "status": "ok" if storage_ok else "unavailable",
                **service.storage.get_info(),
            },
        },
    })


def _update_dynamic_metrics() -> None:
    """Refresh gauges derived from current state before export."""
    service = get_service()
    metrics.set_gauge("block_height", service.chain.height)
    if not service.initialized:
        return
    registry = service.splitter.registry
    metrics.set_gauge("allocations", len(registry))
    metrics.set_gauge("total_weight", registry.total_weight())
    for coin in total_accrued(registry):
        metrics.set_gauge("accrued_balance", coin.amount, labels={"denom": coin.denom})
