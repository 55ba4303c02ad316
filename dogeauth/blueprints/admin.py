"""
Admin Blueprint - Health Checks and Metrics

Provides monitoring and operational endpoints for infrastructure health.
"""

import logging
import time
from typing import Any, Dict

from flask import Blueprint, Response, current_app, jsonify
from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

from dogeauth.factory import get_engine

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__)

# Prometheus metrics
registry = CollectorRegistry()
challenges_issued = Counter(
    "challenges_issued_total",
    "Challenges issued",
    registry=registry,
)
decisions_total = Counter(
    "auth_decisions_total",
    "Authentication decisions",
    ["outcome", "reason"],
    registry=registry,
)
allowed_addresses = Gauge(
    "allowed_addresses",
    "Number of addresses on the allow-list",
    registry=registry,
)


def _app_info() -> Dict[str, Any]:
    cfg = current_app.config.get("APP_CONFIG", {})
    return {"service": cfg.get("APP_NAME", "dogeauth"), "version": cfg.get("APP_VERSION", "1.0.0")}


@admin_bp.route("/health")
def health():
    """
    Health check endpoint.

    Returns:
        JSON health status with component information
    """
    engine = get_engine()
    health_status: Dict[str, Any] = {
        "status": "healthy",
        "timestamp": time.time(),
        **_app_info(),
        "components": {},
    }

    try:
        engine.store.ping()
        health_status["components"]["challenge_store"] = {
            "status": "connected",
            "backend": type(engine.store).__name__,
        }
    except Exception as e:
        logger.warning(f"Challenge store health check failed: {e}")
        health_status["components"]["challenge_store"] = {"status": "error", "error": str(e)}
        health_status["status"] = "degraded"

    health_status["components"]["allow_list"] = {"status": "loaded", "addresses": len(engine.gate)}
    health_status["components"]["network"] = engine.verifier.network.name

    return jsonify(health_status), 200 if health_status["status"] == "healthy" else 503


@admin_bp.route("/health/live")
def liveness():
    """Liveness probe - the process is up."""
    return jsonify({"status": "alive"}), 200


@admin_bp.route("/health/ready")
def readiness():
    """
    Readiness probe - the challenge store answers.

    Returns:
        200 if ready, 503 if not ready
    """
    try:
        get_engine().store.ping()
        return jsonify({"status": "ready"}), 200
    except Exception as e:
        logger.warning(f"Readiness check failed: {e}")
        return jsonify({"status": "not_ready", "error": str(e)}), 503


@admin_bp.route("/metrics")
def metrics_json():
    """JSON metrics for quick inspection."""
    engine = get_engine()
    issued = 0.0
    for metric in challenges_issued.collect():
        for sample in metric.samples:
            if sample.name.endswith("_total"):
                issued = sample.value

    decisions = {}
    for metric in decisions_total.collect():
        for sample in metric.samples:
            if sample.name.endswith("_total"):
                key = sample.labels["outcome"]
                if sample.labels.get("reason"):
                    key += f":{sample.labels['reason']}"
                decisions[key] = sample.value

    return jsonify({
        "timestamp": time.time(),
        "application": {**_app_info(), "uptime": time.process_time()},
        "metrics": {
            "challenges_issued": issued,
            "decisions": decisions,
            "allowed_addresses": len(engine.gate),
        },
    }), 200


@admin_bp.route("/metrics/prometheus")
def metrics_prometheus():
    """
    Prometheus metrics endpoint.

    Returns:
        Prometheus text format metrics
    """
    allowed_addresses.set(len(get_engine().gate))
    return Response(generate_latest(registry), mimetype="text/plain; version=0.0.4")
