"""
Application Factory for the address-signature access gate

Implements the Flask application factory pattern with:
- Engine wiring (challenge store, issuer, verifier, allow-list, grant action)
- Blueprint registration
- Security configuration (TLS headers, rate limiting)
- JSON error handling
"""

import logging
import time
from typing import Any, Callable, Mapping, Optional

import click
from flask import Flask, current_app, jsonify, request

from dogeauth.actions import OnGranted, build_action
from dogeauth.allowlist import AllowListGate, FileAllowListSource, parse_inline_addresses
from dogeauth.audit_logger import AuditLogger, get_audit_logger, init_audit_logger
from dogeauth.challenges import ChallengeIssuer
from dogeauth.config import get_config, validate_config
from dogeauth.crypto import NetworkParams, SignatureVerifier, get_network
from dogeauth.engine import AuthenticationEngine
from dogeauth.errors import AllowListUnavailable
from dogeauth.security import init_security
from dogeauth.storage import build_challenge_store

logger = logging.getLogger(__name__)

EXTENSION_KEY = "dogeauth"


def get_engine() -> AuthenticationEngine:
    """Return the engine bound to the current application."""
    return current_app.extensions[EXTENSION_KEY]


def build_allow_list_gate(cfg: Mapping[str, Any], network: NetworkParams, audit_logger: AuditLogger) -> AllowListGate:
    """
    Build the allow-list gate.

    An inline ``ALLOWED_ADDRESSES`` list takes precedence over
    ``ALLOWED_ADDRESSES_FILE``; the file is polled for changes.

    Raises:
        AllowListUnavailable: If the configured file cannot be loaded
    """
    inline = parse_inline_addresses(cfg.get("ALLOWED_ADDRESSES", ""))
    if inline:
        return AllowListGate(addresses=inline, network=network, audit_logger=audit_logger)

    path = cfg.get("ALLOWED_ADDRESSES_FILE")
    if path:
        return AllowListGate(
            source=FileAllowListSource(path),
            refresh_interval=cfg.get("ALLOW_LIST_REFRESH_SECONDS", 30),
            network=network,
            audit_logger=audit_logger,
        )

    logger.warning("No allow-list configured; every verified address will be denied")
    return AllowListGate(network=network, audit_logger=audit_logger)


def build_engine(
    cfg: Mapping[str, Any],
    on_granted: Optional[OnGranted] = None,
    clock: Callable[[], float] = time.time,
) -> AuthenticationEngine:
    """Wire store, issuer, verifier and allow-list into an engine."""
    audit_logger = get_audit_logger()
    network = get_network(cfg.get("NETWORK", "dogecoin"))

    store = build_challenge_store(cfg, clock=clock)
    issuer = ChallengeIssuer(
        store,
        ttl_seconds=cfg.get("CHALLENGE_TTL_SECONDS", 300),
        random_bytes=cfg.get("CHALLENGE_RANDOM_BYTES", 16),
        sweep_interval=cfg.get("CHALLENGE_SWEEP_SECONDS", 60),
        clock=clock,
    )
    gate = build_allow_list_gate(cfg, network, audit_logger)

    return AuthenticationEngine(
        store=store,
        issuer=issuer,
        verifier=SignatureVerifier(network),
        gate=gate,
        on_granted=on_granted or build_action(cfg),
        action_workers=cfg.get("ACTION_WORKERS", 4),
        audit_logger=audit_logger,
    )


def create_app(
    config_override: Optional[Mapping[str, Any]] = None,
    on_granted: Optional[OnGranted] = None,
    clock: Callable[[], float] = time.time,
) -> Flask:
    """
    Create and configure the Flask application using the factory pattern.

    Args:
        config_override: Configuration values layered over the environment
        on_granted: Grant action; defaults to the configured webhook or a log line
        clock: Time source for challenge issuing and expiry

    Returns:
        Configured Flask application instance
    """
    app = Flask(__name__)

    # Load configuration
    cfg = {**get_config(), **(config_override or {})}
    validate_config(cfg)
    app.config["APP_CONFIG"] = cfg
    app.config["TESTING"] = bool(cfg.get("TESTING", False))

    # Set Flask secret key (required for sessions)
    app.secret_key = cfg.get("FLASK_SECRET_KEY")

    # Initialize security middleware (Talisman, rate limiting, logging)
    init_security(app, cfg)
    init_audit_logger()

    try:
        app.extensions[EXTENSION_KEY] = build_engine(cfg, on_granted=on_granted, clock=clock)
        logger.info("✅ Authentication engine initialized")
    except AllowListUnavailable as e:
        logger.error(f"❌ Allow-list initialization failed: {e.message}")
        raise

    register_blueprints(app)
    register_error_handlers(app)
    register_request_handlers(app)
    register_commands(app)

    logger.info("🚀 Application factory completed successfully")
    return app


def register_blueprints(app: Flask) -> None:
    """Register all application blueprints."""

    # Challenge issuing and signature verification
    from dogeauth.blueprints.auth import auth_bp
    app.register_blueprint(auth_bp)

    # Health and metrics
    from dogeauth.blueprints.admin import admin_bp
    app.register_blueprint(admin_bp)

    logger.info("✅ All blueprints registered")


def register_error_handlers(app: Flask) -> None:
    """Register global error handlers."""

    @app.errorhandler(AllowListUnavailable)
    def allow_list_unavailable(e: AllowListUnavailable):
        # misconfigured server, reported apart from authentication denials
        logger.error(f"Allow-list unavailable: {e.message}")
        get_audit_logger().log_security_event("allow_list_unavailable", "high", {"message": e.message})
        body = e.to_dict()
        body["message"] = "Authentication service temporarily unavailable"
        return jsonify(body), 503

    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({"error": "bad_request", "message": str(e)}), 400

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "not_found", "message": "Resource not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "method_not_allowed", "message": str(e)}), 405

    @app.errorhandler(429)
    def rate_limit_exceeded(e):
        get_audit_logger().log_rate_limit_exceeded(request.remote_addr, request.path)
        return jsonify({"error": "rate_limit_exceeded", "message": str(e)}), 429

    @app.errorhandler(500)
    def internal_error(e):
        logger.error(f"Internal server error: {e}", exc_info=True)
        return jsonify({"error": "internal_error", "message": "An unexpected error occurred"}), 500


def register_request_handlers(app: Flask) -> None:
    """Register before/after request handlers."""

    @app.after_request
    def add_cors_headers(response):
        """Allow kiosk pages served from other origins to call the API."""
        cfg = app.config.get("APP_CONFIG", {})
        response.headers["Access-Control-Allow-Origin"] = cfg.get("CORS_ORIGINS", "*")
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        return response


def register_commands(app: Flask) -> None:
    """Register ``flask`` CLI commands for operators."""

    @app.cli.command("sweep-challenges")
    def sweep_challenges():
        """Evict expired challenges now."""
        removed = app.extensions[EXTENSION_KEY].sweep()
        click.echo(f"Swept {removed} expired challenges")

    @app.cli.command("reload-allow-list")
    def reload_allow_list():
        """Re-read the allow-list source."""
        count = app.extensions[EXTENSION_KEY].gate.refresh()
        click.echo(f"Allow-list holds {count} addresses")
