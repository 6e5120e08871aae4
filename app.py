"""
GarageBoard - Flask Application Entry Point.

This is a slim app factory that:
1. Loads configuration (.env first) and configures logging
2. Wraps the persistence gateway in a time-bounded GatewayClient
3. Creates the board, estimate, invoice and payment services
4. Wires them behind the LifecycleService facade
5. Registers route blueprints and JSON error handlers

ARCHITECTURE:
    Main Thread
    ├── Flask request handling
    ├── Optimistic board moves (applied synchronously)
    └── Cleanup on shutdown (waits for in-flight commits)

    Commit Threads (one per applied move)
    └── save_job_status through the GatewayClient, then settle/rollback

Storage is reached only through the PersistenceGateway passed to
create_app(). Without one, an InMemoryGateway is used (development).
"""

from __future__ import annotations

import atexit
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from flask import Flask
from werkzeug.exceptions import HTTPException

from logging_config import setup_logging, get_logger
from core.delivery import DeliveryGateway, LoggingDeliveryGateway
from core.gateway import InMemoryGateway, PersistenceGateway
from core.gateway_client import GatewayClient
from modules.estimator import EstimateAggregator
from services import (
    BoardCoordinator,
    EstimateService,
    InvoiceService,
    JobLocks,
    LifecycleService,
    PaymentService,
)
from routes import register_blueprints


# Module logger (configured after setup_logging)
logger = get_logger(__name__)


def _get_base_path() -> Path:
    """
    Get the base path for the application.

    In a frozen bundle: Returns the directory containing the executable
    In development: Returns the directory containing app.py
    """
    if getattr(sys, 'frozen', False):
        return Path(sys.executable).parent
    else:
        return Path(__file__).parent


def create_app(
    config_object: str = "config.Config",
    gateway: Optional[PersistenceGateway] = None,
    delivery: Optional[DeliveryGateway] = None
) -> Flask:
    """
    Application factory - creates and configures Flask app.

    Args:
        config_object: Import path of the configuration class
        gateway: Persistence gateway (InMemoryGateway if omitted)
        delivery: Invoice delivery gateway (LoggingDeliveryGateway if omitted)

    Returns:
        Configured Flask application
    """
    # Use override=True so .env file always takes precedence over shell environment
    base_path = _get_base_path()
    env_file = base_path / '.env'
    if env_file.exists():
        load_dotenv(env_file, override=True)
    else:
        load_dotenv(override=True)

    # Create Flask app
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Configure logging
    log_level = logging.DEBUG if app.config.get("DEBUG") else logging.INFO
    enable_file_logging = app.config.get("ENVIRONMENT") == "production"

    root_logger = setup_logging(
        log_level=log_level,
        enable_file_logging=enable_file_logging
    )

    # Set Flask's logger to use our configured logger
    app.logger.handlers = root_logger.handlers
    app.logger.setLevel(log_level)

    logger.info(f"Starting GarageBoard in {app.config.get('ENVIRONMENT')} mode")

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    if gateway is None:
        logger.warning("No persistence gateway supplied; using in-memory storage")
        gateway = InMemoryGateway()

    client = GatewayClient(
        gateway,
        timeout_seconds=app.config.get("GATEWAY_TIMEOUT_SECONDS"),
        logger=get_logger("core.gateway_client"),
    )
    app.config["PERSISTENCE_GATEWAY"] = gateway

    # =========================================================================
    # SERVICES INITIALIZATION
    # =========================================================================

    currency = app.config.get("CURRENCY_SYMBOL")

    # Estimate edits and invoice generation serialize on the same per-job locks
    job_locks = JobLocks()

    board_service = BoardCoordinator(client, currency=currency)
    estimate_service = EstimateService(
        client,
        EstimateAggregator(default_tax_rate=app.config.get("TAX_RATE")),
        job_locks=job_locks,
    )
    invoice_service = InvoiceService(
        client,
        delivery=delivery or LoggingDeliveryGateway(get_logger("core.delivery")),
        due_days=app.config.get("INVOICE_DUE_DAYS"),
        job_locks=job_locks,
    )
    payment_service = PaymentService(
        client, tolerance=app.config.get("PAYMENT_TOLERANCE"), currency=currency
    )
    lifecycle_service = LifecycleService(
        board_service, estimate_service, invoice_service, payment_service
    )

    # Store in app config for access by routes
    app.config["BOARD_SERVICE"] = board_service
    app.config["LIFECYCLE_SERVICE"] = lifecycle_service
    logger.info("Services initialized")

    # =========================================================================
    # CLEANUP REGISTRATION
    # =========================================================================

    def cleanup():
        """Cleanup on application shutdown."""
        logger.info("Shutting down...")

        # Let in-flight commits settle (or roll back on timeout)
        board_service.shutdown()

        logger.info("Shutdown complete")

    atexit.register(cleanup)

    # =========================================================================
    # REGISTER BLUEPRINTS
    # =========================================================================

    register_blueprints(app)

    # =========================================================================
    # ERROR HANDLERS
    # =========================================================================

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return {
            "ok": False,
            "status": "failed",
            "error": {"code": e.name.replace(" ", ""), "message": e.description,
                      "details": {}, "retryable": False},
        }, e.code

    @app.errorhandler(500)
    def handle_server_error(e):
        logger.error(f"500 error: {e}", exc_info=True)
        return {
            "ok": False,
            "status": "failed",
            "error": {"code": "InternalServerError", "message": "An unexpected error occurred",
                      "details": {}, "retryable": True},
        }, 500

    logger.info("Application initialized successfully")
    return app


if __name__ == "__main__":
    app = create_app()
    debug_mode = os.environ.get("FLASK_DEBUG", "1") == "1"
    app.run(debug=debug_mode)
