"""
Configuration for GarageBoard.

All values come from the environment (a .env file is loaded first), so the
same code runs in development, tests and production.
"""

import os
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

# Load .env file early so environment variables are available for Config class
# This must happen before the Config class is defined
load_dotenv(override=True)

# Base directory (where this file lives)
BASE_DIR = Path(__file__).resolve().parent


class Config:
    """Default configuration for the Flask application."""

    # Flask settings
    SECRET_KEY = os.environ.get("FLASK_SECRET_KEY", "dev-secret-key")
    SESSION_COOKIE_NAME = "garage_board_session"
    ENVIRONMENT = os.environ.get("FLASK_ENV", "development")

    # Debug mode
    DEBUG = os.environ.get("FLASK_DEBUG", "1") == "1"

    # ==========================================================================
    # Billing
    # ==========================================================================
    # TAX_RATE: fraction applied to (parts + labor) of every estimate.
    #   Default: 0.18 (18% GST)
    #
    # PAYMENT_TOLERANCE: how far below zero a payment may push an invoice
    #   balance before it is rejected as an overpayment.
    #   Default: 0.00 (no overpayment at all)
    #
    # INVOICE_DUE_DAYS: days between invoice issue and due date.
    # ==========================================================================
    TAX_RATE = Decimal(os.environ.get("TAX_RATE", "0.18"))
    PAYMENT_TOLERANCE = Decimal(os.environ.get("PAYMENT_TOLERANCE", "0.00"))
    INVOICE_DUE_DAYS = int(os.environ.get("INVOICE_DUE_DAYS", "7"))
    CURRENCY_SYMBOL = os.environ.get("CURRENCY_SYMBOL", "₹")

    # Upper bound for every persistence gateway call, in seconds.
    # A call that exceeds it is treated as failed (optimistic moves roll back).
    GATEWAY_TIMEOUT_SECONDS = float(os.environ.get("GATEWAY_TIMEOUT_SECONDS", "10"))

    # Free-text limits for form input
    MAX_ITEM_NAME_LENGTH = 200


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    TESTING = False
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    PERMANENT_SESSION_LIFETIME = 3600  # 1 hour


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    TESTING = False


class TestingConfig(Config):
    """Testing configuration."""
    DEBUG = False
    TESTING = True
    TAX_RATE = Decimal("0.18")
    PAYMENT_TOLERANCE = Decimal("0.00")
    GATEWAY_TIMEOUT_SECONDS = 2.0
