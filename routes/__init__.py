"""
Flask route blueprints for GarageBoard.

This module contains all route handlers organized by functionality:
- api: Health check, board columns, job moves
- estimates: Estimate item editing
- billing: Invoices, delivery, payments, settle-and-complete

Each blueprint is registered with the Flask app in create_app().
"""

from .api import api_bp
from .estimates import estimates_bp
from .billing import billing_bp

__all__ = [
    "api_bp",
    "estimates_bp",
    "billing_bp",
]


def register_blueprints(app):
    """
    Register all blueprints with the Flask app.

    Args:
        app: Flask application instance
    """
    app.register_blueprint(api_bp)
    app.register_blueprint(estimates_bp)
    app.register_blueprint(billing_bp)
