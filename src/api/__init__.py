"""
Fee Splitter API Package.

Flask blueprints exposing the splitter over HTTP.

Blueprints:
- splitter: Splitter commands and queries, local chain and bank controls
- monitoring: Health check and metrics
"""

import logging
import os

from dotenv import load_dotenv
from flask import Flask

from api.monitoring import monitoring_bp
from api.splitter import splitter_bp
from api.state import init_service

logger = logging.getLogger(__name__)

# List of all blueprints for registration
# Tuple format: (blueprint, url_prefix)
ALL_BLUEPRINTS = [
    (splitter_bp, ''),
    (monitoring_bp, ''),
]


def register_blueprints(app):
    """Register all blueprints with the Flask app."""
    for blueprint, url_prefix in ALL_BLUEPRINTS:
        app.register_blueprint(blueprint, url_prefix=url_prefix)


def create_app(storage=None, genesis=None, configure_logs: bool = True) -> Flask:
    """
    Build the Flask application.

    Args:
        storage: Storage backend; defaults to the one selected by STORAGE_BACKEND
        genesis: Setup message used when the store holds no state yet
        configure_logs: Configure root logging from LOG_LEVEL / LOG_FORMAT
    """
    load_dotenv()

    from monitoring import configure_logging, setup_request_logging

    if configure_logs:
        configure_logging(level=os.getenv("LOG_LEVEL", "INFO"), log_file=os.getenv("LOG_FILE"))

    init_service(storage=storage, genesis=genesis)

    app = Flask(__name__)
    register_blueprints(app)
    setup_request_logging(app)
    return app


def run_server():
    """Run the development server."""
    app = create_app()
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 5000))
    debug = os.getenv("FLASK_DEBUG", "").lower() == "true"
    logger.info("Starting Fee Splitter API on %s:%d", host, port)
    app.run(host=host, port=port, debug=debug)
