"""
Rewards Economy Engine
Flask application factory
"""
import os
import logging
from flask import Flask
from flask_cors import CORS

from .extensions import db, migrate, configure_sqlite
from .config import get_config, validate_config
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def create_app(config_name: str = None, config_overrides: dict = None) -> Flask:
    """
    Application factory for creating Flask app instances.

    Args:
        config_name: Configuration environment (development, production, testing)
        config_overrides: Extra config values applied last (tests)

    Returns:
        Configured Flask application
    """
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    # Setup logging before anything else
    setup_logging()
    validate_config(config_name)

    app = Flask(__name__)
    app.config.from_object(get_config(config_name))
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    with app.app_context():
        if db.engine.dialect.name == 'sqlite':
            configure_sqlite(db.engine)

    # Configure CORS - allow frontend origins
    cors_origins = [o.strip() for o in os.getenv('CORS_ORIGINS', '').split(',') if o.strip()]
    if config_name != 'production':
        cors_origins += ['http://localhost:3000', 'http://localhost:5173', 'http://127.0.0.1:5173']
    CORS(app, origins=cors_origins, allow_headers=['Content-Type', 'X-User-Id', 'X-Internal-Key', 'Idempotency-Key'])

    # Register blueprints
    register_blueprints(app)

    # Register CLI commands
    from .commands import init_app as init_commands
    init_commands(app)

    # Register error handlers
    register_error_handlers(app)

    # Health check endpoint
    @app.route('/health')
    def health_check():
        return {'status': 'healthy', 'service': 'rewards-engine'}

    logger.info(f'Rewards engine started ({config_name})')
    return app


def register_blueprints(app: Flask) -> None:
    """Register all API blueprints."""
    from .api.rewards import rewards_bp
    from .api.wallet import wallet_bp
    from .api.vip import vip_bp

    app.register_blueprint(rewards_bp, url_prefix='/api/rewards')
    app.register_blueprint(wallet_bp, url_prefix='/api/wallet')
    app.register_blueprint(vip_bp, url_prefix='/api/vip')


def register_error_handlers(app: Flask) -> None:
    """Register error handlers."""
    from .utils.exceptions import RewardsError, ConsistencyFailure
    from .utils.errors import error_response, result_error_response, ErrorCode

    @app.errorhandler(ConsistencyFailure)
    def consistency_failure(error):
        db.session.rollback()
        app.logger.critical(f'Consistency failure: {error.message} ({error.original_error})')
        return error_response('The operation could not be completed. Please retry.',
                              ErrorCode.CONSISTENCY_FAILURE, 500, log_error=False)

    @app.errorhandler(RewardsError)
    def rewards_error(error):
        db.session.rollback()
        return result_error_response(error.to_dict())

    @app.errorhandler(400)
    def bad_request(error):
        return error_response('Bad request', ErrorCode.INVALID_REQUEST, 400, log_error=False)

    @app.errorhandler(404)
    def not_found(error):
        return error_response('Not found', ErrorCode.NOT_FOUND, 404, log_error=False)

    @app.errorhandler(405)
    def method_not_allowed(error):
        return error_response('Method not allowed', ErrorCode.INVALID_REQUEST, 405, log_error=False)

    @app.errorhandler(500)
    def internal_error(error):
        return error_response('Internal server error', ErrorCode.INTERNAL_ERROR, 500)
