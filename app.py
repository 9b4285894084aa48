"""
Shift Presence Service
Main Flask Application Entry Point
"""

from flask import Flask, jsonify
from flask_cors import CORS
from config import Config
from database.connection import (
    init_database, ping_database, initialize_connection_pool, close_connection_pool
)
from middleware.error_handler import register_error_handlers
from middleware.logging_middleware import setup_logging, register_request_logging
from services.exceptions import PresenceError
import atexit
import logging

logger = logging.getLogger(__name__)

SERVICE_NAME = 'shift-presence-service'
VERSION = '1.0.0'


def create_app(config_object=Config):
    """Build and configure the Flask application"""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Setup CORS
    CORS(app, resources={
        r"/api/*": {
            "origins": config_object.CORS_ORIGINS,
            "methods": ["GET", "POST", "OPTIONS"],
            "allow_headers": ["Content-Type", "X-Telegram-Bot-Api-Secret-Token"]
        }
    })

    # Setup logging
    if not config_object.TESTING:
        setup_logging(app)

    register_request_logging(app)
    register_error_handlers(app)

    # Import and register blueprints
    from routes.attendance import attendance_bp
    from routes.telegram_bot import telegram_bot_bp

    app.register_blueprint(attendance_bp, url_prefix='/api/attendance')
    app.register_blueprint(telegram_bot_bp, url_prefix='/api/telegram-bot')

    @app.route('/')
    def index():
        """Root endpoint"""
        return jsonify({
            'service': 'Shift Presence Service',
            'version': VERSION,
            'endpoints': {
                'attendance': '/api/attendance',
                'telegram_bot': '/api/telegram-bot'
            },
            'health': '/health'
        }), 200

    @app.route('/health')
    def health_check():
        """Health check endpoint"""
        try:
            ping_database()
            return jsonify({
                'status': 'healthy',
                'service': SERVICE_NAME,
                'database': 'connected',
                'version': VERSION
            }), 200
        except PresenceError as e:
            logger.error(f"Health check failed: {e.message}")
            return jsonify({
                'status': 'unhealthy',
                'service': SERVICE_NAME,
                'database': 'disconnected',
                'error': e.message
            }), 503

    if not config_object.TESTING:
        _bootstrap(app, config_object)

    return app


def _bootstrap(app, config_object):
    """Database schema and background jobs for a live process"""
    with app.app_context():
        logger.info("=" * 70)
        logger.info("SHIFT PRESENCE SERVICE")
        logger.info("=" * 70)
        if initialize_connection_pool():
            atexit.register(close_connection_pool)

        logger.info("Initializing database...")
        try:
            init_database()
            logger.info("✓ Database initialized successfully")
        except Exception as e:
            logger.error(f"✗ Database initialization failed: {e}")
            logger.error("Please check your database configuration and try again")

        if config_object.SCHEDULER_ENABLED:
            from schedulers.reminder_scheduler import start_reminder_scheduler
            app.extensions['reminder_scheduler'] = start_reminder_scheduler()

        logger.info("📋 Available Endpoints:")
        logger.info("  Attendance:")
        logger.info("    POST   /api/attendance/ip-checkin")
        logger.info("    POST   /api/attendance/remote-checkin")
        logger.info("    POST   /api/attendance/<id>/checkout")
        logger.info("    GET    /api/attendance/status")
        logger.info("  Telegram bot:")
        logger.info("    POST   /api/telegram-bot/check-presence")
        logger.info("    POST   /api/telegram-bot/reminder-response")
        logger.info("    POST   /api/telegram-bot/webhook")
        logger.info("    POST   /api/telegram-bot/trigger-reminders")
        logger.info("=" * 70)


app = create_app()


if __name__ == '__main__':
    logger.info(f">> Starting server on http://0.0.0.0:{Config.PORT}")
    logger.info(f">> Health Check: http://localhost:{Config.PORT}/health")

    app.run(
        host='0.0.0.0',
        port=Config.PORT,
        debug=Config.DEBUG
    )
