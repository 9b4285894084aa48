"""
Logging Middleware
Request/response logging
"""

import logging
from logging.handlers import RotatingFileHandler
import os
from flask import request
from config import Config

logger = logging.getLogger(__name__)


def setup_logging(app):
    """Setup logging configuration"""

    # Create logs directory if not exists
    log_dir = os.path.dirname(Config.LOG_FILE)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    # File handler with UTF-8 encoding (Uzbek/Russian message bodies)
    file_handler = RotatingFileHandler(
        Config.LOG_FILE,
        maxBytes=Config.LOG_MAX_BYTES,
        backupCount=Config.LOG_BACKUP_COUNT,
        encoding='utf-8'
    )
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))

    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, Config.LOG_LEVEL))
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s'
    ))

    # Configure app logger
    app.logger.addHandler(file_handler)
    app.logger.addHandler(console_handler)
    app.logger.setLevel(getattr(logging, Config.LOG_LEVEL))

    # Configure root logger
    logging.root.setLevel(getattr(logging, Config.LOG_LEVEL))
    logging.root.addHandler(file_handler)
    logging.root.addHandler(console_handler)


def register_request_logging(app):
    """Log every incoming request and stamp service headers"""

    @app.before_request
    def before_request():
        logger.info(f"{request.method} {request.path} from {request.remote_addr}")

    @app.after_request
    def after_request(response):
        response.headers['X-Service'] = 'shift-presence-service'
        response.headers['X-Version'] = '1.0.0'
        return response
