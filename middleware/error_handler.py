"""
Error Handler Middleware
Global error handling
"""

from flask import jsonify
from services.exceptions import PresenceError
import logging

logger = logging.getLogger(__name__)


def register_error_handlers(app):
    """Register error handlers"""

    @app.errorhandler(PresenceError)
    def presence_error(error):
        if error.status_code >= 500:
            logger.error(f"{error.error}: {error.message}")
        else:
            logger.info(f"{error.error}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({
            "success": False,
            "error": "not_found",
            "message": "The requested resource was not found",
            "data": {}
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({
            "success": False,
            "error": "method_not_allowed",
            "message": "Method not allowed for this endpoint",
            "data": {}
        }), 405

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Internal error: {error}")
        return jsonify({
            "success": False,
            "error": "internal_error",
            "message": "An unexpected error occurred",
            "data": {}
        }), 500

    @app.errorhandler(400)
    def bad_request(error):
        return jsonify({
            "success": False,
            "error": "bad_request",
            "message": str(error),
            "data": {}
        }), 400
