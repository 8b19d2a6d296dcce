"""JSON error handlers for the application."""
from flask import jsonify
from werkzeug.exceptions import HTTPException

from staffhub.core.errors import GENERIC_ERROR_MESSAGE, NOT_AUTHORIZED_MESSAGE, ServiceError


def register_error_handlers(app):
    """Register error handlers with the Flask app."""

    @app.errorhandler(ServiceError)
    def service_error(error):
        """Render any service-level error as ``{"error": message}``."""
        if error.status >= 500:
            app.logger.error("Service error: %s", error, exc_info=True)
        else:
            app.logger.info("Request failed with %s: %s", error.status, error.message)
        return jsonify(error.to_dict()), error.status

    @app.errorhandler(400)
    def bad_request(error):
        """Handle 400 Bad Request errors."""
        return jsonify({"error": "Bad Request"}), 400

    @app.errorhandler(401)
    def unauthorized(error):
        return jsonify({"error": "Missing Authorization Header"}), 401

    @app.errorhandler(403)
    def forbidden(error):
        return jsonify({"error": NOT_AUTHORIZED_MESSAGE}), 403

    @app.errorhandler(404)
    def not_found(error):
        """Handle 404 Not Found errors."""
        return jsonify({"error": "Route not found, please check the URL or try another route"}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(500)
    def internal_error(error):
        """Handle 500 Internal Server Error."""
        app.logger.error("Internal error: %s", error, exc_info=True)
        return jsonify({"error": GENERIC_ERROR_MESSAGE}), 500

    @app.errorhandler(Exception)
    def handle_exception(error):
        """Handle uncaught exceptions."""
        # Pass through HTTP errors
        if isinstance(error, HTTPException):
            return error

        app.logger.error("Unhandled exception: %s", error, exc_info=True)
        return jsonify({"error": GENERIC_ERROR_MESSAGE}), 500
