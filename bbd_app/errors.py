from flask import current_app, jsonify
from flask_wtf.csrf import CSRFError
from werkzeug.exceptions import HTTPException


class ApiError(Exception):
    """Error surfaced to API clients as a JSON envelope."""

    status = 400

    def __init__(self, message, status=None, errors=None, details=None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status
        self.errors = errors
        self.details = details

    def to_dict(self):
        payload = {"success": False, "error": self.message}
        if self.errors:
            payload["errors"] = self.errors
        if self.details:
            payload["details"] = self.details
        return payload


class Unauthorized(ApiError):
    status = 401

    def __init__(self, message="Unauthorized"):
        super().__init__(message)


class Forbidden(ApiError):
    status = 403

    def __init__(self, message="Forbidden"):
        super().__init__(message)


class NotFound(ApiError):
    status = 404

    def __init__(self, message="Not found"):
        super().__init__(message)


def ok(data=None, status=200, **extra):
    payload = {"success": True, "data": data}
    payload.update(extra)
    return jsonify(payload), status


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def _handle_api_error(exc):
        return jsonify(exc.to_dict()), exc.status

    @app.errorhandler(CSRFError)
    def _handle_csrf_error(exc):
        current_app.logger.warning("CSRF check failed: %s", exc.description)
        return jsonify({"success": False, "error": exc.description or "CSRF token missing or invalid"}), 400

    @app.errorhandler(HTTPException)
    def _handle_http_error(exc):
        return jsonify({"success": False, "error": exc.description or exc.name}), exc.code

    @app.errorhandler(Exception)
    def _handle_unexpected(exc):
        current_app.logger.exception("Unhandled error: %s", exc)
        return jsonify({"success": False, "error": "Internal server error"}), 500
