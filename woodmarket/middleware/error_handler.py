import logging

from flask import jsonify
from marshmallow import ValidationError
from werkzeug.exceptions import HTTPException

from woodmarket.services.errors import StoreError

logger = logging.getLogger(__name__)


def register_error_handlers(app):
    """Map service failures and validation errors to JSON responses."""

    @app.errorhandler(StoreError)
    def handle_store_error(error):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(ValidationError)
    def handle_validation_error(error):
        return jsonify({"message": "Validation error", "errors": error.messages}), 400

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({"message": error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        logger.exception("Unhandled error: %s", error)
        return jsonify({"message": "Internal server error"}), 500
