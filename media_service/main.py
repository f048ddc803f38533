"""
Main Flask application with configuration, logging, and error handlers.
"""
import os
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from flask import Flask, jsonify

from media_service.config import Config, compression_target, upload_limits
from media_service.utils.storage import LocalImageStorage


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    EXTRA_FIELDS = (
        'endpoint', 'duration_ms', 'status', 'event',
        'image_filename', 'position', 'quality', 'size', 'attempt', 'count',
    )

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        for name in self.EXTRA_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(app):
    """Set up JSON logging for the application."""
    app.logger.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())

    log_level = getattr(logging, app.config['LOG_LEVEL'].upper(), logging.INFO)
    handler.setLevel(log_level)
    app.logger.setLevel(log_level)

    app.logger.addHandler(handler)

    # Prevent propagation to avoid duplicate logs
    app.logger.propagate = False


def create_app(config_overrides=None):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    setup_logging(app)

    # Invalid quality bounds fail here rather than on the first upload
    app.upload_limits = upload_limits(app.config)
    app.compression_target = compression_target(app.config)
    app.image_storage = LocalImageStorage(app.config['UPLOAD_DIR'], app.config['BASE_URL'])

    register_error_handlers(app)
    register_routes(app)

    app.logger.info(f"Flask application initialized ({app.config['FLASK_ENV']})")

    return app


def error_response(error, error_code, message, status_code, **details):
    body = {
        'status': 'error',
        'error': error,
        'error_code': error_code,
        'message': message,
    }
    body.update(details)
    return jsonify(body), status_code


def register_error_handlers(app):
    """Register error handlers for common HTTP status codes."""

    @app.errorhandler(400)
    def bad_request(error):
        app.logger.warning(f'Bad request: {str(error)}')
        return error_response(
            'Bad request', 'BAD_REQUEST',
            str(error.description) if hasattr(error, 'description') else 'Invalid request data',
            400,
        )

    @app.errorhandler(401)
    def unauthorized(error):
        app.logger.warning(f'Unauthorized access attempt: {str(error)}')
        return error_response('Unauthorized', 'AUTH_FAILED', 'Invalid or missing API key', 401)

    @app.errorhandler(404)
    def not_found(error):
        app.logger.warning(f'Resource not found: {str(error)}')
        return error_response(
            'Not found', 'NOT_FOUND',
            str(error.description) if hasattr(error, 'description') else 'Resource not found',
            404,
        )

    @app.errorhandler(413)
    def request_entity_too_large(error):
        app.logger.warning(f'Request too large: {str(error)}')
        description = getattr(error, 'description', None)
        if not description or description == type(error).description:
            description = f"Image exceeds maximum size of {app.config['MAX_FILE_SIZE']} bytes"
        return error_response('Request entity too large', 'IMAGE_TOO_LARGE', description, 413)

    @app.errorhandler(500)
    def internal_server_error(error):
        app.logger.error(f'Internal server error: {str(error)}', exc_info=True)
        return error_response('Internal server error', 'INTERNAL_ERROR', 'An unexpected error occurred', 500)

    @app.errorhandler(503)
    def service_unavailable(error):
        app.logger.error(f'Service unavailable: {str(error)}')
        return error_response(
            'Service unavailable', 'SERVICE_UNAVAILABLE', 'Upload storage is currently unavailable', 503,
        )


def register_routes(app):
    """Register application routes."""

    from media_service.routes.images import register_image_routes
    register_image_routes(app)

    @app.route('/health', methods=['GET'])
    def health():
        """
        Health check endpoint that tests the upload directory.
        Returns 200 if it can be written, 503 otherwise.
        """
        try:
            upload_dir = Path(app.config['UPLOAD_DIR'])
            upload_dir.mkdir(parents=True, exist_ok=True)
            if not os.access(upload_dir, os.W_OK):
                raise PermissionError(f'Upload directory is not writable: {upload_dir}')

            app.logger.info('Health check passed')

            return jsonify({
                'status': 'healthy',
                'timestamp': datetime.now(timezone.utc).isoformat()
            }), 200

        except OSError as e:
            app.logger.error(f'Health check failed: {str(e)}', exc_info=True)
            return jsonify({
                'status': 'unhealthy',
                'error': str(e),
                'timestamp': datetime.now(timezone.utc).isoformat()
            }), 503


# Create the Flask app instance
app = create_app()


if __name__ == '__main__':
    # For local development only
    port = int(os.environ.get('PORT', 8000))
    app.run(host='0.0.0.0', port=port, debug=(Config.FLASK_ENV != 'production'))
