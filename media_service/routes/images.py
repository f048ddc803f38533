"""
/images endpoints for uploading, deleting and serving property images.
"""
import os
from datetime import datetime, timezone
from flask import request, jsonify, send_from_directory
from werkzeug.exceptions import BadRequest, NotFound, Unauthorized, RequestEntityTooLarge

from media_service.utils.errors import (
    BatchProcessingError,
    ImageTooLargeError,
    ImageValidationError,
    PersistenceError,
)
from media_service.utils.events import LoggingObserver
from media_service.utils.upload_orchestrator import UploadedFile, UploadOrchestrator


def _authenticate(app):
    auth_header = request.headers.get('Authorization', '')
    if not auth_header.startswith('Bearer '):
        raise Unauthorized('Missing or invalid Authorization header')

    api_key = auth_header.replace('Bearer ', '').strip()
    if not app.config.get('API_KEY') or api_key != app.config['API_KEY']:
        raise Unauthorized('Invalid API key')


def _describe(error: ImageValidationError) -> str:
    if error.filename:
        return f'Image {error.position} ({error.filename}): {error.message}'
    return error.message


def _elapsed_ms(start_time):
    return int((datetime.now(timezone.utc) - start_time).total_seconds() * 1000)


def register_image_routes(app):
    """Register the image endpoints with the Flask app."""

    @app.route('/images', methods=['POST'])
    def upload_images():
        """
        Compress and store a batch of property images.

        Accepts multipart/form-data with:
        - images: File (1-10 JPEG/PNG/WebP images, repeated field)
        - imageMetadata: str (optional JSON array of {altText, order, isMain})

        Returns JSON with one entry per image, in upload order.
        """
        start_time = datetime.now(timezone.utc)
        _authenticate(app)

        uploads = request.files.getlist('images')
        files = [
            UploadedFile(filename=f.filename or '', content_type=f.mimetype, data=f.read())
            for f in uploads
        ]

        orchestrator = UploadOrchestrator(
            app.image_storage,
            limits=app.upload_limits,
            target=app.compression_target,
            observer=LoggingObserver(app.logger),
            rollback_on_failure=app.config['ROLLBACK_ON_FAILURE'],
        )

        try:
            batch = orchestrator.process_batch(files, metadata=request.form.get('imageMetadata'))

        except ImageTooLargeError as e:
            raise RequestEntityTooLarge(_describe(e))

        except ImageValidationError as e:
            raise BadRequest(_describe(e))

        except BatchProcessingError as e:
            app.logger.error(f'Image upload failed: {str(e)}', exc_info=True, extra={
                'endpoint': '/images',
                'duration_ms': _elapsed_ms(start_time),
                'status': 'error'
            })
            return jsonify({
                'status': 'error',
                'error': 'Image processing failed',
                'error_code': 'IMAGE_PROCESSING_FAILED',
                'message': str(e),
                'filename': e.filename,
                'position': e.position,
                'persisted': e.persisted,
            }), 500

        app.logger.info('Upload completed', extra={
            'endpoint': '/images',
            'duration_ms': _elapsed_ms(start_time),
            'status': 'success',
            'count': len(batch.images),
        })

        return jsonify({
            'status': 'success',
            'count': len(batch.images),
            'images': batch.to_list(),
        }), 201

    @app.route('/images/<public_id>', methods=['DELETE'])
    def delete_image(public_id):
        """Delete a stored image by its public id."""
        _authenticate(app)

        storage = app.image_storage
        try:
            if not storage.exists(public_id):
                raise NotFound(f'Image not found: {public_id}')
            storage.delete(public_id)
        except PersistenceError as e:
            raise BadRequest(str(e))

        app.logger.info(f'Deleted image {public_id}', extra={'endpoint': '/images', 'status': 'success'})
        return jsonify({'status': 'success', 'publicId': public_id}), 200

    @app.route('/uploads/<path:filename>', methods=['GET'])
    def serve_upload(filename):
        """Serve a stored image."""
        return send_from_directory(os.path.abspath(app.config['UPLOAD_DIR']), filename)
