"""
Forum error taxonomy and the DRF exception handler.

Service and store code raise the ForumError subclasses below; the API layer
turns them into a consistent {'error': ..., 'code': ...} response.
"""
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from django.db import IntegrityError
import logging

logger = logging.getLogger(__name__)


class ForumError(Exception):
    """Base forum error."""
    code = 'forum_error'
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message, code=None):
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(message)

    def to_payload(self):
        return {'error': self.message, 'code': self.code}


class ValidationError(ForumError):
    """Malformed input. Not retried."""
    code = 'validation_error'


class ModerationRejected(ValidationError):
    """User text did not pass AutoMod; nothing was persisted."""
    code = 'moderation_rejected'

    def __init__(self, result):
        self.result = result
        super().__init__(result.reason or f"Content {result.status} by moderation")

    def to_payload(self):
        payload = super().to_payload()
        payload['status'] = self.result.status
        payload['reason'] = self.result.reason
        return payload


class AuthenticationError(ForumError):
    """Mutating call without an authenticated user."""
    code = 'authentication_required'
    http_status = status.HTTP_401_UNAUTHORIZED


class PermissionDeniedError(ForumError):
    """Authenticated, but not allowed (blocked user, non-moderator)."""
    code = 'permission_denied'
    http_status = status.HTTP_403_FORBIDDEN


class NotFoundError(ForumError):
    """Reference to a thread, comment or flag that does not exist."""
    code = 'not_found'
    http_status = status.HTTP_404_NOT_FOUND


class StoreError(ForumError):
    """Underlying data-access failure."""
    code = 'store_error'
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE


class CommentTreeError(ForumError):
    """Comment rows whose parent links or depths are inconsistent."""
    code = 'comment_tree_integrity'
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message, comment_ids=()):
        self.comment_ids = list(comment_ids)
        super().__init__(message)


def custom_exception_handler(exc, context):
    """
    Custom exception handler that:
    1. Converts ForumError subclasses to their HTTP status
    2. Keeps DRF's own handling for its exceptions, in a consistent format
    3. Logs anything unexpected
    """
    if isinstance(exc, ForumError):
        if isinstance(exc, StoreError):
            logger.error("Store failure: %s", exc)
        return Response(exc.to_payload(), status=exc.http_status)

    response = exception_handler(exc, context)

    if response is not None:
        if not isinstance(response.data, dict) or 'error' not in response.data:
            response.data = {
                'error': str(exc),
                'details': response.data
            }
        return response

    if isinstance(exc, IntegrityError):
        logger.warning("IntegrityError: %s", exc)
        return Response(
            {'error': 'Data integrity error. This may be a duplicate entry.'},
            status=status.HTTP_409_CONFLICT
        )

    logger.exception("Unhandled exception: %s", exc)

    return Response(
        {'error': 'An unexpected error occurred.'},
        status=status.HTTP_500_INTERNAL_SERVER_ERROR
    )
