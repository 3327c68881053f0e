import logging

from django.conf import settings
from django.core.exceptions import PermissionDenied
from django.db import DatabaseError, IntegrityError
from django.dispatch import Signal
from django.http import Http404
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import set_rollback

from .errors import AppError

logger = logging.getLogger('backend.core')

# Sent for every API error answered with a 5xx status.
# kwargs: status_code, code, unhandled
api_error = Signal()

DRF_CODES = {
    status.HTTP_400_BAD_REQUEST: 'validation_error',
    status.HTTP_401_UNAUTHORIZED: 'unauthorized',
    status.HTTP_403_FORBIDDEN: 'forbidden',
    status.HTTP_404_NOT_FOUND: 'not_found',
    status.HTTP_405_METHOD_NOT_ALLOWED: 'method_not_allowed',
    status.HTTP_429_TOO_MANY_REQUESTS: 'throttled',
}


def error_body(code, message, details=None):
    body = {'success': False, 'code': code, 'message': message}
    if details is not None:
        body['details'] = details
    return body


def _drf_message(detail):
    """Pick a readable message out of a DRF error detail (str, list or dict)"""
    if isinstance(detail, (list, tuple)) and detail:
        return _drf_message(detail[0])
    if isinstance(detail, dict):
        if 'detail' in detail:
            return _drf_message(detail['detail'])
        return 'Invalid input.'
    return str(detail)


def api_exception_handler(exc, context):
    """
    DRF exception handler producing {success: false, code, message, details}.

    IntegrityError (duplicate keys and friends) maps to 409. Unknown errors
    are logged with their traceback and answered with a generic 500; the
    exception text is only included outside production.
    """
    view = context.get('view')
    view_name = view.__class__.__name__ if view else 'unknown'

    if isinstance(exc, AppError):
        if exc.status_code >= 500:
            logger.error(f'{view_name}: {exc.code}: {exc.message}')
            api_error.send(sender=AppError, status_code=exc.status_code, code=exc.code, unhandled=False)
        return Response(error_body(exc.code, exc.message, exc.details), status=exc.status_code)

    if isinstance(exc, Http404):
        exc = exceptions.NotFound()
    elif isinstance(exc, PermissionDenied):
        exc = exceptions.PermissionDenied()

    if isinstance(exc, exceptions.APIException):
        code = DRF_CODES.get(exc.status_code, 'error')
        details = exc.detail if isinstance(exc.detail, (dict, list)) else None
        response = Response(
            error_body(code, _drf_message(exc.detail), details),
            status=exc.status_code,
        )
        if getattr(exc, 'auth_header', None):
            response['WWW-Authenticate'] = exc.auth_header
        if getattr(exc, 'wait', None):
            response['Retry-After'] = str(int(exc.wait))
        return response

    if isinstance(exc, IntegrityError):
        set_rollback()
        logger.warning(f'{view_name}: integrity error: {exc}')
        return Response(
            error_body('conflict', 'Resource already exists.'),
            status=status.HTTP_409_CONFLICT,
        )

    logger.exception(f'{view_name}: unhandled error: {exc}')
    set_rollback()
    details = None if getattr(settings, 'IS_PRODUCTION', False) else str(exc)
    code = 'database_error' if isinstance(exc, DatabaseError) else 'internal_error'
    api_error.send(sender=exc.__class__, status_code=500, code=code, unhandled=True)
    return Response(
        error_body(code, 'An unexpected error occurred.', details),
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
