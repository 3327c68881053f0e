"""
Application error hierarchy.

Every error carries an HTTP status, a machine readable code and a message.
Services raise these; the DRF exception handler in backend.core.exceptions
turns them into {success: false, code, message, details} responses.
"""
from rest_framework import status
from rest_framework.exceptions import APIException


class AppError(APIException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code = 'internal_error'
    default_detail = 'An unexpected error occurred.'

    def __init__(self, message=None, details=None, code=None):
        super().__init__(detail=message or self.default_detail, code=code or self.default_code)
        self.message = str(self.detail)
        self.code = code or self.default_code
        self.details = details

    def __str__(self):
        return self.message


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = 'validation_error'
    default_detail = 'Invalid input.'


class Unauthorized(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_code = 'unauthorized'
    default_detail = 'Authentication required.'


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = 'forbidden'
    default_detail = 'You do not have permission to perform this action.'


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = 'not_found'
    default_detail = 'Resource not found.'


class Conflict(AppError):
    status_code = status.HTTP_409_CONFLICT
    default_code = 'conflict'
    default_detail = 'Resource already exists.'


class InternalError(AppError):
    pass
