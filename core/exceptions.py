"""
Service-layer error taxonomy and its mapping onto API responses.

Errors:
    - NotFound: missing product/variant/coupon/deal/inventory record
    - Conflict: duplicate slug/code, usage limit exhausted concurrently
    - BadRequest: cross-entity mismatch, missing fields, invalid date ranges
    - InternalError: unexpected data-store failure (generic message only)
"""
import logging
from functools import wraps

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """Base class for errors surfaced to callers verbatim."""
    status_code = status.HTTP_400_BAD_REQUEST
    error = 'Error'

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class NotFound(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    error = 'Not Found'


class Conflict(ServiceError):
    status_code = status.HTTP_409_CONFLICT
    error = 'Conflict'


class BadRequest(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = 'Validation Error'


class InternalError(ServiceError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = 'Server Error'


def service_errors(message: str):
    """
    Decorator for service functions.

    ServiceError subclasses propagate unchanged. Anything else is logged
    with its traceback and re-raised as InternalError(message) so data-store
    internals never reach the caller.

    Usage:
        @service_errors('Failed to create inventory log')
        def record_change(...):
            ...
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except ServiceError:
                raise
            except Exception as e:
                logger.exception(f"{message} ({func.__name__}): {e}")
                raise InternalError(message) from e
        return wrapper
    return decorator


def api_exception_handler(exc, context):
    """DRF exception handler that renders ServiceError with its status code."""
    if isinstance(exc, ServiceError):
        return Response(
            {'error': exc.error, 'detail': exc.detail},
            status=exc.status_code
        )
    return exception_handler(exc, context)
