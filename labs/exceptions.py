"""
Lab workflow errors and the unified API exception handler.

Services raise the ``LabError`` subclasses below; views let them
propagate and ``api_exception_handler`` renders every failure with the
same envelope::

    {"ok": false, "error": {"code": "...", "message": "...", "detail": ...}}
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from rest_framework import status
from rest_framework.exceptions import APIException, ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)


class LabError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = 'lab_error'
    default_detail = 'Lab request failed'

    def __init__(self, message: Optional[str] = None, *, detail: Any = None):
        self.message = message or self.default_detail
        self.extra = detail
        super().__init__(self.message, self.default_code)

    def as_dict(self) -> dict:
        payload = {'code': self.default_code, 'message': self.message}
        if self.extra is not None:
            payload['detail'] = self.extra
        return payload


class InvalidInput(LabError):
    default_code = 'invalid_input'
    default_detail = 'Invalid order input'


class InvalidResult(LabError):
    default_code = 'invalid_result'
    default_detail = 'Invalid lab result'


class Unauthorized(LabError):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = 'unauthorized'
    default_detail = 'Not allowed to perform this action'


class NotFound(LabError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = 'not_found'
    default_detail = 'Lab order not found'


class InvalidTransition(LabError):
    """Raised when the order's current status does not allow the change.

    Also raised to the loser of a race on the same edge.
    """
    status_code = status.HTTP_409_CONFLICT
    default_code = 'invalid_transition'

    def __init__(self, current: Optional[str], attempted: str):
        self.current = str(current) if current is not None else None
        self.attempted = str(attempted)
        super().__init__(
            f'Order is {self.current}; cannot move to {self.attempted}',
            detail={'current': self.current, 'attempted': self.attempted},
        )


def api_exception_handler(exc, context):
    if isinstance(exc, LabError):
        return Response({'ok': False, 'error': exc.as_dict()}, status=exc.status_code)

    resp = drf_exception_handler(exc, context)
    if resp is None:
        request = context.get('request')
        logger.exception('Unhandled error on %s %s',
                         getattr(request, 'method', '?'), getattr(request, 'path', '?'))
        return Response({'ok': False, 'error': {'code': 'server_error', 'message': 'Internal server error'}},
                        status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    if isinstance(exc, ValidationError):
        return Response({'ok': False, 'error': {'code': 'invalid_input', 'message': 'Invalid input', 'detail': resp.data}},
                        status=resp.status_code)

    # normalize response
    if isinstance(resp.data, dict):
        message = resp.data.get('detail') or resp.data
    else:
        message = str(resp.data)
    code = getattr(exc, 'default_code', 'api_error')
    return Response({'ok': False, 'error': {'code': code, 'message': message}},
                    status=resp.status_code, headers=_auth_headers(resp))


def _auth_headers(resp) -> dict:
    # keep WWW-Authenticate / Retry-After that DRF attached
    return {k: v for k, v in resp.items() if k in ('WWW-Authenticate', 'Retry-After')}
