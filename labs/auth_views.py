"""
Authentication endpoints: password login, JWT refresh and logout.

Kept out of :mod:`labs.authentication` so that DRF can import the
authentication classes at start-up without importing any views.
"""
from __future__ import annotations

import logging

from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import AuthenticationFailed
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.token_blacklist.models import BlacklistedToken, OutstandingToken
from rest_framework_simplejwt.tokens import RefreshToken

from .authentication import issue_tokens
from .exceptions import InvalidInput
from .permissions import capabilities_for
from .serializers.auth import LoginSerializer
from .services.audit import log_action

logger = logging.getLogger(__name__)


@api_view(['POST'])
@permission_classes([AllowAny])
def login_view(request):
    """
    Login with username (or ``account``) and password.

    Returns the legacy token, a JWT pair and the user's capabilities so
    the client can decide which lab screens to show.
    """
    s = LoginSerializer(data=request.data, context={'request': request})
    s.is_valid(raise_exception=True)
    user = s.validated_data['user']
    ip = request.META.get('REMOTE_ADDR')

    if user is None:
        log_action(user=None, action='login', object_type='user',
                   detail={'result': 'fail', 'username': s.validated_data['username'], 'ip': ip})
        logger.info('failed login for %r from %s', s.validated_data['username'], ip)
        raise AuthenticationFailed('Invalid username or password')

    log_action(user=user, action='login', object_type='user', object_id=user.id,
               detail={'result': 'ok', 'ip': ip})

    payload = {
        'ok': True,
        **issue_tokens(user),
        'role': user.role,
        'user': {
            'id': user.id,
            'username': user.username,
            'name': user.get_full_name() or user.username,
            'role': user.role,
            'capabilities': sorted(c.value for c in capabilities_for(user)),
        },
    }
    return Response(payload, status=200)

# ScopedRateThrottle reads throttle_scope from the wrapped APIView class
login_view.cls.throttle_scope = 'login'


@api_view(['POST'])
@permission_classes([AllowAny])
def jwt_refresh_view(request):
    """Exchange a refresh token for a new access token."""
    raw = request.data.get('refresh')
    if not raw:
        raise InvalidInput('refresh is required', detail={'refresh': 'required'})
    try:
        refresh = RefreshToken(raw)
    except TokenError as e:
        raise AuthenticationFailed(str(e))
    return Response({'ok': True, 'jwt_access': str(refresh.access_token)})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def jwt_logout_view(request):
    """Blacklist the given refresh token, or all of the user's outstanding ones."""
    raw = request.data.get('refresh')
    count = 0
    if raw:
        try:
            RefreshToken(raw).blacklist()
        except TokenError as e:
            raise InvalidInput(str(e), detail={'refresh': 'invalid'})
        count = 1
    else:
        for token in OutstandingToken.objects.filter(user=request.user):
            _, created = BlacklistedToken.objects.get_or_create(token=token)
            count += int(created)
    log_action(user=request.user, action='logout', object_type='user', object_id=request.user.id,
               detail={'blacklisted': count})
    return Response({'ok': True, 'blacklisted': count})
