"""
Authentication for the lab API.

Two schemes are accepted: the legacy ``Token <key>`` header used by the
reception and lab desk clients, and ``Bearer <jwt>`` issued at login.
Access tokens carry the user's role so clients can pick a dashboard
without an extra round trip; the server never trusts that claim and
always reads the role from the database.
"""
from __future__ import annotations

from rest_framework import authentication
from rest_framework.authtoken.models import Token
from rest_framework.exceptions import AuthenticationFailed
from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework_simplejwt.tokens import RefreshToken


class TokenAuthentication(authentication.TokenAuthentication):
    keyword = 'Token'


class RoleJWTAuthentication(JWTAuthentication):
    """Bearer JWT authentication that refuses tokens minted for a previous role."""

    def get_user(self, validated_token):
        user = super().get_user(validated_token)
        claimed = validated_token.get('role')
        if claimed is not None and claimed != user.role:
            raise AuthenticationFailed('Role changed since the token was issued', code='role_changed')
        return user


def issue_tokens(user) -> dict:
    token_obj, _ = Token.objects.get_or_create(user=user)
    refresh = RefreshToken.for_user(user)
    refresh['role'] = user.role
    return {
        'token': token_obj.key,
        'jwt_access': str(refresh.access_token),
        'jwt_refresh': str(refresh),
    }
