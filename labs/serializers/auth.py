from django.contrib.auth import authenticate
from rest_framework import serializers


class LoginSerializer(serializers.Serializer):
    """Username/password pair; ``account`` is accepted as an alias of ``username``."""
    username = serializers.CharField(required=False, allow_blank=True)
    account = serializers.CharField(required=False, allow_blank=True)
    password = serializers.CharField(trim_whitespace=False)

    def validate(self, attrs):
        username = (attrs.get('username') or attrs.get('account') or '').strip()
        if not username:
            raise serializers.ValidationError({'username': 'username is required'})
        attrs['username'] = username
        attrs['user'] = authenticate(self.context.get('request'), username=username, password=attrs['password'])
        return attrs
