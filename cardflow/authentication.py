"""
Token authentication for the request layer.

Identity verification itself happens outside the workflow core; this
class only resolves the ``Authorization: Token <key>`` header to the
user handed to the services.  It lives in its own module so REST
framework can import it from settings without pulling in any views.
"""
from __future__ import annotations

from rest_framework import authentication


class TokenAuthentication(authentication.TokenAuthentication):
    """DRF token authentication with a stable project import path."""

    keyword = 'Token'

    def authenticate_credentials(self, key):
        user, token = super().authenticate_credentials(key)
        if not getattr(user, 'role', None):
            from rest_framework.exceptions import AuthenticationFailed
            raise AuthenticationFailed('User has no workflow role.')
        return user, token
