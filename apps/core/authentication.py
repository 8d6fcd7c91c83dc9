"""
Custom DRF authentication classes.
"""
from rest_framework.authentication import BaseAuthentication


class UpstreamPrincipalAuthentication(BaseAuthentication):
    """
    DRF authentication class that trusts the identity set upstream.

    Login (OTP or password) happens outside this service; the upstream
    middleware leaves an authenticated `user` exposing `id`, `role` and
    `is_active` on the Django request. This class hands that user to DRF.
    """

    def authenticate(self, request):
        """
        Return the user from the upstream middleware if present.

        Returns:
            tuple: (user, None) if a user with a role is present, None otherwise
        """
        django_request = request._request
        user = getattr(django_request, 'user', None)

        if user is not None and user.is_authenticated and getattr(user, 'role', None):
            return (user, None)

        return None

    def authenticate_header(self, request):
        # Makes DRF answer unauthenticated requests with 401 instead of 403
        return 'Upstream realm="api"'
