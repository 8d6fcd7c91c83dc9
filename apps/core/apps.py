from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import logging
import sys

logger = logging.getLogger(__name__)

ATTEMPT_LIMITER_BACKENDS = ('memory', 'cache')


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """
        Validate settings before a server process starts accepting requests.

        The attempt limiter settings are checked for every process; secret
        and cookie checks only run under runserver, gunicorn or uvicorn so
        migrations, shells and tests work with a development configuration.
        """
        self._validate_attempt_limiter_settings()

        if not self._is_server_process():
            return

        self._validate_security_settings()
        logger.info("All startup security validations passed")

    @staticmethod
    def _is_server_process():
        program = sys.argv[0] if sys.argv else ''
        return (
            'runserver' in sys.argv
            or 'gunicorn' in program
            or 'uvicorn' in program
        )

    def _validate_attempt_limiter_settings(self):
        config = getattr(settings, 'ATTEMPT_LIMITER', {})
        backend = config.get('BACKEND', 'memory')
        if backend not in ATTEMPT_LIMITER_BACKENDS:
            raise ImproperlyConfigured(
                f"ATTEMPT_LIMITER_BACKEND must be one of {ATTEMPT_LIMITER_BACKENDS}, got {backend!r}"
            )
        if config.get('MAX_ATTEMPTS', 1) < 1:
            raise ImproperlyConfigured("ATTEMPT_LIMIT_MAX_ATTEMPTS must be at least 1")
        if config.get('WINDOW_MS', 1) < 1:
            raise ImproperlyConfigured("ATTEMPT_LIMIT_WINDOW_MS must be a positive number of milliseconds")

    def _validate_security_settings(self):
        """Validate general security settings."""
        debug = getattr(settings, 'DEBUG', False)
        secret_key = getattr(settings, 'SECRET_KEY', None)

        if not secret_key:
            raise ImproperlyConfigured(
                "SECRET_KEY must be set in environment variables. "
                "Generate with: "
                "python -c \"import secrets; print(secrets.token_urlsafe(50))\""
            )

        if len(secret_key) < 50:
            logger.warning(
                f"SECRET_KEY is shorter than recommended (current: {len(secret_key)}, recommended: 50+)"
            )

        if debug:
            return

        weak_patterns = [
            'change-me',
            'insecure',
            'django-insecure',
            '12345',
            'password',
        ]
        secret_lower = secret_key.lower()
        for pattern in weak_patterns:
            if pattern in secret_lower:
                raise ImproperlyConfigured(
                    f"SECRET_KEY appears to be a default or weak value (contains '{pattern}'). "
                    f"Generate a strong key with: "
                    f"python -c \"import secrets; print(secrets.token_urlsafe(50))\""
                )

        if not getattr(settings, 'SECURE_SSL_REDIRECT', False):
            logger.warning("SECURE_SSL_REDIRECT is not enabled in production")

        if not getattr(settings, 'SESSION_COOKIE_SECURE', False):
            logger.warning("SESSION_COOKIE_SECURE is not enabled in production")

        if not getattr(settings, 'SENTRY_DSN', None):
            logger.warning(
                "SENTRY_DSN is not set; authorization configuration errors will only be logged"
            )
