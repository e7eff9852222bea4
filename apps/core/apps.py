from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import logging

logger = logging.getLogger(__name__)


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """
        Perform startup validation checks when Django initializes.

        Token signing must be sound before the application starts accepting
        requests: every authorization decision trusts the actor id in the JWT.
        """
        self._validate_jwt_configuration()
        self._validate_security_settings()

        logger.info("Startup security validations passed")

    def _validate_jwt_configuration(self):
        """Validate JWT secret key configuration."""
        jwt_secret = getattr(settings, 'JWT_SECRET_KEY', None)

        if not jwt_secret:
            raise ImproperlyConfigured(
                "JWT_SECRET_KEY must be set in environment variables. "
                "Generate a strong key with: "
                "python -c \"import secrets; print(secrets.token_urlsafe(32))\""
            )

        unique_chars = len(set(jwt_secret))
        if unique_chars < 16:
            raise ImproperlyConfigured(
                f"JWT_SECRET_KEY has insufficient entropy. "
                f"Found only {unique_chars} unique characters, need at least 16."
            )

        if settings.JWT_ALGORITHM not in ('HS256', 'HS384', 'HS512'):
            raise ImproperlyConfigured(
                f"JWT_ALGORITHM must be an HMAC algorithm, got '{settings.JWT_ALGORITHM}'."
            )

    def _validate_security_settings(self):
        """Validate general security settings."""
        if settings.DEBUG:
            return

        weak_patterns = ['your-secret-key', 'change-me', 'django-insecure', '12345']
        secret_lower = settings.SECRET_KEY.lower()
        for pattern in weak_patterns:
            if pattern in secret_lower:
                raise ImproperlyConfigured(
                    f"SECRET_KEY appears to be a default or weak value (contains '{pattern}'). "
                    f"Generate a strong key with: "
                    f"python -c \"import secrets; print(secrets.token_urlsafe(50))\""
                )

        if not getattr(settings, 'SECURE_SSL_REDIRECT', False):
            logger.warning(
                "SECURE_SSL_REDIRECT is not enabled in production. "
                "HTTPS should be enforced for security."
            )
