"""
Security app configuration.
"""
from django.apps import AppConfig


class SecurityConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.security'
    verbose_name = 'Security (protected identity and audit trail)'

    def ready(self):
        """
        Refuse to start without a well-formed protected identity.

        Only the configuration is checked here: the database may not be
        migrated yet, so rows are never created at startup. The periodic
        ``verify_protected_identity`` task and the ``check_integrity``
        command reconcile the database.
        """
        from apps.security.config import load_protected_identity
        load_protected_identity()
