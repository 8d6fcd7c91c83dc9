"""
RBAC app configuration.
"""
import logging
from django.apps import AppConfig

logger = logging.getLogger(__name__)


class RbacConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.rbac'
    verbose_name = 'RBAC (Role-Based Access Control)'

    def ready(self):
        """
        Validate the role catalog.

        An inconsistent catalog raises here, so a role or permission typo
        stops the process at boot instead of denying requests later.
        """
        from apps.rbac.catalog import default_catalog

        catalog = default_catalog()
        catalog.validate()
        logger.debug(f"RBAC catalog loaded with roles: {', '.join(catalog.roles())}")
