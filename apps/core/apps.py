import logging
from django.apps import AppConfig
from django.conf import settings

logger = logging.getLogger(__name__)


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """Warn about development settings left on in production."""
        if settings.DEBUG:
            return

        if settings.SECRET_KEY.startswith('dev-only'):
            logger.warning("SECRET_KEY is the development default; set SECRET_KEY in the environment")

        if not getattr(settings, 'SENTRY_DSN', None):
            logger.warning("SENTRY_DSN is not set; isolation violations will only be reported in logs")
