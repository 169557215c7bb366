# =============================================================================
# Django Project Configuration Package
# =============================================================================
# Settings, URLs, ASGI/WSGI entry points and the Celery application for the
# community billing service.
#
# Import Celery app to ensure it's loaded when Django starts.
# Celery then auto-discovers billing.tasks.
# =============================================================================

from config.celery import app as celery_app

__all__ = ("celery_app",)
