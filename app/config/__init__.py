# =============================================================================
# Settlement Service Configuration Package
# =============================================================================
# Settings, URLs, the WSGI application and the Celery app.
#
# The Celery app is imported here so @shared_task binds to it whenever
# Django starts (web, worker, beat).
# =============================================================================

from config.celery import app as celery_app

__all__ = ("celery_app",)
