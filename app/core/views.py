"""
Infrastructure endpoints that sit outside the escrow domain.
"""

from django.conf import settings
from django.core.cache import caches
from django.db import DatabaseError, connection
from django.http import JsonResponse


def health_check(request):
    """
    Liveness/readiness check.

    The database is required; the cache (Redis) only degrades the report
    because wallet checks and release locks fall back to failing requests,
    not to wrong payouts.

    Returns:
        200 with {"status": "healthy", ...} or 503 when the database is down
    """
    report = {
        "status": "healthy",
        "database": "unknown",
        "cache": "unknown",
        "gateway_environment": getattr(settings, "GATEWAY_ENVIRONMENT", ""),
    }

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        report["database"] = "connected"
    except DatabaseError:
        report["database"] = "disconnected"
        report["status"] = "unhealthy"

    try:
        cache = caches["default"]
        cache.set("health_check", "ok", timeout=1)
        report["cache"] = "connected" if cache.get("health_check") == "ok" else "degraded"
    except Exception:
        report["cache"] = "disconnected"

    return JsonResponse(report, status=200 if report["status"] == "healthy" else 503)
