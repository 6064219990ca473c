"""Project-level views for the VHC workflow project."""

import logging

from django.core.cache import cache
from django.db import DatabaseError, connection
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def ratelimited_view(request, exception=None):
    """Return 429 with Retry-After header on rate limit."""
    response = JsonResponse(
        {
            "error": "Rate limit exceeded. Please try again later.",
            "code": "RATE_LIMITED",
        },
        status=429,
    )
    response["Retry-After"] = "60"
    return response


def health_check(request):
    """Report database and cache reachability for load balancers."""
    checks = {"db": True, "cache": True}
    try:
        connection.ensure_connection()
    except DatabaseError:
        logger.warning("Health check: database unreachable")
        checks["db"] = False

    try:
        cache.set("_health_check", "1", timeout=10)
        checks["cache"] = cache.get("_health_check") == "1"
    except Exception:
        logger.warning("Health check: cache unreachable", exc_info=True)
        checks["cache"] = False

    return JsonResponse(
        {"status": "ok" if all(checks.values()) else "degraded", **checks},
        status=200 if checks["db"] else 503,
    )
