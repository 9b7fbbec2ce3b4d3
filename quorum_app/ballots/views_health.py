from __future__ import annotations

import logging

from django.core.cache import cache
from django.db import connection
from django.http import HttpRequest, JsonResponse
from django.views.decorators.http import require_GET

logger = logging.getLogger(__name__)

_READY_PROBE_KEY = "ballots:readyz"


@require_GET
def healthz(_request: HttpRequest) -> JsonResponse:
    return JsonResponse({"status": "ok"})


@require_GET
def readyz(_request: HttpRequest) -> JsonResponse:
    """Ready when the database answers and the shared cache round-trips.

    The cache backs vote rate limiting, so a broken cache is not ready either.
    """

    checks: dict[str, str] = {}
    try:
        connection.ensure_connection()
        checks["database"] = "ok"
    except Exception as exc:
        logger.exception("Health check readyz failed: database")
        return JsonResponse({"status": "not ready", "database": "error", "error": str(exc)}, status=503)

    try:
        cache.set(_READY_PROBE_KEY, "1", timeout=5)
        if cache.get(_READY_PROBE_KEY) != "1":
            raise RuntimeError("cache did not return the probe value")
        checks["cache"] = "ok"
    except Exception as exc:
        logger.exception("Health check readyz failed: cache")
        return JsonResponse({"status": "not ready", **checks, "cache": "error", "error": str(exc)}, status=503)

    return JsonResponse({"status": "ready", **checks})
