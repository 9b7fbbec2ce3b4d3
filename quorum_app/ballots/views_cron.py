from __future__ import annotations

import hmac
import logging

from django.conf import settings
from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt

from ballots import scheduler

logger = logging.getLogger(__name__)


def _secret_matches(provided: str) -> bool:
    expected = str(settings.CRON_SECRET or "")
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


@csrf_exempt
def ballot_cron_tick(request: HttpRequest) -> JsonResponse:
    """Run one scheduler tick for an external cron caller.

    Authenticated by the shared X-Cron-Secret header, never by session.
    """

    if request.method != "POST":
        response = JsonResponse({"ok": False, "error": "Method Not Allowed"}, status=405)
        response["Allow"] = "POST"
        return response

    if not _secret_matches(str(request.headers.get("X-Cron-Secret") or "")):
        logger.warning("Ballot cron tick rejected: bad or missing secret")
        return JsonResponse({"ok": False, "error": "Unauthorized"}, status=401)

    config = scheduler.CronConfig.from_settings()
    result = scheduler.tick(config)
    return JsonResponse({"ok": True, **result.as_dict()})
