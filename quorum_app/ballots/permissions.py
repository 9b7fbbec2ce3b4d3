from collections.abc import Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from django.http import HttpRequest, HttpResponse, JsonResponse

P = ParamSpec("P")
R = TypeVar("R", bound=HttpResponse)


def json_login_required(view_func: Callable[P, R]) -> Callable[P, HttpResponse]:
    """Decorator for JSON endpoints that need an authenticated user.

    Returns a JSON 401 instead of redirecting to a login page.
    """

    @wraps(view_func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> HttpResponse:
        request = args[0] if args else None
        if not isinstance(request, HttpRequest):
            return JsonResponse({"ok": False, "error": "Authentication required."}, status=401)

        user = getattr(request, "user", None)
        if user is None or not user.is_authenticated:
            return JsonResponse({"ok": False, "error": "Authentication required."}, status=401)

        return view_func(*args, **kwargs)

    return wrapper
