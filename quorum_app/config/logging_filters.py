import logging

PROBE_PATHS: tuple[str, ...] = ("/healthz", "/readyz")


class HealthEndpointFilter(logging.Filter):
    """Drop successful probe requests from the gunicorn access log.

    Failed probes are kept so an unhealthy instance still shows up.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        args = record.args
        if isinstance(args, dict) and "U" in args and "s" in args:
            path = str(args.get("U") or "")
            status = str(args.get("s") or "")
        else:
            message = record.getMessage()
            path = message
            status = "200" if " 200 " in message else ""

        if not any(probe in path for probe in PROBE_PATHS):
            return True
        return status != "200"
