from __future__ import annotations

import multiprocessing
import os

chdir = os.path.join(os.path.dirname(os.path.abspath(__file__)), "quorum_app")
wsgi_app = "config.wsgi:application"

bind = os.environ.get("GUNICORN_BIND", "0.0.0.0:8000")
workers = int(os.environ.get("GUNICORN_WORKERS", str(multiprocessing.cpu_count() * 2 + 1)))
timeout = int(os.environ.get("GUNICORN_TIMEOUT", "60"))

accesslog = "-"
errorlog = "-"
capture_output = True
loglevel = os.environ.get("LOG_LEVEL", "info").lower()
forwarded_allow_ips = "*"
access_log_format = '%({x-forwarded-for}i)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)sus'

logconfig_dict = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "probe_requests": {
            "()": "config.logging_filters.HealthEndpointFilter",
        },
    },
    "formatters": {
        "access": {
            "format": "%(message)s",
        },
        "error": {
            "format": "[{asctime}] {levelname} {name}: {message}",
            "style": "{",
        },
    },
    "handlers": {
        "stdout": {
            "class": "logging.StreamHandler",
            "formatter": "access",
        },
        "stderr": {
            "class": "logging.StreamHandler",
            "formatter": "error",
        },
    },
    "loggers": {
        "gunicorn.error": {
            "handlers": ["stderr"],
            "level": "INFO",
            "propagate": False,
        },
        "gunicorn.access": {
            "handlers": ["stdout"],
            "level": "INFO",
            "filters": ["probe_requests"],
            "propagate": False,
        },
    },
    "root": {
        "handlers": ["stderr"],
        "level": "INFO",
    },
}
