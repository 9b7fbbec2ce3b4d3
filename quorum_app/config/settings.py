from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path

from django.core.exceptions import ImproperlyConfigured

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_str(name: str, default: str = "") -> str:
    return str(os.environ.get(name, default) or "").strip()


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = _env_str(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ImproperlyConfigured(f"{name} must be an integer, got {raw!r}") from exc


def _env_list(name: str, default: str = "") -> list[str]:
    return [part.strip() for part in _env_str(name, default).split(",") if part.strip()]


DEBUG = _env_bool("DEBUG", default=False)

RUNNING_TESTS = "test" in sys.argv or "pytest" in sys.modules

SECRET_KEY = _env_str("SECRET_KEY")
if not SECRET_KEY:
    if not DEBUG and not RUNNING_TESTS:
        raise ImproperlyConfigured("SECRET_KEY must be set when DEBUG is off")
    SECRET_KEY = "django-insecure-local-development-only"

ALLOWED_HOSTS = _env_list("ALLOWED_HOSTS", "localhost,127.0.0.1" if DEBUG or RUNNING_TESTS else "")
CSRF_TRUSTED_ORIGINS = _env_list("CSRF_TRUSTED_ORIGINS")

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "post_office",
    "ballots",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "config.urls"
WSGI_APPLICATION = "config.wsgi.application"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
    {
        # Renders post_office EmailTemplate rows.
        "BACKEND": "post_office.template.backends.post_office.PostOfficeTemplates",
        "APP_DIRS": True,
        "DIRS": [],
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
            ],
        },
    },
]

DATABASE_HOST = _env_str("DATABASE_HOST")
if DATABASE_HOST:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "HOST": DATABASE_HOST,
            "PORT": _env_str("DATABASE_PORT", "5432"),
            "NAME": _env_str("DATABASE_NAME", "quorum"),
            "USER": _env_str("DATABASE_USER", "quorum"),
            "PASSWORD": _env_str("DATABASE_PASSWORD"),
            "CONN_MAX_AGE": _env_int("DATABASE_CONN_MAX_AGE", 60),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": _env_str("SQLITE_PATH", str(BASE_DIR / "db.sqlite3")),
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# Rate limit counters must be shared by every worker. CACHE_URL is a redis:// URL
# or the name of a database cache table; LocMem is only per-process.
CACHE_URL = _env_str("CACHE_URL")
if CACHE_URL.startswith("redis://") or CACHE_URL.startswith("rediss://"):
    CACHES = {"default": {"BACKEND": "django.core.cache.backends.redis.RedisCache", "LOCATION": CACHE_URL}}
elif CACHE_URL:
    CACHES = {"default": {"BACKEND": "django.core.cache.backends.db.DatabaseCache", "LOCATION": CACHE_URL}}
else:
    CACHES = {"default": {"BACKEND": "django.core.cache.backends.locmem.LocMemCache", "LOCATION": "quorum"}}

AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

# Email

EMAIL_BACKEND = _env_str("EMAIL_BACKEND", "django.core.mail.backends.smtp.EmailBackend")
EMAIL_HOST = _env_str("EMAIL_HOST", "localhost")
EMAIL_PORT = _env_int("EMAIL_PORT", 25)
EMAIL_HOST_USER = _env_str("EMAIL_HOST_USER")
EMAIL_HOST_PASSWORD = _env_str("EMAIL_HOST_PASSWORD")
EMAIL_USE_TLS = _env_bool("EMAIL_USE_TLS", default=False)
DEFAULT_FROM_EMAIL = _env_str("DEFAULT_FROM_EMAIL", "Quorum <noreply@localhost>")

POST_OFFICE = {
    "DEFAULT_PRIORITY": "now",
    "LOG_LEVEL": 2,
    "MAX_RETRIES": 0,
}

PUBLIC_BASE_URL = _env_str("PUBLIC_BASE_URL", "http://localhost:8000")

# Ballots

BALLOT_OPEN_REMINDER_EMAIL_TEMPLATE_NAME = "ballot-open-reminder"
BALLOT_CLOSE_REMINDER_EMAIL_TEMPLATE_NAME = "ballot-close-reminder"
BALLOT_VOTING_OPENED_EMAIL_TEMPLATE_NAME = "ballot-voting-opened"
BALLOT_VOTING_CLOSED_EMAIL_TEMPLATE_NAME = "ballot-voting-closed"
BALLOT_VOTER_INVITATION_EMAIL_TEMPLATE_NAME = "ballot-voter-invitation"

BALLOT_CRON_OPEN_REMINDER_MINUTES = _env_int("BALLOT_CRON_OPEN_REMINDER_MINUTES", 15)
BALLOT_CRON_CLOSE_REMINDER_MINUTES = _env_int("BALLOT_CRON_CLOSE_REMINDER_MINUTES", 15)
BALLOT_CRON_BATCH_SIZE = _env_int("BALLOT_CRON_BATCH_SIZE", 50)
BALLOT_CRON_MAX_ITERATIONS = _env_int("BALLOT_CRON_MAX_ITERATIONS", 10)
BALLOT_CRON_DRY_RUN = _env_bool("BALLOT_CRON_DRY_RUN", default=False)

CRON_SECRET = _env_str("CRON_SECRET")

# Off: eligible voter counts follow the live voter links, even after opening.
BALLOT_FREEZE_ELIGIBILITY_AT_OPEN = _env_bool("BALLOT_FREEZE_ELIGIBILITY_AT_OPEN", default=False)

# Identity-provider group name -> ballot role (user, admin or owner).
_role_groups_raw = _env_str("BALLOT_ROLE_GROUPS")
try:
    BALLOT_ROLE_GROUPS: dict[str, str] = (
        json.loads(_role_groups_raw) if _role_groups_raw else {"ballot-admins": "admin", "ballot-owners": "owner"}
    )
except json.JSONDecodeError as exc:
    raise ImproperlyConfigured("BALLOT_ROLE_GROUPS must be a JSON object") from exc
if not isinstance(BALLOT_ROLE_GROUPS, dict):
    raise ImproperlyConfigured("BALLOT_ROLE_GROUPS must be a JSON object")

BALLOT_RATE_LIMIT_VOTE_LIMIT = _env_int("BALLOT_RATE_LIMIT_VOTE_LIMIT", 10)
BALLOT_RATE_LIMIT_VOTE_WINDOW_SECONDS = _env_int("BALLOT_RATE_LIMIT_VOTE_WINDOW_SECONDS", 60)

# Logging

LOG_LEVEL = _env_str("LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "[{asctime}] {levelname} {name}: {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
        },
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
        "ballots": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
        "post_office": {
            "handlers": ["console"],
            "level": "WARNING",
            "propagate": False,
        },
    },
    "root": {
        "handlers": ["console"],
        "level": LOG_LEVEL,
    },
}

# Sentry

SENTRY_DSN = _env_str("SENTRY_DSN")
if SENTRY_DSN:
    import sentry_sdk
    from sentry_sdk.integrations.django import DjangoIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration

    sentry_sdk.init(
        dsn=SENTRY_DSN,
        environment=_env_str("SENTRY_ENVIRONMENT", "production"),
        integrations=[
            DjangoIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        traces_sample_rate=0.0,
        send_default_pii=False,
        send_client_reports=False,
        auto_session_tracking=False,
    )
