"""
Django settings for the smart group booking API.

Values come from the environment (a local .env is loaded if present).
"""

import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

load_dotenv(BASE_DIR / ".env")

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "django-insecure-smartgroups-dev-key")
DEBUG = os.getenv("DJANGO_DEBUG", "true").lower() in ("1", "true", "yes")
ALLOWED_HOSTS = [h for h in os.getenv("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h]

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "channels",
    "smartgroups.apps.SmartGroupsConfig",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
]

ROOT_URLCONF = "config.urls"
ASGI_APPLICATION = "config.asgi.application"

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
]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": os.getenv("SMARTGROUPS_DB_PATH", str(BASE_DIR / "db.sqlite3")),
    }
}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "smartgroups",
    }
}

# Events are pushed to each consumer's own channel; no groups are used.
CHANNEL_LAYERS = {
    "default": {"BACKEND": "channels.layers.InMemoryChannelLayer"},
}

REST_FRAMEWORK = {
    "DEFAULT_RENDERER_CLASSES": ["rest_framework.renderers.JSONRenderer"],
    "DEFAULT_PARSER_CLASSES": ["rest_framework.parsers.JSONParser"],
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.AllowAny"],
    "UNAUTHENTICATED_USER": None,
    "EXCEPTION_HANDLER": "smartgroups.handlers.views.api_exception_handler",
}

SMARTGROUPS = {
    "STORE": os.getenv("SMARTGROUPS_STORE", "django"),
    "JOIN_LOCK_TIMEOUT": float(os.getenv("SMARTGROUPS_JOIN_LOCK_TIMEOUT", "2.0")),
    "JOIN_RATE_LIMIT": int(os.getenv("SMARTGROUPS_JOIN_RATE_LIMIT", "5")),
    "JOIN_RATE_WINDOW": float(os.getenv("SMARTGROUPS_JOIN_RATE_WINDOW", "60")),
    "SNAPSHOT_CACHE_TTL": int(os.getenv("SMARTGROUPS_SNAPSHOT_CACHE_TTL", "30")),
    "PARTICIPANT_PLACEHOLDER_NAME": os.getenv("SMARTGROUPS_PLACEHOLDER_NAME", "A fellow traveler"),
    "FANOUT_WORKERS": int(os.getenv("SMARTGROUPS_FANOUT_WORKERS", "4")),
}

LOG_LEVEL = os.getenv("SMARTGROUPS_LOG_LEVEL", os.getenv("LOG_LEVEL", "INFO")).upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {"format": "%(asctime)s %(levelname)s [%(name)s] %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "standard"},
    },
    "root": {"handlers": ["console"], "level": "WARNING"},
    "loggers": {
        "smartgroups": {"level": LOG_LEVEL},
    },
}

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"
