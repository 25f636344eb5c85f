"""App settings, read from ``settings.SMARTGROUPS`` with these defaults."""

from django.conf import settings

DEFAULTS = {
    "STORE": "django",
    "JOIN_LOCK_TIMEOUT": 2.0,
    "JOIN_RATE_LIMIT": 5,
    "JOIN_RATE_WINDOW": 60.0,
    "SNAPSHOT_CACHE_TTL": 30,
    "PARTICIPANT_PLACEHOLDER_NAME": "A fellow traveler",
    "FANOUT_WORKERS": 4,
}


def app_setting(name: str):
    overrides = getattr(settings, "SMARTGROUPS", {}) or {}
    if name in overrides:
        return overrides[name]
    return DEFAULTS[name]
