"""Test settings: in-memory SQLite, eager Celery, quiet logging."""

from .local import *  # noqa: F401, F403

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

DEBUG = False

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

LOGGING["loggers"]["apps"]["level"] = "WARNING"  # noqa: F405
