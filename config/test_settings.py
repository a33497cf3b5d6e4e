import os

# SQLite unless DATABASE_URL points at PostgreSQL, which the row-lock tests need.
os.environ.setdefault("DJANGO_ENV", "test")

from config.settings import *  # noqa: E402,F401,F403

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

REST_FRAMEWORK = {
    **REST_FRAMEWORK,  # noqa: F405
    "DEFAULT_THROTTLE_CLASSES": [],
}
