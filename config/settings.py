import os
from datetime import timedelta
from pathlib import Path
from urllib.parse import urlparse

from django.core.exceptions import ImproperlyConfigured
from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")


def env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ImproperlyConfigured(f"{name} must be an integer, got {raw!r}.") from exc


def env_list(name: str, default: list[str] | None = None) -> list[str]:
    raw = os.getenv(name)
    if raw is None:
        return list(default or [])
    return [part.strip() for part in raw.split(",") if part.strip()]


DJANGO_ENV = os.getenv("DJANGO_ENV", "dev").strip().lower()
KNOWN_ENVIRONMENTS = ("dev", "test", "staging", "prod")
if DJANGO_ENV not in KNOWN_ENVIRONMENTS:
    raise ImproperlyConfigured(f"DJANGO_ENV must be one of: {', '.join(KNOWN_ENVIRONMENTS)}.")

# staging and prod share the strict rules below
STRICT_ENV = DJANGO_ENV in {"staging", "prod"}

DEBUG = env_bool("DEBUG", default=DJANGO_ENV == "dev")

SECRET_KEY = os.getenv("SECRET_KEY") or ""
if not SECRET_KEY:
    if STRICT_ENV:
        raise ImproperlyConfigured(f"SECRET_KEY is required when DJANGO_ENV={DJANGO_ENV}.")
    SECRET_KEY = "wholesale-insecure-local-key"

ALLOWED_HOSTS = env_list("ALLOWED_HOSTS", default=[] if STRICT_ENV else ["localhost", "127.0.0.1", "testserver"])
if STRICT_ENV and not ALLOWED_HOSTS:
    raise ImproperlyConfigured(f"ALLOWED_HOSTS is required when DJANGO_ENV={DJANGO_ENV}.")

CORS_ALLOW_ALL_ORIGINS = env_bool("CORS_ALLOW_ALL_ORIGINS", default=DJANGO_ENV == "dev")
CORS_ALLOWED_ORIGINS = env_list("CORS_ALLOWED_ORIGINS")
CSRF_TRUSTED_ORIGINS = env_list("CSRF_TRUSTED_ORIGINS")

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "rest_framework_simplejwt",
    "corsheaders",
    "core",
    "inventory",
    "purchasing",
]

MIDDLEWARE = [
    "corsheaders.middleware.CorsMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "common.logging.RequestLogMiddleware",
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
    }
]


POSTGRES_KEYS = ("NAME", "USER", "PASSWORD", "HOST", "PORT")


def _postgres(**parts) -> dict:
    return {"ENGINE": "django.db.backends.postgresql", **{key: parts.get(key) or "" for key in POSTGRES_KEYS}}


def _parse_database_url(url: str) -> dict:
    parsed = urlparse(url)
    if parsed.scheme == "sqlite":
        if STRICT_ENV:
            raise ImproperlyConfigured("SQLite is not supported when DJANGO_ENV is staging or prod.")
        return {"ENGINE": "django.db.backends.sqlite3", "NAME": parsed.path.lstrip("/") or ":memory:"}
    if parsed.scheme not in {"postgres", "postgresql"}:
        raise ImproperlyConfigured("DATABASE_URL must use the postgres:// or postgresql:// scheme.")
    name = parsed.path.lstrip("/")
    if not name:
        raise ImproperlyConfigured("DATABASE_URL must name a database.")
    return _postgres(
        NAME=name,
        USER=parsed.username,
        PASSWORD=parsed.password,
        HOST=parsed.hostname,
        PORT=str(parsed.port or ""),
    )


def _database_settings() -> dict:
    """Pick the default database for the current DJANGO_ENV.

    Row locking and lock timeouts only behave as intended on PostgreSQL, so
    SQLite is limited to dev and test.
    """
    url = os.getenv("DATABASE_URL", "").strip()
    if url:
        return _parse_database_url(url)
    if DJANGO_ENV == "test":
        return {"ENGINE": "django.db.backends.sqlite3", "NAME": BASE_DIR / "test-db.sqlite3"}

    config = _postgres(**{key: os.getenv(f"DB_{key}") for key in POSTGRES_KEYS})
    missing = [f"DB_{key}" for key in POSTGRES_KEYS if not config[key]]
    if not missing:
        return config
    if STRICT_ENV:
        raise ImproperlyConfigured(f"Set DATABASE_URL or all DB_* variables. Missing: {', '.join(missing)}.")
    return _postgres(NAME="wholesale", USER="wholesale", PASSWORD="wholesale", HOST="localhost", PORT="5432")


DATABASES = {"default": {**_database_settings(), "ATOMIC_REQUESTS": False}}

AUTH_USER_MODEL = "core.User"

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "/static/"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": ["rest_framework_simplejwt.authentication.JWTAuthentication"],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.IsAuthenticated"],
    "DEFAULT_PAGINATION_CLASS": "common.pagination.StandardResultsSetPagination",
    "PAGE_SIZE": env_int("API_PAGE_SIZE", 50),
    "EXCEPTION_HANDLER": "common.exceptions.custom_exception_handler",
    "COERCE_DECIMAL_TO_STRING": True,
    "DEFAULT_THROTTLE_CLASSES": [
        "rest_framework.throttling.AnonRateThrottle",
        "rest_framework.throttling.UserRateThrottle",
    ],
    "DEFAULT_THROTTLE_RATES": {
        "anon": os.getenv("DRF_THROTTLE_ANON", "100/hour"),
        "user": os.getenv("DRF_THROTTLE_USER", "5000/hour"),
        "auth": os.getenv("DRF_THROTTLE_AUTH", "30/minute"),
    },
}

SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(minutes=env_int("JWT_ACCESS_MINUTES", 60 * 12)),
    "REFRESH_TOKEN_LIFETIME": timedelta(days=env_int("JWT_REFRESH_DAYS", 7)),
}

# Upper bound on how long a settlement waits for an inventory, purchase order
# or numbering row lock before failing with a retryable conflict.
INVENTORY_LOCK_TIMEOUT_MS = env_int("INVENTORY_LOCK_TIMEOUT_MS", 5000)
# Zero padding of the numeric part of IN-PO-00001 / OUT-PO-00001.
PO_NUMBER_PADDING = env_int("PO_NUMBER_PADDING", 5)

SECURE_SSL_REDIRECT = env_bool("SECURE_SSL_REDIRECT", default=STRICT_ENV)
SESSION_COOKIE_SECURE = env_bool("SESSION_COOKIE_SECURE", default=STRICT_ENV)
CSRF_COOKIE_SECURE = env_bool("CSRF_COOKIE_SECURE", default=STRICT_ENV)
SECURE_HSTS_SECONDS = env_int("SECURE_HSTS_SECONDS", 31536000 if STRICT_ENV else 0)
SECURE_HSTS_INCLUDE_SUBDOMAINS = env_bool("SECURE_HSTS_INCLUDE_SUBDOMAINS", default=STRICT_ENV)
SECURE_CONTENT_TYPE_NOSNIFF = True
X_FRAME_OPTIONS = "DENY"
if env_bool("SECURE_PROXY_SSL_HEADER_ENABLED", default=STRICT_ENV):
    SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def _app_logger(level=None):
    return {"handlers": ["console"], "level": level or LOG_LEVEL, "propagate": False}


LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {"json": {"()": "common.logging.JsonFormatter"}},
    "handlers": {"console": {"class": "logging.StreamHandler", "formatter": "json"}},
    "root": {"handlers": ["console"], "level": LOG_LEVEL},
    "loggers": {
        "django": _app_logger(),
        "api.request": _app_logger(),
        "security.authorization": _app_logger("WARNING"),
        "common": _app_logger(),
        "inventory": _app_logger(),
        "purchasing": _app_logger(),
    },
}
