import os
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

# ---------------------------------
#   .env
# ---------------------------------
# Load .env from the project root when present
env_path = BASE_DIR / ".env"
if env_path.exists():
    load_dotenv(env_path)

# ---------------------------------
#   Security / Debug
# ---------------------------------
# Also signs the API access tokens (HS256 wants at least 32 bytes).
SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "change-me-in-development-only-not-for-production")

DEBUG = os.getenv("DJANGO_DEBUG", "True") == "True"

# e.g. "127.0.0.1 localhost backoffice.example.com"
_raw_hosts = os.getenv("DJANGO_ALLOWED_HOSTS", "")
if _raw_hosts.strip():
    ALLOWED_HOSTS = _raw_hosts.split()
else:
    ALLOWED_HOSTS = ["127.0.0.1", "localhost", "testserver"]

INSTALLED_APPS = [
    # modeltranslation must come before admin
    "modeltranslation",
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "solo",
    "rest_framework",
    "rest_framework_simplejwt",
    "rest_framework_simplejwt.token_blacklist",
    # back-office apps
    "core.apps.CoreConfig",
    "accounts.apps.AccountsConfig",
    "inventory.apps.InventoryConfig",
    "suppliers.apps.SuppliersConfig",
    "purchasing.apps.PurchasingConfig",
    "payments.apps.PaymentsConfig",
    "sales.apps.SalesConfig",
    "expenses.apps.ExpensesConfig",
    "reports.apps.ReportsConfig",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.locale.LocaleMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "backoffice.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "backoffice.wsgi.application"

# ---------------------------------
#   Database
# ---------------------------------
# Row locks (select_for_update) wait at most this many seconds before the
# request fails with a retryable "busy" error.
BACKOFFICE_LOCK_TIMEOUT = float(os.getenv("BACKOFFICE_LOCK_TIMEOUT", "5"))

DB_ENGINE = os.getenv("DB_ENGINE", "django.db.backends.sqlite3")

if DB_ENGINE.endswith("sqlite3"):
    DATABASES = {
        "default": {
            "ENGINE": DB_ENGINE,
            "NAME": os.getenv("DB_NAME", str(BASE_DIR / "db.sqlite3")),
            "OPTIONS": {
                "timeout": BACKOFFICE_LOCK_TIMEOUT,
                # Take the write lock at BEGIN so a conflicting writer waits on
                # "timeout" instead of failing mid-transaction.
                "transaction_mode": "IMMEDIATE",
            },
            # File-backed so threaded tests see one shared database.
            "TEST": {
                "NAME": os.getenv("DB_TEST_NAME", str(BASE_DIR / "test_db.sqlite3")),
            },
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": DB_ENGINE,
            "NAME": os.getenv("DB_NAME", "backoffice"),
            "USER": os.getenv("DB_USER", ""),
            "PASSWORD": os.getenv("DB_PASSWORD", ""),
            "HOST": os.getenv("DB_HOST", "localhost"),
            "PORT": os.getenv("DB_PORT", ""),
            "ATOMIC_REQUESTS": False,
        }
    }

# ---------------------------------
#   I18N
# ---------------------------------
LANGUAGE_CODE = "en"

LANGUAGES = [
    ("en", "English"),
    ("fr", "Français"),
]

MODELTRANSLATION_DEFAULT_LANGUAGE = "en"
MODELTRANSLATION_LANGUAGES = ("en", "fr")
MODELTRANSLATION_FALLBACK_LANGUAGES = {
    "default": ("en", "fr"),
}

LOCALE_PATHS = [
    BASE_DIR / "locale",
]

TIME_ZONE = os.getenv("DJANGO_TIME_ZONE", "Africa/Kigali")
USE_I18N = True
USE_TZ = True

# -----------------------------
#   Static
# -----------------------------
STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# -----------------------------
#   API tokens (JWT)
# -----------------------------
BACKOFFICE_ACCESS_TOKEN_MINUTES = int(os.getenv("BACKOFFICE_ACCESS_TOKEN_MINUTES", "30"))
BACKOFFICE_TOKEN_TTL_HOURS = int(os.getenv("BACKOFFICE_TOKEN_TTL_HOURS", "12"))

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework_simplejwt.authentication.JWTAuthentication",
    ],
}

SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(minutes=BACKOFFICE_ACCESS_TOKEN_MINUTES),
    "REFRESH_TOKEN_LIFETIME": timedelta(hours=BACKOFFICE_TOKEN_TTL_HOURS),
    "ROTATE_REFRESH_TOKENS": True,
    "BLACKLIST_AFTER_ROTATION": True,
    "AUTH_HEADER_TYPES": ("Bearer",),
}

# -----------------------------
#   Logging
# -----------------------------
BACKOFFICE_LOG_LEVEL = os.getenv("BACKOFFICE_LOG_LEVEL", "INFO")

_app_logger = {
    "handlers": ["console"],
    "level": BACKOFFICE_LOG_LEVEL,
    "propagate": False,
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{asctime} {levelname} {name} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": os.getenv("DJANGO_LOG_LEVEL", "WARNING"),
            "propagate": False,
        },
        "core": _app_logger,
        "accounts": _app_logger,
        "inventory": _app_logger,
        "suppliers": _app_logger,
        "purchasing": _app_logger,
        "payments": _app_logger,
        "sales": _app_logger,
        "expenses": _app_logger,
        "reports": _app_logger,
    },
}
