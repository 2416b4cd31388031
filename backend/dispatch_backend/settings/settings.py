"""
Base Django settings for the ride dispatch backend.

Development defaults live here; ``prod.py`` tightens them and ``test.py``
swaps external services for in-process ones.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

from dispatch_backend.env import env_bool, env_duration, env_list, require_secret

BASE_DIR = Path(__file__).resolve().parent.parent.parent

load_dotenv(os.path.join(BASE_DIR, "..", ".env"))

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-only-secret-key-change-me-in-production")
DEBUG = env_bool("DEBUG", True)
ALLOWED_HOSTS = env_list("ALLOWED_HOSTS", "localhost,127.0.0.1")
PORT = int(os.getenv("PORT", "8000"))

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    # Third party
    "rest_framework",
    "corsheaders",
    "channels",
    # Local apps
    "accounts",
    "drivers",
    "passengers",
    "rides",
    "realtime",
]

MIDDLEWARE = [
    "corsheaders.middleware.CorsMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "dispatch_backend.urls"

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

ASGI_APPLICATION = "dispatch_backend.asgi.application"

# ---------------------- Database ----------------------

DATABASES = {
    "default": {
        "ENGINE": os.getenv("DATABASE_ENGINE", "django.db.backends.sqlite3"),
        "NAME": os.getenv("DATABASE_NAME", str(BASE_DIR / "db.sqlite3")),
        "USER": os.getenv("DATABASE_USER", ""),
        "PASSWORD": os.getenv("DATABASE_PASSWORD", ""),
        "HOST": os.getenv("DATABASE_HOST", ""),
        "PORT": os.getenv("DATABASE_PORT", ""),
    }
}

# Rides used to live in MongoDB; the ORM database above is the only store now.
MONGODB_URI = os.getenv("MONGODB_URI")

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"
AUTH_USER_MODEL = "accounts.User"

AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
]

LANGUAGE_CODE = "en-us"
TIME_ZONE = os.getenv("TIME_ZONE", "Asia/Karachi")
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

# ---------------------- REST framework / JWT ----------------------

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework_simplejwt.authentication.JWTAuthentication",
        "rest_framework.authentication.SessionAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAuthenticated",
    ],
    "EXCEPTION_HANDLER": "common.exceptions.envelope_exception_handler",
}

_DEV_JWT_SECRET = "dev-only-jwt-secret-that-is-at-least-32-bytes"

JWT_SECRET = require_secret("JWT_SECRET", fallback=_DEV_JWT_SECRET if DEBUG else None)
JWT_REFRESH_SECRET = require_secret(
    "JWT_REFRESH_SECRET", fallback=_DEV_JWT_SECRET + "-refresh" if DEBUG else None
)

SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": env_duration("JWT_EXPIRES_IN", "15m"),
    "REFRESH_TOKEN_LIFETIME": env_duration("JWT_REFRESH_EXPIRES_IN", "7d"),
    "SIGNING_KEY": JWT_SECRET,
    "AUTH_HEADER_TYPES": ("Bearer",),
    "USER_ID_CLAIM": "user_id",
}

# ---------------------- CORS ----------------------

CORS_ALLOWED_ORIGINS = env_list("ALLOWED_ORIGINS", "http://localhost:3000")
CORS_ALLOW_CREDENTIALS = True

# ---------------------- Redis / Channels / Celery ----------------------

REDIS_URL = os.getenv("REDIS_URL")

if REDIS_URL:
    CHANNEL_LAYERS = {
        "default": {
            "BACKEND": "channels_redis.core.RedisChannelLayer",
            "CONFIG": {"hosts": [REDIS_URL]},
        }
    }
else:
    CHANNEL_LAYERS = {
        "default": {"BACKEND": "channels.layers.InMemoryChannelLayer"},
    }

CELERY_BROKER_URL = REDIS_URL or "memory://"
CELERY_TASK_IGNORE_RESULT = True
CELERY_TIMEZONE = TIME_ZONE
CELERY_BEAT_SCHEDULE = {
    "activate-scheduled-rides": {
        "task": "rides.tasks.activate_scheduled_rides_task",
        "schedule": float(os.getenv("SCHEDULED_RIDE_SWEEP_SECONDS", "300")),
    },
}

# In-process alternative to celery beat for single-box deployments
ENABLE_SCHEDULED_RIDE_MONITOR = env_bool("ENABLE_SCHEDULED_RIDE_MONITOR", False)
SCHEDULED_RIDE_SWEEP_SECONDS = int(os.getenv("SCHEDULED_RIDE_SWEEP_SECONDS", "300"))

# ---------------------- Dispatch tunables ----------------------

DISPATCH = {
    "SEARCH_RADIUS_KM": 5.0,
    "MAX_CANDIDATES": 3,
    "INDEX_RESULT_CAP": 50,
    "OFFER_TTL_SECONDS": 15,
    "ACTIVATION_WINDOW_MINUTES": 15,
    "DRIVER_COMMISSION_RATE": "0.20",
    "AVERAGE_SPEED_KMH": 30,
    "PASSENGER_CANCEL_WINDOW_MINUTES": 10,
    "STATS_WINDOW_DAYS": 30,
}

# ---------------------- External integrations ----------------------

GOOGLE_MAPS_API_KEY = os.getenv("GOOGLE_MAPS_API_KEY")

TWILIO = {
    "ACCOUNT_SID": os.getenv("TWILIO_ACCOUNT_SID"),
    "AUTH_TOKEN": os.getenv("TWILIO_AUTH_TOKEN"),
    "PHONE_NUMBER": os.getenv("TWILIO_PHONE_NUMBER"),
}

CLOUDINARY = {
    "CLOUD_NAME": os.getenv("CLOUDINARY_CLOUD_NAME"),
    "API_KEY": os.getenv("CLOUDINARY_API_KEY"),
    "API_SECRET": os.getenv("CLOUDINARY_API_SECRET"),
}

STRIPE = {
    "SECRET_KEY": os.getenv("STRIPE_SECRET_KEY"),
}

EASYPAISA = {
    "STORE_ID": os.getenv("EASYPAISA_STORE_ID"),
    "HASH_KEY": os.getenv("EASYPAISA_HASH_KEY"),
    "BASE_URL": os.getenv("EASYPAISA_BASE_URL", "https://easypay.easypaisa.com.pk"),
}

JAZZCASH = {
    "MERCHANT_ID": os.getenv("JAZZCASH_MERCHANT_ID"),
    "PASSWORD": os.getenv("JAZZCASH_PASSWORD"),
    "INTEGRITY_SALT": os.getenv("JAZZCASH_INTEGRITY_SALT"),
    "BASE_URL": os.getenv("JAZZCASH_BASE_URL", "https://sandbox.jazzcash.com.pk"),
}

PAYMENT_RETURN_URL = os.getenv("PAYMENT_RETURN_URL", "http://localhost:3000/payment/callback")

EXTERNAL_HTTP_TIMEOUT = float(os.getenv("EXTERNAL_HTTP_TIMEOUT", "10"))

# ---------------------- Logging ----------------------

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
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
        "django": {"handlers": ["console"], "level": "INFO", "propagate": False},
        "rides": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "drivers": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "services": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "realtime": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "integrations": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}
