from .settings import *  # noqa: F401,F403


class DisableMigrations:
    """Build test tables straight from the models."""

    def __contains__(self, item):
        return True

    def __getitem__(self, item):
        return None


DEBUG = False

# File-backed so threaded tests share one database and wait on its lock
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": str(BASE_DIR / "test_db.sqlite3"),
        "OPTIONS": {"timeout": 20},
        "TEST": {"NAME": str(BASE_DIR / "test_db.sqlite3")},
    }
}

MIGRATION_MODULES = DisableMigrations()

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

JWT_SECRET = "test-jwt-secret-that-is-at-least-32-bytes-long"
JWT_REFRESH_SECRET = "test-jwt-refresh-secret-at-least-32-bytes-long"
SIMPLE_JWT["SIGNING_KEY"] = JWT_SECRET

REDIS_URL = None
CHANNEL_LAYERS = {
    "default": {"BACKEND": "channels.layers.InMemoryChannelLayer"},
}

CELERY_BROKER_URL = "memory://"
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True

ENABLE_SCHEDULED_RIDE_MONITOR = False

GOOGLE_MAPS_API_KEY = None
TWILIO = {"ACCOUNT_SID": None, "AUTH_TOKEN": None, "PHONE_NUMBER": None}
CLOUDINARY = {"CLOUD_NAME": None, "API_KEY": None, "API_SECRET": None}
STRIPE = {"SECRET_KEY": None}
EASYPAISA = {"STORE_ID": None, "HASH_KEY": None, "BASE_URL": "https://easypay.example.test"}
JAZZCASH = {
    "MERCHANT_ID": None,
    "PASSWORD": None,
    "INTEGRITY_SALT": None,
    "BASE_URL": "https://jazzcash.example.test",
}

LOGGING["loggers"]["django"]["level"] = "WARNING"
