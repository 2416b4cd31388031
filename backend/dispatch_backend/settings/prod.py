from .settings import *  # noqa: F401,F403
import os

from dispatch_backend.env import env_list, require_secret

DEBUG = False
ALLOWED_HOSTS = env_list("ALLOWED_HOSTS", "localhost,127.0.0.1")
SECRET_KEY = os.environ["DJANGO_SECRET_KEY"]

# No development fallbacks in production
JWT_SECRET = require_secret("JWT_SECRET")
JWT_REFRESH_SECRET = require_secret("JWT_REFRESH_SECRET")
SIMPLE_JWT["SIGNING_KEY"] = JWT_SECRET

CORS_ALLOW_ALL_ORIGINS = False
CORS_ALLOWED_ORIGINS = env_list("ALLOWED_ORIGINS", "http://localhost:3000")

CHANNEL_LAYERS = {
    "default": {
        "BACKEND": "channels_redis.core.RedisChannelLayer",
        "CONFIG": {
            "hosts": [os.getenv("REDIS_URL", "redis://localhost:6379/0")],
        },
    }
}
