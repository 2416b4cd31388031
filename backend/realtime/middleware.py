"""WebSocket authentication middleware: bearer JWT from the query string."""

import logging
from urllib.parse import parse_qs

from channels.db import database_sync_to_async
from channels.middleware import BaseMiddleware
from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.tokens import AccessToken

logger = logging.getLogger(__name__)


@database_sync_to_async
def get_user_for_token(raw_token: str):
    User = get_user_model()
    try:
        access = AccessToken(raw_token)
    except TokenError as exc:
        logger.debug("ws jwt rejected error=%s", exc)
        return AnonymousUser()
    try:
        return User.objects.get(id=access["user_id"], is_active=True)
    except (User.DoesNotExist, KeyError):
        return AnonymousUser()


class JWTAuthMiddleware(BaseMiddleware):
    """
    Authenticate WebSocket connections from ``?token=<access token>``.

    Connections without a valid token get AnonymousUser and are closed by
    the consumer.
    """

    async def __call__(self, scope, receive, send):
        params = parse_qs(scope.get("query_string", b"").decode())
        token_list = params.get("token")
        if token_list:
            scope["user"] = await get_user_for_token(token_list[0])
        else:
            scope["user"] = AnonymousUser()
        return await super().__call__(scope, receive, send)
