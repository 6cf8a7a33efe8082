import logging
from typing import Optional

from aiohttp import web

from medquiz.errors import AccessDenied, ValidationError
from medquiz.services.account_service import UserSession

logger = logging.getLogger(__name__)

DB = web.AppKey("db", object)
ACCOUNTS = web.AppKey("accounts", object)
PAYMENTS = web.AppKey("payments", object)
SESSIONS = web.AppKey("session_manager", object)
ADMIN = web.AppKey("admin_overview", object)
LIVE_FEEDS = web.AppKey("live_feeds", set)


async def read_json(request: web.Request) -> dict:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except ValueError as e:
        raise ValidationError("Request body must be valid JSON") from e
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def bearer_token(request: web.Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    # Browsers cannot set headers on WebSocket upgrades
    return request.query.get("access_token")


async def current_user(request: web.Request) -> UserSession:
    """
    Builds the caller's session from the bearer token, once per request.
    """
    user = request.get("user")
    if user is None:
        user = await request.app[ACCOUNTS].session_for_token(bearer_token(request))
        request["user"] = user
    return user


async def require_subscriber(request: web.Request) -> UserSession:
    user = await current_user(request)
    if not user.can_access_quiz_content:
        logger.info(f"Quiz access denied for {user.user_id}: {user.subscription.status}")
        raise AccessDenied("An active subscription or trial is required")
    return user


async def require_admin(request: web.Request) -> UserSession:
    user = await current_user(request)
    if not await request.app[DB].is_admin(user.email):
        logger.warning(f"Admin access denied for {user.email}")
        raise AccessDenied("Admin access required")
    return user
