import logging
from datetime import datetime
from typing import Optional

from medquiz.errors import AuthenticationError, ValidationError
from medquiz.services.subscription_resolver import SubscriptionResolver, SubscriptionState

logger = logging.getLogger(__name__)

PASSWORD_LENGTH = 6


class UserSession:
    """
    Who is calling and what their subscription allows.
    Built per request from the bearer token and passed to whatever needs it.
    """

    def __init__(self, user_id: str, email: Optional[str], name: str, access_token: str = None,
                 subscription: SubscriptionState = None):
        self.user_id = user_id
        self.email = email
        self.name = name
        self.access_token = access_token
        self.subscription = subscription or SubscriptionState("none")

    @property
    def can_access_quiz_content(self) -> bool:
        return self.subscription.can_access_quiz_content

    async def refresh(self, resolver: SubscriptionResolver, now: datetime = None) -> SubscriptionState:
        """Re-resolves the subscription on demand."""
        self.subscription = await resolver.resolve(self.user_id, now)
        return self.subscription

    def as_dict(self) -> dict:
        return {
            "id": self.user_id,
            "email": self.email,
            "name": self.name,
            "subscription": self.subscription.as_dict(),
        }


class AccountService:
    def __init__(self, db):
        self.db = db
        self.resolver = SubscriptionResolver(db)

    async def signup(self, name: str, email: str, password: str, confirm_password: str,
                     matric_number: str = None) -> dict:
        name = (name or "").strip()
        email = (email or "").strip().lower()
        if not name:
            raise ValidationError("Name is required")
        if not email or "@" not in email:
            raise ValidationError("A valid email is required")
        if not password or len(password) != PASSWORD_LENGTH:
            raise ValidationError(f"Password must be exactly {PASSWORD_LENGTH} characters")
        if password != confirm_password:
            raise ValidationError("Passwords do not match")

        user = await self.db.sign_up(email, password, name)
        await self.db.insert_profile({
            "user_id": user["id"],
            "display_name": name,
            "matric_number": (matric_number or "").strip() or None,
        })
        logger.info(f"Account created: {user['id']}")
        return user

    async def login(self, email: str, password: str, now: datetime = None) -> UserSession:
        if not email or not password:
            raise ValidationError("Please enter both email and password.")
        res = await self.db.sign_in(email.strip().lower(), password)
        return await self._build_session(res["user"], res["access_token"], now)

    async def session_for_token(self, token: Optional[str], now: datetime = None) -> UserSession:
        if not token:
            raise AuthenticationError("Authorization header missing")
        user = await self.db.get_user_from_token(token)
        if not user:
            raise AuthenticationError("Session expired or invalid. Please log in again.")
        return await self._build_session(user, token, now)

    async def _build_session(self, user: dict, token: str, now: datetime = None) -> UserSession:
        profile = await self.db.get_profile(user["id"]) or {}
        email = user.get("email")
        name = profile.get("display_name") or (email.split("@")[0] if email else "Student")
        session = UserSession(user["id"], email, name, access_token=token)
        await session.refresh(self.resolver, now)
        return session

    async def quiz_history(self, user_id: str) -> dict:
        """
        Past results, newest first, with total / average / best for display.
        """
        results = await self.db.list_quiz_results(user_id)
        scores = [r.get("score_percentage") or 0 for r in results]
        stats = {"total": len(results), "average": 0, "best": 0}
        if scores:
            stats["average"] = round(sum(scores) / len(scores))
            stats["best"] = round(max(scores))
        return {"results": results, "stats": stats}

    async def billing_history(self, user_id: str) -> dict:
        subscriptions = await self.db.list_subscriptions(user_id)
        # Amounts are kept in kobo
        total_spent = sum(s.get("amount") or 0 for s in subscriptions) / 100
        return {"subscriptions": subscriptions, "total_spent": total_spent}
