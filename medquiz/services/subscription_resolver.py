import logging
from datetime import datetime
from typing import NamedTuple, Optional

from database.models import SubscriptionRecord
from medquiz.utils.time_utils import ensure_aware, utc_now

logger = logging.getLogger(__name__)

ACTIVE = "active"
TRIAL = "trial"
EXPIRED = "expired"
NONE = "none"

STATUSES = (ACTIVE, TRIAL, EXPIRED, NONE)
ACCESS_STATUSES = (ACTIVE, TRIAL)


class SubscriptionState(NamedTuple):
    status: str
    # trial_end for trials, subscription_end otherwise
    expires_at: Optional[datetime] = None

    @property
    def can_access_quiz_content(self) -> bool:
        return self.status in ACCESS_STATUSES

    def as_dict(self) -> dict:
        return {
            "status": self.status,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "can_access_quiz_content": self.can_access_quiz_content,
        }


def resolve_status(record: Optional[SubscriptionRecord], now: datetime) -> SubscriptionState:
    """
    Derives the subscription state from timestamps.
    The stored subscription_status column is ignored: an "active" row
    whose end has passed is expired.
    """
    if record is None:
        return SubscriptionState(NONE)

    now = ensure_aware(now)

    if record.is_trial and record.trial_end:
        trial_end = ensure_aware(record.trial_end)
        return SubscriptionState(TRIAL if now < trial_end else EXPIRED, trial_end)

    if record.subscription_end:
        sub_end = ensure_aware(record.subscription_end)
        return SubscriptionState(ACTIVE if now < sub_end else EXPIRED, sub_end)

    return SubscriptionState(NONE)


class SubscriptionResolver:
    def __init__(self, db):
        self.db = db

    async def latest_record(self, user_id: str) -> Optional[SubscriptionRecord]:
        row = await self.db.get_latest_subscription(user_id)
        return SubscriptionRecord(**row) if row else None

    async def resolve(self, user_id: str, now: datetime = None) -> SubscriptionState:
        """
        Fetches the user's latest subscription and resolves it against now.
        Database errors propagate; access is never granted on failure.
        """
        record = await self.latest_record(user_id)
        state = resolve_status(record, now or utc_now())
        logger.info(f"Subscription for {user_id}: {state.status}")
        return state
