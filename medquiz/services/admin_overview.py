import asyncio
import inspect
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from database.models import SubscriptionRecord, UserSubscriptionView
from medquiz.config import Config
from medquiz.errors import BackendError, ValidationError
from medquiz.services.subscription_resolver import ACTIVE, EXPIRED, NONE, STATUSES, TRIAL, resolve_status
from medquiz.utils.time_utils import ensure_aware, isoformat, utc_now

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _created(record: SubscriptionRecord) -> datetime:
    return ensure_aware(record.created_at) or _EPOCH


def latest_by_user(rows: List[dict]) -> Dict[str, SubscriptionRecord]:
    """Most recently created subscription per user."""
    latest: Dict[str, SubscriptionRecord] = {}
    for row in rows:
        record = SubscriptionRecord(**row)
        current = latest.get(record.user_id)
        if current is None or _created(record) > _created(current):
            latest[record.user_id] = record
    return latest


def summarize(rows: List[UserSubscriptionView]) -> dict:
    stats = {
        "total_users": 0,
        "active": 0,
        "trial": 0,
        "expired": 0,
        "none": 0,
        "total_revenue": 0,
    }
    for row in rows:
        stats["total_users"] += 1
        stats[row.subscription_status if row.subscription_status in STATUSES else NONE] += 1
        if row.amount:
            stats["total_revenue"] += row.amount
    return stats


def filter_rows(rows: List[UserSubscriptionView], search: str = "", status: str = "all") -> List[UserSubscriptionView]:
    """
    Free-text match on id, name or email plus an exact status filter.
    Pure: works on rows already fetched.
    """
    filtered = rows
    term = (search or "").strip().lower()
    if term:
        filtered = [
            r for r in filtered
            if term in r.user_id.lower()
            or term in r.user_name.lower()
            or term in (r.user_email or "").lower()
        ]
    if status and status != "all":
        filtered = [r for r in filtered if r.subscription_status == status]
    return filtered


class AdminOverview:
    def __init__(self, db):
        self.db = db

    async def _emails(self) -> Dict[str, Optional[str]]:
        try:
            return await self.db.list_auth_users()
        except BackendError as e:
            # Emails are optional on the overview
            logger.warning(f"Listing without emails: {e}")
            return {}

    async def list_all(self, now: datetime = None) -> List[UserSubscriptionView]:
        """
        One row per registered user with the derived subscription status.
        Re-reading has no side effects, so this doubles as manual refresh.
        """
        now = now or utc_now()
        profiles = await self.db.list_profiles()
        latest = latest_by_user(await self.db.list_subscriptions())
        emails = await self._emails()

        names = {p["user_id"]: p.get("display_name") for p in profiles}
        user_ids = list(names)
        user_ids += [uid for uid in emails if uid not in names]

        rows = []
        for user_id in user_ids:
            record = latest.get(user_id)
            email = emails.get(user_id)
            name = names.get(user_id) or (email.split("@")[0] if email else None) or "Unknown User"
            state = resolve_status(record, now)
            rows.append(UserSubscriptionView(
                user_id=user_id,
                user_email=email,
                user_name=name,
                subscription_status=state.status,
                subscription_start=record.subscription_start if record else None,
                subscription_end=record.subscription_end if record else None,
                trial_end=record.trial_end if record else None,
                is_trial=record.is_trial if record else False,
                amount=record.amount if record else None,
                payment_reference=record.payment_reference if record else None,
                created_at=record.created_at if record else None,
                updated_at=record.updated_at if record else None,
            ))
        return rows

    async def stats(self, now: datetime = None) -> dict:
        return summarize(await self.list_all(now))

    async def update_status(self, user_id: str, status: str, subscription_end: datetime = None,
                            now: datetime = None) -> dict:
        """
        Manual override from the admin panel. Updates the user's latest
        subscription row or creates one.
        """
        if not user_id or status not in STATUSES:
            raise ValidationError("user_id and a status of active, trial, expired or none are required")

        now = now or utc_now()
        existing_row = await self.db.get_latest_subscription(user_id)
        existing = SubscriptionRecord(**existing_row) if existing_row else None

        data = {
            "user_id": user_id,
            "subscription_status": status,
            "updated_at": isoformat(now),
        }

        if status == ACTIVE:
            data["subscription_start"] = isoformat(now)
            data["subscription_end"] = isoformat(subscription_end or now + timedelta(days=Config.ADMIN_ACTIVE_DAYS))
            data["is_trial"] = False
            data["trial_end"] = None
        elif status == TRIAL:
            data["subscription_start"] = isoformat(now)
            data["is_trial"] = True
            data["trial_end"] = isoformat(now + timedelta(days=Config.TRIAL_DAYS))
            data["subscription_end"] = None
        elif status == EXPIRED:
            # Keep existing dates, but make sure the end is not in the future
            if existing:
                end = ensure_aware(existing.subscription_end)
                data["subscription_start"] = isoformat(existing.subscription_start)
                data["subscription_end"] = isoformat(end if end and end <= now else now)
                data["is_trial"] = existing.is_trial
                trial_end = ensure_aware(existing.trial_end)
                data["trial_end"] = isoformat(trial_end if trial_end and trial_end <= now else now) if existing.is_trial else None
            else:
                data["subscription_end"] = isoformat(now)
        else:
            data["subscription_start"] = None
            data["subscription_end"] = None
            data["is_trial"] = False
            data["trial_end"] = None
            data["amount"] = None
            data["payment_reference"] = None

        logger.info(f"Admin: updating subscription for {user_id} to {status}")
        if existing:
            return await self.db.update_subscription(existing.id, data)
        data["created_at"] = isoformat(now)
        return await self.db.insert_subscription(data)

    def live(self, on_change: Callable, interval: float = None) -> "LiveRefresh":
        return LiveRefresh(self, on_change, interval if interval is not None else Config.ADMIN_REFRESH_SECONDS)


class LiveRefresh:
    """
    Polls the change marker of subscriptions/user_profiles and re-fetches
    the overview when it moves. Convenience only: list_all() is always
    available as a manual refresh. stop() must be called when the view closes.
    """

    def __init__(self, overview: AdminOverview, on_change: Callable, interval: float):
        self.overview = overview
        self.on_change = on_change
        self.interval = interval
        self.marker = None
        self.task: Optional[asyncio.Task] = None

    async def start(self):
        self.marker = await self.overview.db.get_change_marker()
        self.task = asyncio.create_task(self._run())
        return self

    async def poll_once(self) -> bool:
        marker = await self.overview.db.get_change_marker()
        if marker == self.marker:
            return False
        self.marker = marker
        rows = await self.overview.list_all()
        outcome = self.on_change(rows)
        if inspect.isawaitable(outcome):
            await outcome
        return True

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            try:
                if await self.poll_once():
                    logger.info("Subscription data changed, overview refreshed")
            except BackendError as e:
                logger.warning(f"Live refresh poll failed: {e}")
            except Exception as e:
                # The viewer may have gone away mid-push; keep polling until stop()
                logger.error(f"Live refresh push failed: {e}")

    async def stop(self):
        if not self.task:
            return
        self.task.cancel()
        try:
            await self.task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning(f"Live refresh ended with an error: {e}")
        self.task = None
