import asyncio
from datetime import datetime, timedelta

import pytest

from medquiz.errors import ValidationError
from medquiz.services.admin_overview import AdminOverview, filter_rows, summarize


def seed(db, now):
    active = db.add_user("ada@uni.edu", name="Ada Obi")
    trial = db.add_user("tunde@uni.edu", name="Tunde")
    lapsed = db.add_user("chi@uni.edu", name="Chi")
    db.add_user("nosub@uni.edu")  # auth only, no profile

    db.add_subscription(active, subscription_status="active", subscription_end=now + timedelta(days=20), amount=100000)
    db.add_subscription(trial, is_trial=True, trial_end=now + timedelta(days=1))
    # Stored as active but already over
    db.add_subscription(lapsed, subscription_status="active", subscription_end=now - timedelta(days=2), amount=50000)
    return active, trial, lapsed


async def test_list_all_derives_status(db, now):
    active, trial, lapsed = seed(db, now)
    rows = await AdminOverview(db).list_all(now)

    by_id = {r.user_id: r for r in rows}
    assert len(rows) == 4
    assert by_id[active].subscription_status == "active"
    assert by_id[trial].subscription_status == "trial"
    assert by_id[lapsed].subscription_status == "expired"

    auth_only = next(r for r in rows if r.user_email == "nosub@uni.edu")
    assert auth_only.subscription_status == "none"
    assert auth_only.user_name == "nosub"


async def test_stats(db, now):
    seed(db, now)
    stats = summarize(await AdminOverview(db).list_all(now))
    assert stats == {
        "total_users": 4,
        "active": 1,
        "trial": 1,
        "expired": 1,
        "none": 1,
        "total_revenue": 150000,
    }


async def test_emails_are_optional(db, now):
    seed(db, now)
    db.failing.add("list_auth_users")
    rows = await AdminOverview(db).list_all(now)
    assert len(rows) == 3
    assert all(r.user_email is None for r in rows)


async def test_filter_rows(db, now):
    seed(db, now)
    rows = await AdminOverview(db).list_all(now)

    assert [r.user_name for r in filter_rows(rows, "ada")] == ["Ada Obi"]
    assert [r.user_email for r in filter_rows(rows, "CHI@")] == ["chi@uni.edu"]
    assert len(filter_rows(rows, "", "expired")) == 1
    assert filter_rows(rows, "ada", "trial") == []
    assert len(filter_rows(rows)) == 4


async def test_update_status_active_and_trial(db, now):
    active, trial, _ = seed(db, now)
    overview = AdminOverview(db)

    row = await overview.update_status(trial, "active", now=now)
    assert row["is_trial"] is False
    assert row["subscription_end"] == (now + timedelta(days=30)).isoformat()

    newcomer = db.add_user("new@uni.edu", name="New")
    row = await overview.update_status(newcomer, "trial", now=now)
    assert row["trial_end"] == (now + timedelta(days=3)).isoformat()

    statuses = {r.user_id: r.subscription_status for r in await overview.list_all(now)}
    assert statuses[trial] == "active"
    assert statuses[newcomer] == "trial"


async def test_update_status_expired_really_expires(db, now):
    active, _, _ = seed(db, now)
    overview = AdminOverview(db)

    await overview.update_status(active, "expired", now=now)

    statuses = {r.user_id: r.subscription_status for r in await overview.list_all(now)}
    assert statuses[active] == "expired"


async def test_update_status_custom_end(db, now):
    active, _, _ = seed(db, now)
    end = datetime(2030, 1, 1, tzinfo=now.tzinfo)
    row = await AdminOverview(db).update_status(active, "active", subscription_end=end, now=now)
    assert row["subscription_end"] == end.isoformat()


async def test_update_status_rejects_unknown_status(db):
    with pytest.raises(ValidationError):
        await AdminOverview(db).update_status("u1", "premium")


async def test_live_refresh_polls_change_marker(db, now):
    active, _, _ = seed(db, now)
    overview = AdminOverview(db)
    pushed = []

    live = overview.live(pushed.append, interval=3600)
    await live.start()
    try:
        assert await live.poll_once() is False

        await overview.update_status(active, "expired", now=now + timedelta(minutes=1))
        assert await live.poll_once() is True
        assert len(pushed) == 1
        assert len(pushed[0]) == 4
    finally:
        await live.stop()

    assert live.task is None


async def wait_for_calls(calls, count):
    for _ in range(200):
        if len(calls) >= count:
            return
        await asyncio.sleep(0.01)


async def test_live_refresh_survives_failed_push(db, now):
    user_id = db.add_user("ada@uni.edu", name="Ada")
    calls = []

    def flaky_push(rows):
        calls.append(rows)
        if len(calls) == 1:
            raise ConnectionResetError("socket closed")

    live = AdminOverview(db).live(flaky_push, interval=0.01)
    await live.start()
    try:
        db.add_subscription(user_id, created_at=now + timedelta(minutes=1))
        await wait_for_calls(calls, 1)
        assert len(calls) == 1
        assert not live.task.done()

        db.add_subscription(user_id, created_at=now + timedelta(minutes=2))
        await wait_for_calls(calls, 2)
        assert len(calls) == 2
    finally:
        await live.stop()


async def test_stop_tolerates_a_failed_task(db):
    async def broken():
        raise ConnectionResetError("socket closed")

    live = AdminOverview(db).live(lambda rows: None, interval=3600)
    live.task = asyncio.create_task(broken())
    await asyncio.sleep(0)

    await live.stop()
    assert live.task is None
