from datetime import timedelta

import pytest

from medquiz.errors import AuthenticationError, ValidationError
from medquiz.services.account_service import AccountService


@pytest.mark.parametrize("name, email, password, confirm, message", [
    ("", "a@x.com", "123456", "123456", "Name is required"),
    ("Ada", "not-an-email", "123456", "123456", "A valid email is required"),
    ("Ada", "a@x.com", "12345", "12345", "Password must be exactly 6 characters"),
    ("Ada", "a@x.com", "123456", "654321", "Passwords do not match"),
])
async def test_signup_validation(db, name, email, password, confirm, message):
    with pytest.raises(ValidationError) as err:
        await AccountService(db).signup(name, email, password, confirm)
    assert err.value.message == message
    assert db.users == {}


async def test_signup_creates_user_and_profile(db):
    user = await AccountService(db).signup("Ada Obi", "Ada@Uni.edu", "123456", "123456", matric_number="MED/001")

    assert user["email"] == "ada@uni.edu"
    profile = await db.get_profile(user["id"])
    assert profile["display_name"] == "Ada Obi"
    assert profile["matric_number"] == "MED/001"


async def test_login_builds_session_with_subscription(db, now):
    user_id = db.add_user("ada@uni.edu", name="Ada")
    db.add_subscription(user_id, is_trial=True, trial_end=now + timedelta(days=2))

    session = await AccountService(db).login("ada@uni.edu", "123456", now=now)

    assert session.user_id == user_id
    assert session.name == "Ada"
    assert session.access_token == f"token-{user_id}"
    assert session.subscription.status == "trial"
    assert session.can_access_quiz_content


async def test_login_rejects_bad_credentials(db):
    db.add_user("ada@uni.edu")
    with pytest.raises(AuthenticationError):
        await AccountService(db).login("ada@uni.edu", "000000")
    with pytest.raises(ValidationError):
        await AccountService(db).login("", "")


async def test_session_for_token(db, now):
    user_id = db.add_user("ada@uni.edu")
    accounts = AccountService(db)

    session = await accounts.session_for_token(f"token-{user_id}", now=now)
    assert session.name == "ada"
    assert session.subscription.status == "none"
    assert not session.can_access_quiz_content

    with pytest.raises(AuthenticationError):
        await accounts.session_for_token("forged")
    with pytest.raises(AuthenticationError):
        await accounts.session_for_token(None)


async def test_session_refresh_picks_up_changes(db, now):
    user_id = db.add_user("ada@uni.edu")
    accounts = AccountService(db)
    session = await accounts.session_for_token(f"token-{user_id}", now=now)

    db.add_subscription(user_id, subscription_end=now + timedelta(days=30))
    state = await session.refresh(accounts.resolver, now)

    assert state.status == "active"
    assert session.can_access_quiz_content


async def test_quiz_history_stats(db):
    db.results = [
        {"user_id": "u1", "score_percentage": 70.0, "completed_at": "2025-05-01T10:00:00+00:00"},
        {"user_id": "u1", "score_percentage": 85.5, "completed_at": "2025-05-03T10:00:00+00:00"},
        {"user_id": "u2", "score_percentage": 10.0, "completed_at": "2025-05-02T10:00:00+00:00"},
    ]
    history = await AccountService(db).quiz_history("u1")

    assert [r["score_percentage"] for r in history["results"]] == [85.5, 70.0]
    assert history["stats"] == {"total": 2, "average": 78, "best": 86}


async def test_empty_quiz_history(db):
    history = await AccountService(db).quiz_history("u1")
    assert history == {"results": [], "stats": {"total": 0, "average": 0, "best": 0}}


async def test_billing_history_total_in_naira(db, now):
    db.add_subscription("u1", amount=100000)
    db.add_subscription("u1", created_at=now + timedelta(days=1), amount=50000)
    db.add_subscription("u1", created_at=now + timedelta(days=2))

    billing = await AccountService(db).billing_history("u1")

    assert len(billing["subscriptions"]) == 3
    assert billing["total_spent"] == 1500
