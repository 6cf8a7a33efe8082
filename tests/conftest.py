# tests/conftest.py
# In-memory stand-in for database.db_client.SupabaseClient.
# Same async method names and return shapes, no network.

import copy
from datetime import datetime, timezone

import pytest

from medquiz.errors import AuthenticationError, BackendError
from medquiz.utils.time_utils import isoformat

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class FakeDB:
    def __init__(self):
        self.users = {}      # id -> {"email", "password"}
        self.tokens = {}     # token -> id
        self.profiles = []
        self.subscriptions = []
        self.questions = []
        self.results = []
        self.admins = set()
        self.failing = set()  # method names that raise BackendError
        self._ids = 0

    def _check(self, name):
        if name in self.failing:
            raise BackendError(f"Failed to {name}")

    def _next_id(self):
        self._ids += 1
        return self._ids

    # --- seeding helpers (sync, tests only) ---

    def add_user(self, email, password="123456", name=None):
        user_id = f"user-{self._next_id()}"
        self.users[user_id] = {"email": email, "password": password}
        self.tokens[f"token-{user_id}"] = user_id
        if name:
            self.profiles.append({"user_id": user_id, "display_name": name, "updated_at": isoformat(NOW)})
        return user_id

    def add_subscription(self, user_id, created_at=NOW, **fields):
        row = {
            "id": self._next_id(),
            "user_id": user_id,
            "subscription_status": "none",
            "subscription_start": None,
            "subscription_end": None,
            "is_trial": False,
            "trial_end": None,
            "amount": None,
            "payment_reference": None,
            "created_at": isoformat(created_at),
            "updated_at": isoformat(created_at),
        }
        for key, value in fields.items():
            row[key] = isoformat(value) if isinstance(value, datetime) else value
        self.subscriptions.append(row)
        return row

    def add_questions(self, subject_id, count, block_id=None, category_id="basic-medical-sciences"):
        for i in range(count):
            self.questions.append({
                "id": self._next_id(),
                "question": f"{subject_id} question {i + 1}",
                "option_a": "A", "option_b": "B", "option_c": "C", "option_d": "D",
                "correct_index": i % 4,
                "explanation": f"Because {i + 1}",
                "category_id": category_id,
                "subject_id": subject_id,
                "block_id": block_id,
                "difficulty_level": "medium",
            })

    # --- auth ---

    async def connect(self):
        return True

    async def sign_up(self, email, password, display_name):
        self._check("sign_up")
        if any(u["email"] == email for u in self.users.values()):
            raise AuthenticationError("User already registered")
        user_id = self.add_user(email, password)
        return {"id": user_id, "email": email}

    async def sign_in(self, email, password):
        self._check("sign_in")
        for user_id, user in self.users.items():
            if user["email"] == email and user["password"] == password:
                return {"access_token": f"token-{user_id}", "user": {"id": user_id, "email": email}}
        raise AuthenticationError("Invalid email or password")

    async def get_user_from_token(self, token):
        self._check("get_user_from_token")
        user_id = self.tokens.get(token)
        if not user_id:
            return None
        return {"id": user_id, "email": self.users[user_id]["email"]}

    async def list_auth_users(self):
        self._check("list_auth_users")
        return {uid: u["email"] for uid, u in self.users.items()}

    # --- profiles ---

    async def insert_profile(self, profile):
        self._check("insert_profile")
        self.profiles = [p for p in self.profiles if p["user_id"] != profile["user_id"]]
        row = dict(profile, updated_at=isoformat(datetime.now(timezone.utc)))
        self.profiles.append(row)
        return row

    async def get_profile(self, user_id):
        self._check("get_profile")
        return next((dict(p) for p in self.profiles if p["user_id"] == user_id), None)

    async def list_profiles(self):
        self._check("list_profiles")
        return copy.deepcopy(self.profiles)

    async def is_admin(self, email):
        self._check("is_admin")
        return email in self.admins

    # --- subscriptions ---

    def _newest_first(self, rows):
        ordered = list(enumerate(rows))
        ordered.sort(key=lambda pair: (pair[1]["created_at"] or "", pair[0]), reverse=True)
        return [copy.deepcopy(row) for _, row in ordered]

    async def get_latest_subscription(self, user_id):
        self._check("get_latest_subscription")
        rows = self._newest_first([s for s in self.subscriptions if s["user_id"] == user_id])
        return rows[0] if rows else None

    async def list_subscriptions(self, user_id=None):
        self._check("list_subscriptions")
        rows = [s for s in self.subscriptions if user_id is None or s["user_id"] == user_id]
        return self._newest_first(rows)

    async def insert_subscription(self, data):
        self._check("insert_subscription")
        row = dict(data, id=self._next_id())
        self.subscriptions.append(row)
        return dict(row)

    async def update_subscription(self, subscription_id, data):
        self._check("update_subscription")
        for row in self.subscriptions:
            if row["id"] == subscription_id:
                row.update(data)
                return dict(row)
        return data

    async def get_change_marker(self):
        self._check("get_change_marker")
        subs = max((s.get("updated_at") or "" for s in self.subscriptions), default=None)
        profiles = max((p.get("updated_at") or "" for p in self.profiles), default=None)
        return (subs, profiles, len(self.subscriptions))

    # --- questions & results ---

    async def fetch_questions(self, subject_id, block_id=None, limit=10):
        self._check("fetch_questions")
        rows = [
            q for q in self.questions
            if q["subject_id"] == subject_id and (not block_id or q["block_id"] == block_id)
        ]
        return copy.deepcopy(rows[:limit])

    async def insert_questions(self, rows):
        self._check("insert_questions")
        for row in rows:
            self.questions.append(dict(row, id=self._next_id()))
        return len(rows)

    async def insert_quiz_result(self, row):
        self._check("insert_quiz_result")
        self.results.append(dict(row))
        return row

    async def list_quiz_results(self, user_id):
        self._check("list_quiz_results")
        rows = [r for r in self.results if r["user_id"] == user_id]
        return sorted(rows, key=lambda r: r["completed_at"], reverse=True)


class FakeGateway:
    """Paystack stand-in: references listed in `paid` verify as success."""

    def __init__(self):
        self.paid = {}
        self.initialized = []

    async def initialize_transaction(self, email, amount, reference, callback_url, metadata):
        self.initialized.append({"email": email, "amount": amount, "reference": reference, "metadata": metadata})
        return {
            "authorization_url": f"https://checkout.paystack.test/{reference}",
            "access_code": "code-123",
            "reference": reference,
        }

    async def verify_transaction(self, reference):
        if reference in self.paid:
            return dict(self.paid[reference], reference=reference)
        return {"status": "failed", "reference": reference, "amount": 100000, "currency": "NGN"}

    def mark_paid(self, reference, user_id, amount=100000):
        self.paid[reference] = {
            "status": "success",
            "amount": amount,
            "currency": "NGN",
            "metadata": {"user_id": user_id},
        }


@pytest.fixture
def db():
    return FakeDB()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def now():
    return NOW
