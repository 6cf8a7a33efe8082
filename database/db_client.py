import logging
from typing import Dict, List, Optional
from supabase import AuthError, Client, ClientOptions, create_client

from medquiz.config import Config
from medquiz.errors import AuthenticationError, BackendError

logger = logging.getLogger(__name__)

class SupabaseClient:
    def __init__(self, url: str = None, key: str = None, anon_key: str = None):
        self.url = url or Config.SUPABASE_URL
        self.key = key or Config.SUPABASE_KEY
        self.anon_key = anon_key or Config.SUPABASE_ANON_KEY
        self.client: Client = None
        # Sign-in mutates the session of the client it runs on, so user
        # auth calls go through a second client and never touch table access.
        self.auth_client: Client = None

    async def connect(self):
        """
        Connects to Supabase.
        """
        try:
            if not self.url or not self.key:
                logger.error("Supabase credentials missing in .env")
                return False

            self.client = create_client(self.url, self.key)
            self.auth_client = create_client(
                self.url,
                self.anon_key or self.key,
                options=ClientOptions(auto_refresh_token=False, persist_session=False),
            )
            logger.info("Supabase connected successfully.")
            return True
        except Exception as e:
            logger.error(f"Supabase connection failed: {e}")
            return False

    def _execute(self, query, action: str):
        if not self.client:
            logger.warning("DB Client not initialized.")
            raise BackendError("Database is not available")
        try:
            return query.execute()
        except Exception as e:
            logger.error(f"Failed to {action}: {e}")
            raise BackendError(f"Failed to {action}") from e

    def _table(self, name: str):
        if not self.client:
            logger.warning("DB Client not initialized.")
            raise BackendError("Database is not available")
        return self.client.table(name)

    # --- Auth ---

    async def sign_up(self, email: str, password: str, display_name: str) -> dict:
        """
        Creates the auth user. Returns {"id", "email"}.
        """
        if not self.auth_client:
            raise BackendError("Database is not available")
        try:
            res = self.auth_client.auth.sign_up({
                "email": email,
                "password": password,
                "options": {"data": {"display_name": display_name}},
            })
        except AuthError as e:
            logger.info(f"Signup rejected for {email}: {e}")
            raise AuthenticationError(str(e)) from e
        except Exception as e:
            logger.error(f"Failed to sign up user: {e}")
            raise BackendError("Failed to create account") from e

        if not res.user:
            raise AuthenticationError("Failed to create account")
        return {"id": res.user.id, "email": res.user.email}

    async def sign_in(self, email: str, password: str) -> dict:
        """
        Password login. Returns {"access_token", "user": {"id", "email"}}.
        """
        if not self.auth_client:
            raise BackendError("Database is not available")
        try:
            res = self.auth_client.auth.sign_in_with_password({"email": email, "password": password})
        except AuthError as e:
            raise AuthenticationError("Invalid email or password") from e
        except Exception as e:
            logger.error(f"Failed to sign in: {e}")
            raise BackendError("Login is temporarily unavailable") from e

        if not res.session or not res.user:
            raise AuthenticationError("Invalid email or password")
        return {
            "access_token": res.session.access_token,
            "user": {"id": res.user.id, "email": res.user.email},
        }

    async def get_user_from_token(self, token: str) -> Optional[dict]:
        """
        Resolves a bearer token to {"id", "email"}; None when the token is invalid.
        """
        if not self.client:
            raise BackendError("Database is not available")
        try:
            res = self.client.auth.get_user(token)
        except AuthError as e:
            logger.info(f"Token rejected: {e}")
            return None
        except Exception as e:
            logger.error(f"Failed to verify token: {e}")
            raise BackendError("Failed to verify session") from e
        if not res or not res.user:
            return None
        return {"id": res.user.id, "email": res.user.email}

    async def list_auth_users(self) -> Dict[str, Optional[str]]:
        """
        ADMIN: Maps auth user id -> email. Needs the service role key.
        """
        if not self.client:
            raise BackendError("Database is not available")
        try:
            users = self.client.auth.admin.list_users()
        except Exception as e:
            logger.error(f"Failed to list auth users: {e}")
            raise BackendError("Failed to list users") from e
        return {u.id: u.email for u in users}

    # --- Profiles ---

    async def insert_profile(self, profile: dict) -> dict:
        response = self._execute(self._table('user_profiles').upsert(profile), "upsert profile")
        logger.info(f"Upserted Profile: {profile.get('user_id')}")
        return response.data[0] if response.data else profile

    async def get_profile(self, user_id: str) -> Optional[dict]:
        response = self._execute(
            self._table('user_profiles').select("*").eq("user_id", user_id),
            "get profile",
        )
        if response.data:
            return response.data[0]
        return None

    async def list_profiles(self) -> List[dict]:
        response = self._execute(
            self._table('user_profiles').select("user_id, display_name, updated_at"),
            "list profiles",
        )
        return response.data or []

    async def is_admin(self, email: str) -> bool:
        if not email:
            return False
        response = self._execute(
            self._table('admin_users').select("email").eq("email", email),
            "check admin membership",
        )
        return bool(response.data)

    # --- Subscriptions ---

    async def get_latest_subscription(self, user_id: str) -> Optional[dict]:
        """
        Most recently created subscription row for the user.
        """
        response = self._execute(
            self._table('subscriptions')
                .select("*")
                .eq("user_id", user_id)
                .order("created_at", desc=True)
                .limit(1),
            "get subscription",
        )
        if response.data:
            return response.data[0]
        return None

    async def list_subscriptions(self, user_id: str = None) -> List[dict]:
        """
        Subscription rows, newest first. All users when user_id is None.
        """
        query = self._table('subscriptions').select("*")
        if user_id:
            query = query.eq("user_id", user_id)
        response = self._execute(query.order("created_at", desc=True), "list subscriptions")
        return response.data or []

    async def insert_subscription(self, data: dict) -> dict:
        response = self._execute(self._table('subscriptions').insert(data), "create subscription")
        logger.info(f"Subscription created for {data.get('user_id')}")
        return response.data[0] if response.data else data

    async def update_subscription(self, subscription_id, data: dict) -> dict:
        response = self._execute(
            self._table('subscriptions').update(data).eq("id", subscription_id),
            "update subscription",
        )
        logger.info(f"Subscription {subscription_id} updated for {data.get('user_id')}")
        return response.data[0] if response.data else data

    async def get_change_marker(self) -> tuple:
        """
        Latest updated_at of subscriptions and user_profiles.
        Moves whenever either table changes.
        """
        markers = []
        for table in ("subscriptions", "user_profiles"):
            response = self._execute(
                self._table(table).select("updated_at").order("updated_at", desc=True).limit(1),
                f"read {table} change marker",
            )
            markers.append(response.data[0]["updated_at"] if response.data else None)
        count = self._execute(
            self._table('subscriptions').select("id", count="exact").limit(1),
            "count subscriptions",
        ).count
        markers.append(count)
        return tuple(markers)

    # --- Questions & Results ---

    async def fetch_questions(self, subject_id: str, block_id: str = None, limit: int = 10) -> List[dict]:
        query = self._table('quiz_questions').select("*").eq("subject_id", subject_id)
        if block_id:
            query = query.eq("block_id", block_id)
        response = self._execute(query.limit(limit), "fetch questions")
        return response.data or []

    async def insert_questions(self, rows: List[dict]) -> int:
        if not rows:
            return 0
        response = self._execute(self._table('quiz_questions').insert(rows), "insert questions")
        logger.info(f"Inserted {len(rows)} questions")
        return len(response.data) if response.data else len(rows)

    async def insert_quiz_result(self, row: dict) -> dict:
        response = self._execute(self._table('quiz_results').insert(row), "save quiz result")
        logger.info(f"Quiz result saved for {row.get('user_id')}: {row.get('score_percentage')}%")
        return response.data[0] if response.data else row

    async def list_quiz_results(self, user_id: str) -> List[dict]:
        response = self._execute(
            self._table('quiz_results')
                .select("*")
                .eq("user_id", user_id)
                .order("completed_at", desc=True),
            "list quiz results",
        )
        return response.data or []
