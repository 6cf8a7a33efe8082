import asyncio
import logging
import random
from typing import Dict, List, Optional

from database.models import QuizSelection
from medquiz.errors import NotFound
from medquiz.services.quiz_session import QuizSession

logger = logging.getLogger(__name__)

class SessionManager:
    """
    In-memory registry of quiz sessions plus their countdown tasks.
    A user holds at most one session; starting another discards the old one.
    """

    def __init__(self, tick_interval: float = 1.0):
        self.tick_interval = tick_interval
        self.sessions: Dict[str, QuizSession] = {}
        self.user_sessions: Dict[str, str] = {}
        self.timer_tasks: Dict[str, asyncio.Task] = {}

    async def start_session(self, db, user_id: str, selections: List[QuizSelection],
                            duration: int = None, rng: random.Random = None) -> QuizSession:
        session = await QuizSession.start(db, user_id, selections, duration=duration, rng=rng)

        # Kill zombie timers from an earlier session of the same user
        self.discard_user_session(user_id)

        self.sessions[session.session_id] = session
        self.user_sessions[user_id] = session.session_id
        self.timer_tasks[session.session_id] = asyncio.create_task(self._run_timer(session))
        return session

    def get_session(self, session_id: str, user_id: str) -> QuizSession:
        session = self.sessions.get(session_id)
        if not session or session.user_id != user_id:
            raise NotFound("Quiz session not found")
        return session

    def get_user_session(self, user_id: str) -> Optional[QuizSession]:
        session_id = self.user_sessions.get(user_id)
        return self.sessions.get(session_id) if session_id else None

    def discard_session(self, session_id: str):
        """Drops a session (navigation away). An unfinished quiz is not scored."""
        session = self.sessions.pop(session_id, None)
        if not session:
            return
        if self.user_sessions.get(session.user_id) == session_id:
            del self.user_sessions[session.user_id]
        # A completing timer is left to finish its write and exit on its own
        task = self.timer_tasks.pop(session_id, None)
        if task and not session.completed:
            task.cancel()
        logger.info(f"Quiz {session_id} discarded (completed={session.completed})")

    def discard_user_session(self, user_id: str):
        session_id = self.user_sessions.get(user_id)
        if session_id:
            self.discard_session(session_id)

    async def shutdown(self):
        tasks = list(self.timer_tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self.timer_tasks.clear()

    async def _run_timer(self, session: QuizSession):
        """
        Ticks the session once per interval until it completes.
        """
        try:
            while not session.completed:
                await asyncio.sleep(self.tick_interval)
                await session.tick()
        except asyncio.CancelledError:
            logger.debug(f"Timer for quiz {session.session_id} cancelled")
            raise
        finally:
            if self.timer_tasks.get(session.session_id) is asyncio.current_task():
                del self.timer_tasks[session.session_id]
