import logging
import random
import uuid
from typing import Dict, List, NamedTuple, Optional, Union

from database.models import QuizQuestion, QuizResult, QuizSelection
from medquiz.config import Config
from medquiz.errors import AnswerRejected, BackendError, NoQuestionsAvailable, ValidationError
from medquiz.services.catalog import catalog as default_catalog

logger = logging.getLogger(__name__)

SAVE_FAILED_WARNING = "Your score could not be saved. It is shown here but will not appear in your history."


class Answer(NamedTuple):
    question_id: Optional[Union[int, str]]
    selected_option: int
    is_correct: bool


class QuizSession:
    """
    One attempt at a set of questions, from start to completion.

    The shuffled question list is fixed for the life of the session, each
    question takes at most one answer, and completion (manual, last question
    or timer) runs exactly once.
    """

    def __init__(self, db, user_id: str, questions: List[QuizQuestion], selections: List[QuizSelection],
                 category_id: str, duration: int = None, session_id: str = None):
        self.db = db
        self.user_id = user_id
        self.session_id = session_id or str(uuid.uuid4())[:8] # Short 8-char ID
        self.questions = tuple(questions)
        self.selections = list(selections)
        self.category_id = category_id
        self.duration = duration if duration is not None else Config.QUIZ_DURATION_SECONDS
        self.remaining_seconds = self.duration
        self.current_index = 0
        self.answers: Dict[int, Answer] = {}
        self.completed = False
        self.result: Optional[QuizResult] = None
        self.persisted = False
        self.warning: Optional[str] = None

    @classmethod
    async def start(cls, db, user_id: str, selections: List[QuizSelection], duration: int = None,
                    rng: random.Random = None, catalog=None) -> "QuizSession":
        """
        Fetches up to question_count questions per selection, then shuffles
        the combined list once.
        """
        catalog = catalog or default_catalog
        if not selections:
            raise ValidationError("Select at least one topic")
        selections = [catalog.bound_selection(s) for s in selections]

        questions: List[QuizQuestion] = []
        for selection in selections:
            rows = await db.fetch_questions(selection.subject_id, selection.block_id, selection.question_count)
            questions.extend(QuizQuestion.from_row(row) for row in rows[:selection.question_count])

        if not questions:
            raise NoQuestionsAvailable()

        # Fisher-Yates: every ordering equally likely
        (rng or random).shuffle(questions)

        subject_ids = [s.subject_id for s in selections]
        session = cls(db, user_id, questions, selections, catalog.category_for(subject_ids), duration)
        logger.info(f"Quiz {session.session_id} started for {user_id}: {len(questions)} questions")
        return session

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def current_question(self) -> QuizQuestion:
        return self.questions[self.current_index]

    @property
    def correct_count(self) -> int:
        return sum(1 for a in self.answers.values() if a.is_correct)

    def submit_answer(self, option_index: Optional[int]) -> bool:
        """
        Records the answer for the current question and returns whether it
        was correct. Does not move on; advance() is a separate step.
        """
        if self.completed:
            raise AnswerRejected("Quiz is already completed")
        if option_index is None:
            raise AnswerRejected("No option selected")
        if isinstance(option_index, bool) or not isinstance(option_index, int) or not 0 <= option_index <= 3:
            raise AnswerRejected("Option must be between 0 and 3")
        if self.current_index in self.answers:
            raise AnswerRejected("Question already answered")

        question = self.current_question
        is_correct = option_index == question.correct_index
        self.answers[self.current_index] = Answer(question.id, option_index, is_correct)
        return is_correct

    async def advance(self) -> Union[QuizQuestion, QuizResult]:
        """
        Moves to the next unanswered question. With none left the session
        completes and the result is returned instead.
        """
        if not self.completed:
            for index in range(self.current_index + 1, self.total_questions):
                if index not in self.answers:
                    self.current_index = index
                    return self.current_question
        return await self.complete()

    def previous(self) -> QuizQuestion:
        """Steps back for review. Recorded answers stay as they are."""
        if self.current_index > 0:
            self.current_index -= 1
        return self.current_question

    async def tick(self) -> int:
        if self.completed:
            return self.remaining_seconds
        if self.remaining_seconds > 0:
            self.remaining_seconds -= 1
        if self.remaining_seconds == 0:
            logger.info(f"Quiz {self.session_id} timed out")
            await self.complete()
        return self.remaining_seconds

    async def complete(self) -> QuizResult:
        # One-shot: the flag and result are set before the first await so a
        # concurrent timer expiry sees them and returns the same result.
        if self.completed:
            return self.result
        self.completed = True

        total = self.total_questions
        correct = self.correct_count
        self.result = QuizResult(
            user_id=self.user_id,
            category_id=self.category_id,
            subject_ids=list(dict.fromkeys(s.subject_id for s in self.selections)),
            total_questions=total,
            correct_answers=correct,
            score_percentage=correct * 100 / total,
            time_taken_seconds=self.duration - self.remaining_seconds,
        )

        try:
            await self.db.insert_quiz_result(self.result.to_row())
            self.persisted = True
        except BackendError as e:
            # The score is still shown; only the history entry is lost.
            logger.error(f"Failed to save result of quiz {self.session_id}: {e}")
            self.warning = SAVE_FAILED_WARNING

        logger.info(f"Quiz {self.session_id} completed: {correct}/{total}")
        return self.result

    def question_view(self, index: int = None) -> dict:
        """
        Question as shown to the user. The correct option and explanation are
        only revealed once the question has been answered.
        """
        index = self.current_index if index is None else index
        question = self.questions[index]
        view = {
            "index": index,
            "id": question.id,
            "question": question.question,
            "options": list(question.options),
            "answered": index in self.answers,
        }
        answer = self.answers.get(index)
        if answer or self.completed:
            view["correct_index"] = question.correct_index
            view["explanation"] = question.explanation
        if answer:
            view["selected_option"] = answer.selected_option
            view["is_correct"] = answer.is_correct
        return view

    def as_dict(self) -> dict:
        state = {
            "session_id": self.session_id,
            "total_questions": self.total_questions,
            "answered_count": len(self.answers),
            "current_index": self.current_index,
            "remaining_seconds": self.remaining_seconds,
            "completed": self.completed,
            "question": self.question_view(),
        }
        if self.completed:
            state["result"] = self.result.model_dump(mode="json")
            state["warning"] = self.warning
        return state
