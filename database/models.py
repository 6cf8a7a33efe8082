from datetime import datetime
from typing import List, Optional, Union
from pydantic import BaseModel, Field, field_validator

from medquiz.utils.time_utils import utc_now

OPTION_COLUMNS = ["option_a", "option_b", "option_c", "option_d"]

class UserProfile(BaseModel):
    user_id: str
    display_name: Optional[str] = None
    matric_number: Optional[str] = None
    updated_at: Optional[datetime] = None

class SubscriptionRecord(BaseModel):
    id: Optional[Union[int, str]] = None
    user_id: str
    subscription_status: str = "none" # Stored hint only, never trusted
    subscription_start: Optional[datetime] = None
    subscription_end: Optional[datetime] = None
    is_trial: bool = False
    trial_end: Optional[datetime] = None
    amount: Optional[float] = None # Minor unit (kobo)
    payment_reference: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("is_trial", mode="before")
    @classmethod
    def null_is_false(cls, value):
        return bool(value)

class QuizQuestion(BaseModel):
    """
    Canonical question: four option texts and a 0-based correct index.
    Both upload shapes are converted into this before they are stored.
    """
    id: Optional[Union[int, str]] = None
    question: str
    options: List[str]
    correct_index: int = Field(ge=0, le=3)
    explanation: Optional[str] = None
    category_id: str
    subject_id: str
    block_id: Optional[str] = None
    difficulty_level: str = "medium"

    @field_validator("options")
    @classmethod
    def four_options(cls, value):
        if len(value) != 4:
            raise ValueError("exactly 4 options are required")
        return value

    def to_row(self) -> dict:
        row = {
            "question": self.question,
            "correct_index": self.correct_index,
            "explanation": self.explanation,
            "category_id": self.category_id,
            "subject_id": self.subject_id,
            "block_id": self.block_id,
            "difficulty_level": self.difficulty_level,
        }
        row.update(dict(zip(OPTION_COLUMNS, self.options)))
        return row

    @classmethod
    def from_row(cls, row: dict) -> "QuizQuestion":
        return cls(
            id=row.get("id"),
            question=row["question"],
            options=[row[col] for col in OPTION_COLUMNS],
            correct_index=row["correct_index"],
            explanation=row.get("explanation"),
            category_id=row["category_id"],
            subject_id=row["subject_id"],
            block_id=row.get("block_id"),
            difficulty_level=row.get("difficulty_level") or "medium",
        )

class QuizSelection(BaseModel):
    subject_id: str
    block_id: Optional[str] = None
    question_count: int = Field(gt=0)

class QuizResult(BaseModel):
    user_id: str
    category_id: str
    subject_ids: List[str]
    total_questions: int
    correct_answers: int
    score_percentage: float
    time_taken_seconds: int
    completed_at: datetime = Field(default_factory=utc_now)

    def to_row(self) -> dict:
        return self.model_dump(mode="json")

class UserSubscriptionView(BaseModel):
    user_id: str
    user_email: Optional[str] = None
    user_name: str
    subscription_status: str
    subscription_start: Optional[datetime] = None
    subscription_end: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    is_trial: bool = False
    amount: Optional[float] = None
    payment_reference: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
