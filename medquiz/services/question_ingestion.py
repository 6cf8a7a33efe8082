"""
Bulk question upload.

Two record shapes are accepted and both are converted to the canonical
QuizQuestion (four options, 0-based correct_index) before anything is stored:

  lettered:  question, option_a..option_d, correct_answer (1-4), category_id,
             subject_id, [explanation, block_id, difficulty_level]
  options:   question, options (4 strings), answer (text of the right option),
             [explanation, difficulty_level]; category/subject/block come from
             the block the uploader selected.
"""
import json
import logging
from typing import List, Optional, Union
from pydantic import BaseModel

from database.models import OPTION_COLUMNS, QuizQuestion
from medquiz.errors import ValidationError
from medquiz.services.catalog import catalog as default_catalog

logger = logging.getLogger(__name__)

LETTERED_REQUIRED = ["question"] + OPTION_COLUMNS + ["correct_answer", "category_id", "subject_id"]
MAX_DISPLAY_ERRORS = 10


class IngestionReport(BaseModel):
    success_count: int
    failed_count: int
    errors: List[str] = []

    @property
    def display_errors(self) -> List[str]:
        return self.errors[:MAX_DISPLAY_ERRORS]

    def as_dict(self) -> dict:
        return {
            "success": self.success_count,
            "failed": self.failed_count,
            "errors": self.display_errors,
        }


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _text(value) -> str:
    return str(value).strip()


def _optional_text(value) -> Optional[str]:
    return None if _is_blank(value) else _text(value)


def normalize_lettered(raw: dict, target_block: str = None, catalog=None) -> QuizQuestion:
    catalog = catalog or default_catalog
    for field in LETTERED_REQUIRED:
        if _is_blank(raw.get(field)):
            raise ValidationError(f"Missing required field: {field}")

    correct = raw["correct_answer"]
    if isinstance(correct, bool) or correct not in (1, 2, 3, 4):
        raise ValidationError("correct_answer must be 1, 2, 3, or 4")

    subject_id = _text(raw["subject_id"])
    category_id = _text(raw["category_id"])
    block_id = _optional_text(raw.get("block_id"))
    if target_block:
        ref = catalog.resolve_block(target_block)
        if not ref:
            raise ValidationError(f"Selected block could not be resolved: {target_block}")
        if subject_id != ref.subject_id:
            raise ValidationError(f"subject_id {subject_id} does not match the selected block {target_block}")
        category_id = ref.category_id
        if ref.block_id:
            block_id = ref.block_id

    return QuizQuestion(
        question=_text(raw["question"]),
        options=[_text(raw[col]) for col in OPTION_COLUMNS],
        correct_index=int(correct) - 1, # stored 0-based
        explanation=_optional_text(raw.get("explanation")),
        category_id=category_id,
        subject_id=subject_id,
        block_id=block_id,
        difficulty_level=_optional_text(raw.get("difficulty_level")) or "medium",
    )


def normalize_options_array(raw: dict, target_block: str = None, catalog=None) -> QuizQuestion:
    catalog = catalog or default_catalog

    question = raw.get("question")
    if not isinstance(question, str) or not question.strip():
        raise ValidationError("Question text is missing or empty")

    options = raw.get("options")
    if not isinstance(options, list) or len(options) != 4:
        raise ValidationError("Options must be an array of exactly 4 items")
    for position, option in enumerate(options, start=1):
        if not isinstance(option, str) or not option.strip():
            raise ValidationError(f"Option {position} is empty")

    answer = raw.get("answer")
    if _is_blank(answer):
        raise ValidationError("Answer is missing")

    wanted = _text(answer).lower()
    correct_index = next((i for i, option in enumerate(options) if option.strip().lower() == wanted), None)
    if correct_index is None:
        raise ValidationError(f'Answer "{_text(answer)}" not found in options')

    # Ids come from the uploader's selected block, not from the record
    ref = catalog.resolve_block(target_block)
    if not ref:
        raise ValidationError(f"Selected block could not be resolved: {target_block or '(none)'}")

    return QuizQuestion(
        question=question.strip(),
        options=[option.strip() for option in options],
        correct_index=correct_index,
        explanation=_optional_text(raw.get("explanation")),
        category_id=ref.category_id,
        subject_id=ref.subject_id,
        block_id=ref.block_id,
        difficulty_level=_optional_text(raw.get("difficulty_level")) or "medium",
    )


def validate_and_normalize(raw, target_block: str = None, catalog=None) -> QuizQuestion:
    """
    Validates one uploaded record in either shape. Raises ValidationError.
    """
    if not isinstance(raw, dict):
        raise ValidationError("Record must be a JSON object")
    if "options" in raw:
        return normalize_options_array(raw, target_block, catalog)
    return normalize_lettered(raw, target_block, catalog)


def parse_upload(content: Union[str, bytes], filename: str = None) -> list:
    """
    Decodes pasted JSON or an uploaded .json file into a list of records.
    """
    if filename is not None and not filename.lower().endswith(".json"):
        raise ValidationError("Please upload a JSON file")
    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise ValidationError("File is not valid UTF-8 text") from e
    if not content or not content.strip():
        raise ValidationError("No JSON input")

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid JSON: {e.msg} (line {e.lineno})") from e

    if not isinstance(data, list):
        raise ValidationError("JSON must contain an array of questions")
    return data


async def ingest_batch(db, records: list, target_block: str = None, catalog=None) -> IngestionReport:
    """
    Validates every record on its own and inserts only the valid ones.
    Errors are reported by 1-based position; the batch never aborts early.
    """
    if not isinstance(records, list):
        raise ValidationError("JSON must contain an array of questions")

    valid: List[QuizQuestion] = []
    errors: List[str] = []
    for position, raw in enumerate(records, start=1):
        try:
            valid.append(validate_and_normalize(raw, target_block, catalog))
        except ValidationError as e:
            errors.append(f"Question {position}: {e.message}")

    if valid:
        await db.insert_questions([q.to_row() for q in valid])
    else:
        logger.warning(f"No valid questions in upload of {len(records)} records")

    logger.info(f"Question upload: {len(valid)} inserted, {len(errors)} rejected")
    return IngestionReport(success_count=len(valid), failed_count=len(errors), errors=errors)
