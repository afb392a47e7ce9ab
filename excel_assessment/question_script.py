"""The fixed interview script, loaded from a declarative JSON file."""
import json
from typing import List, Literal, Optional

from pydantic import BaseModel, TypeAdapter
import structlog

from excel_assessment.config import settings

logger = structlog.get_logger()

Category = Literal["conceptual", "practical", "explanation", "behavioral"]


class QuestionTemplate(BaseModel):
    """One step of the interview script."""

    category: Category
    question: str
    expected_answer: Optional[str] = None
    task_type: Optional[str] = None
    time_limit: Optional[int] = None  # minutes
    expected_sheets: List[str] = []
    context: Optional[str] = None

    @property
    def is_practical_task(self) -> bool:
        return self.category == "practical" and self.task_type is not None


_script_adapter = TypeAdapter(List[QuestionTemplate])


def load_question_script(path: Optional[str] = None) -> List[QuestionTemplate]:
    """Load and validate the ordered question script.

    Raises ValueError if the file is empty or describes a practical
    question without a task type.
    """
    path = path or settings.QUESTION_SCRIPT_PATH
    with open(path, "r", encoding="utf-8") as f:
        script = _script_adapter.validate_python(json.load(f))

    if not script:
        raise ValueError(f"Question script at {path} is empty")
    for index, item in enumerate(script):
        if item.category == "practical" and not item.task_type:
            raise ValueError(f"Practical question {index} has no task_type")

    logger.info("Question script loaded", path=path, questions=len(script))
    return script
