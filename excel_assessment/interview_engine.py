"""Core interview engine managing the interview flow and state."""
import math
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple
from sqlalchemy.orm import Session
import structlog

from excel_assessment.database.models import InterviewSession, ChatMessage, InterviewQuestion
from excel_assessment.database.storage import InterviewStorage
from excel_assessment.excel_processor import ExcelProcessor, excel_processor
from excel_assessment.llm_service import LLMService, llm_service
from excel_assessment.question_script import QuestionTemplate, load_question_script

logger = structlog.get_logger()


class SessionNotFoundError(Exception):
    """Raised when an interview session does not exist."""


def round_score(value: float) -> int:
    """Round half up, so 77.5 becomes 78."""
    return int(math.floor(value + 0.5))


class InterviewEngine:
    CATEGORY_WEIGHTS = {
        "practical": 0.5,
        "conceptual": 0.25,
        "explanation": 0.15,
        "behavioral": 0.1,
    }

    PRACTICAL_WEIGHTS = {
        "formula_accuracy": 0.5,
        "structure_score": 0.3,
        "best_practices_score": 0.2,
    }

    BEHAVIORAL_SCORE = 80

    def __init__(
        self,
        db: Session,
        llm: Optional[LLMService] = None,
        processor: Optional[ExcelProcessor] = None,
        script: Optional[List[QuestionTemplate]] = None,
    ):
        self.db = db
        self.storage = InterviewStorage(db)
        self.llm = llm or llm_service
        self.processor = processor or excel_processor
        self.script = script or load_question_script()

    def start_interview(self, user_id: str) -> InterviewSession:
        """Create a session at index -1 and post the welcome message."""
        try:
            if self.storage.get_user(user_id) is None:
                self.storage.upsert_user(user_id)
            session = self.storage.create_session(user_id, len(self.script))
            self.storage.add_chat_message(session.id, "ai", self._get_welcome_message())
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("Interview started", session_id=session.id, user_id=user_id)
        return session

    async def handle_turn(
        self,
        session_id: str,
        user_message: str,
        file_path: Optional[str] = None,
    ) -> Tuple[InterviewSession, List[ChatMessage]]:
        """Process one candidate turn as a single unit of work."""
        try:
            session = await self._process_turn(session_id, user_message, file_path)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.error("Turn failed, changes rolled back", session_id=session_id)
            raise
        return session, self.storage.get_session_messages(session_id)

    async def _process_turn(
        self, session_id: str, user_message: str, file_path: Optional[str]
    ) -> InterviewSession:
        session = self.storage.get_session(session_id)
        if not session:
            raise SessionNotFoundError(session_id)

        self.storage.add_chat_message(
            session_id,
            "user",
            user_message,
            message_type="file_upload" if file_path else "text",
            metadata={"file_path": file_path} if file_path else None,
        )

        index = int(session.current_question_index)  # type: ignore
        if index == -1:
            first_question = self.script[0]
            self.storage.update_session(session, current_question_index=0)
            self.storage.add_chat_message(
                session_id, "ai", f"Great! Let's begin with our first question:\n\n{first_question.question}"
            )
            logger.info("First question asked", session_id=session_id)
            return session

        if index >= len(self.script) or session.status == "completed":
            self.storage.add_chat_message(
                session_id, "ai", "This interview is already complete. You can review your results at any time."
            )
            return session

        current = self.script[index]

        if current.category == "practical":
            if not file_path:
                await self._remind_upload(session, current, user_message)
                return session
            feedback = self._evaluate_practical_task(session, current, file_path, user_message)
            ai_response = f"Great! I've received your Excel file. {feedback}"
        elif current.category == "conceptual":
            ai_response = await self._evaluate_conceptual(session, current, user_message)
        elif current.category == "explanation":
            ai_response = await self._evaluate_explanation(session, current, user_message)
        else:
            ai_response = self._record_behavioral(session, current, user_message)

        next_index = index + 1
        self.storage.update_session(session, current_question_index=next_index)

        if next_index >= len(self.script):
            ai_response += " That completes our interview! Let me calculate your final results."
            self.storage.add_chat_message(session_id, "ai", ai_response)
            await self.complete_interview(session)
            return session

        next_question = self.script[next_index]
        ai_response += f"\n\nLet's move to our next question:\n\n{next_question.question}"
        if next_question.is_practical_task:
            ai_response += (
                "\n\nI'll provide you with a template file to work with. "
                "Please download it, complete the task, and upload your solution."
            )
        self.storage.add_chat_message(session_id, "ai", ai_response)

        if next_question.is_practical_task:
            self.storage.add_chat_message(
                session_id,
                "ai",
                "Template file ready for download",
                message_type="template_download",
                metadata={"template_type": next_question.task_type, "time_limit": next_question.time_limit},
            )
        return session

    async def _remind_upload(self, session: InterviewSession, question: QuestionTemplate, user_message: str) -> None:
        reply = await self.llm.free_reply(
            context=(
                f"The candidate is working on a practical task and must upload a completed workbook. "
                f"Task: {question.question}"
            ),
            user_message=user_message,
            current_question_index=int(session.current_question_index),  # type: ignore
            total_questions=len(self.script),
        )
        content = reply.response
        if reply.hints:
            content += "\n\nHints:\n" + "\n".join(f"• {hint}" for hint in reply.hints)
        content += "\n\nWhen you're ready, upload your completed Excel file to continue."
        self.storage.add_chat_message(session.id, "ai", content)

    def _evaluate_practical_task(
        self,
        session: InterviewSession,
        question: QuestionTemplate,
        file_path: str,
        user_explanation: str,
    ) -> str:
        evaluation = self.processor.evaluate_excel_file(file_path, question.expected_sheets, question.task_type)
        overall_score = self.calculate_practical_score(
            evaluation.formula_accuracy, evaluation.structure_score, evaluation.best_practices_score
        )
        details = evaluation.details.model_dump()

        row = self.storage.add_question(
            session.id,
            question_index=session.current_question_index,
            category=question.category,
            question=question.question,
            user_answer=user_explanation,
            file_uploaded=True,
            file_path=file_path,
            score=overall_score,
            ai_evaluation={
                "formula_accuracy": evaluation.formula_accuracy,
                "structure_score": evaluation.structure_score,
                "best_practices_score": evaluation.best_practices_score,
                "details": details,
            },
            is_completed=True,
        )
        self.storage.add_excel_evaluation(
            row.id,
            file_path=file_path,
            formula_accuracy=evaluation.formula_accuracy,
            structure_score=evaluation.structure_score,
            best_practices_score=evaluation.best_practices_score,
            evaluation_details=details,
        )
        logger.info("Practical task evaluated", session_id=session.id, task_type=question.task_type, score=overall_score)

        if overall_score >= 80:
            feedback = "Excellent work on this practical task!"
        elif overall_score >= 60:
            feedback = "Good job on this task."
        else:
            feedback = "You completed the task, but there are areas for improvement."

        if evaluation.details.issues:
            feedback += f" Key areas to note: {', '.join(evaluation.details.issues)}."
        return feedback

    async def _evaluate_conceptual(self, session: InterviewSession, question: QuestionTemplate, answer: str) -> str:
        evaluation = await self.llm.score_conceptual(question.question, answer, question.expected_answer)
        self.storage.add_question(
            session.id,
            question_index=session.current_question_index,
            category=question.category,
            question=question.question,
            expected_answer=question.expected_answer,
            user_answer=answer,
            score=evaluation.score,
            ai_evaluation=evaluation.model_dump(),
            is_completed=True,
        )
        logger.info("Conceptual answer scored", session_id=session.id, score=evaluation.score)

        if evaluation.score >= 70:
            return f"Excellent answer! {evaluation.reasoning}"
        if evaluation.score >= 50:
            return f"Good understanding shown. {evaluation.reasoning}"
        return f"I can see you have some knowledge in this area. {evaluation.reasoning}"

    async def _evaluate_explanation(self, session: InterviewSession, question: QuestionTemplate, answer: str) -> str:
        evaluation = await self.llm.score_explanation(question.context or question.question, answer)
        self.storage.add_question(
            session.id,
            question_index=session.current_question_index,
            category=question.category,
            question=question.question,
            user_answer=answer,
            score=evaluation.score,
            ai_evaluation=evaluation.model_dump(),
            is_completed=True,
        )
        logger.info("Explanation scored", session_id=session.id, score=evaluation.score)
        return f"Thank you for the explanation. {evaluation.feedback}"

    def _record_behavioral(self, session: InterviewSession, question: QuestionTemplate, answer: str) -> str:
        self.storage.add_question(
            session.id,
            question_index=session.current_question_index,
            category=question.category,
            question=question.question,
            user_answer=answer,
            score=self.BEHAVIORAL_SCORE,
            is_completed=True,
        )
        return "Thank you for sharing that experience. Problem-solving skills are crucial when working with Excel."

    async def complete_interview(self, session: InterviewSession) -> int:
        """Compute category and overall scores, request the report and close the session."""
        questions = self.storage.get_session_questions(session.id)
        category_scores = self.calculate_category_scores(questions)
        overall_score = self.calculate_overall_score(category_scores)

        report = await self.llm.generate_report(
            overall_score,
            category_scores["practical"],
            category_scores["conceptual"],
            category_scores["explanation"],
            category_scores["behavioral"],
            {
                "questions": [
                    {
                        "question_index": q.question_index,
                        "category": q.category,
                        "question": q.question,
                        "user_answer": q.user_answer,
                        "score": q.score,
                    }
                    for q in questions
                ]
            },
        )

        self.storage.update_session(
            session,
            status="completed",
            completed_at=datetime.utcnow(),
            overall_score=overall_score,
            practical_score=category_scores["practical"],
            conceptual_score=category_scores["conceptual"],
            explanation_score=category_scores["explanation"],
            behavioral_score=category_scores["behavioral"],
            strengths=report.strengths,
            improvements=report.improvements,
            recommendations=report.recommendations,
        )
        self.storage.add_chat_message(
            session.id,
            "ai",
            f"Interview completed! Your overall score is {overall_score}%. "
            "Click here to view your detailed results and recommendations.",
            metadata={"interview_complete": True, "final_score": overall_score},
        )
        logger.info("Interview completed", session_id=session.id, overall_score=overall_score, **category_scores)
        return overall_score

    @classmethod
    def calculate_practical_score(cls, formula_accuracy: float, structure_score: float, best_practices_score: float) -> int:
        return round_score(
            formula_accuracy * cls.PRACTICAL_WEIGHTS["formula_accuracy"]
            + structure_score * cls.PRACTICAL_WEIGHTS["structure_score"]
            + best_practices_score * cls.PRACTICAL_WEIGHTS["best_practices_score"]
        )

    @classmethod
    def calculate_category_scores(cls, questions: Iterable[InterviewQuestion]) -> Dict[str, int]:
        """Average score per category; a missing score counts as 0 and an empty category is 0."""
        scores_by_category: Dict[str, List[float]] = {category: [] for category in cls.CATEGORY_WEIGHTS}
        for question in questions:
            scores_by_category.setdefault(question.category, []).append(float(question.score or 0))
        return {
            category: round_score(sum(scores) / len(scores)) if scores else 0
            for category, scores in scores_by_category.items()
            if category in cls.CATEGORY_WEIGHTS
        }

    @classmethod
    def calculate_overall_score(cls, category_scores: Dict[str, float]) -> int:
        return round_score(
            sum(category_scores.get(category, 0) * weight for category, weight in cls.CATEGORY_WEIGHTS.items())
        )

    def get_session_details(self, session_id: str) -> Dict:
        """Session with ordered messages, questions and progress."""
        session = self.storage.get_session(session_id)
        if not session:
            raise SessionNotFoundError(session_id)

        total = int(session.total_questions)  # type: ignore
        current = min(int(session.current_question_index) + 1, total)  # type: ignore
        return {
            "session": session,
            "messages": self.storage.get_session_messages(session_id),
            "questions": self.storage.get_session_questions(session_id),
            "progress": {
                "current_question": current,
                "total_questions": total,
                "percentage": round_score(current / total * 100) if total else 0,
            },
        }

    def _get_welcome_message(self) -> str:
        return (
            "Welcome to your Excel skills assessment! I'm your AI interviewer, and I'll be guiding you "
            f"through {len(self.script)} questions covering conceptual knowledge, practical tasks, and explanations.\n\n"
            "This interview will take approximately 45 minutes and will cover:\n"
            "• Conceptual Excel knowledge (25%)\n"
            "• Practical Excel tasks (50%)\n"
            "• Explanations and best practices (15%)\n"
            "• Behavioral and problem-solving (10%)\n\n"
            "Let's begin with our first question. Are you ready to start?"
        )
