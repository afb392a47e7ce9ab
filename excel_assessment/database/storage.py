"""Persistence gateway: typed CRUD over the assessment tables.

Every write is flushed, never committed. The caller owns the transaction.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from excel_assessment.database.models import (
    User, InterviewSession, ChatMessage, InterviewQuestion, ExcelEvaluation
)


class InterviewStorage:
    def __init__(self, db: Session):
        self.db = db

    # User operations
    def get_user(self, user_id: str) -> Optional[User]:
        return self.db.get(User, user_id)

    def upsert_user(self, user_id: str, **fields) -> User:
        user = self.get_user(user_id)
        if user is None:
            user = User(id=user_id, **fields)
            self.db.add(user)
        else:
            for key, value in fields.items():
                setattr(user, key, value)
            user.updated_at = datetime.utcnow()  # type: ignore
        self.db.flush()
        return user

    # Interview session operations
    def create_session(self, user_id: str, total_questions: int) -> InterviewSession:
        session = InterviewSession(
            user_id=user_id,
            status="in_progress",
            current_question_index=-1,
            total_questions=total_questions,
        )
        self.db.add(session)
        self.db.flush()
        return session

    def get_session(self, session_id: str) -> Optional[InterviewSession]:
        return self.db.get(InterviewSession, session_id)

    def update_session(self, session: InterviewSession, **updates) -> InterviewSession:
        for key, value in updates.items():
            setattr(session, key, value)
        self.db.flush()
        return session

    def get_user_sessions(self, user_id: str) -> List[InterviewSession]:
        return (
            self.db.query(InterviewSession)
            .filter(InterviewSession.user_id == user_id)
            .order_by(InterviewSession.started_at.desc(), InterviewSession.id.desc())
            .all()
        )

    # Chat message operations
    def add_chat_message(
        self,
        session_id: str,
        sender: str,
        content: str,
        message_type: str = "text",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ChatMessage:
        message = ChatMessage(
            session_id=session_id,
            sender=sender,
            content=content,
            message_type=message_type,
            meta=metadata,
        )
        self.db.add(message)
        self.db.flush()
        return message

    def get_session_messages(self, session_id: str) -> List[ChatMessage]:
        return (
            self.db.query(ChatMessage)
            .filter(ChatMessage.session_id == session_id)
            .order_by(ChatMessage.timestamp, ChatMessage.id)
            .all()
        )

    # Interview question operations
    def add_question(self, session_id: str, **fields) -> InterviewQuestion:
        question = InterviewQuestion(session_id=session_id, **fields)
        self.db.add(question)
        self.db.flush()
        return question

    def get_session_questions(self, session_id: str) -> List[InterviewQuestion]:
        return (
            self.db.query(InterviewQuestion)
            .filter(InterviewQuestion.session_id == session_id)
            .order_by(InterviewQuestion.question_index)
            .all()
        )

    # Excel evaluation operations
    def add_excel_evaluation(self, question_id: int, **fields) -> ExcelEvaluation:
        evaluation = ExcelEvaluation(question_id=question_id, **fields)
        self.db.add(evaluation)
        self.db.flush()
        return evaluation

    def get_question_evaluations(self, question_id: int) -> List[ExcelEvaluation]:
        return (
            self.db.query(ExcelEvaluation)
            .filter(ExcelEvaluation.question_id == question_id)
            .all()
        )
