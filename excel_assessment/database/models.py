"""Database models for the Excel skills assessment."""
import uuid
from sqlalchemy import Column, Integer, String, Text, DateTime, Numeric, Boolean, ForeignKey, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from excel_assessment.database.db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=_uuid)
    email = Column(String, unique=True, nullable=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    profile_image_url = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    sessions = relationship("InterviewSession", back_populates="user")


class InterviewSession(Base):
    __tablename__ = "interview_sessions"

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String, nullable=False, default="in_progress")  # in_progress, completed, abandoned
    current_question_index = Column(Integer, nullable=False, default=-1)
    total_questions = Column(Integer, nullable=False, default=8)
    started_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    # Scores (0-100), populated on completion
    overall_score = Column(Numeric(5, 2, asdecimal=False), nullable=True)
    practical_score = Column(Numeric(5, 2, asdecimal=False), nullable=True)
    conceptual_score = Column(Numeric(5, 2, asdecimal=False), nullable=True)
    explanation_score = Column(Numeric(5, 2, asdecimal=False), nullable=True)
    behavioral_score = Column(Numeric(5, 2, asdecimal=False), nullable=True)

    # Final report
    strengths = Column(JSON, nullable=True)
    improvements = Column(JSON, nullable=True)
    recommendations = Column(JSON, nullable=True)

    # Relationships
    user = relationship("User", back_populates="sessions")
    messages = relationship("ChatMessage", back_populates="session")
    questions = relationship("InterviewQuestion", back_populates="session")


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String, ForeignKey("interview_sessions.id"), nullable=False, index=True)
    sender = Column(String, nullable=False)  # ai, user
    content = Column(Text, nullable=False)
    message_type = Column(String, nullable=False, default="text")  # text, file_upload, template_download, task
    meta = Column("metadata", JSON, nullable=True)
    timestamp = Column(DateTime, default=datetime.utcnow)

    # Relationships
    session = relationship("InterviewSession", back_populates="messages")


class InterviewQuestion(Base):
    __tablename__ = "interview_questions"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String, ForeignKey("interview_sessions.id"), nullable=False, index=True)
    question_index = Column(Integer, nullable=False)
    category = Column(String, nullable=False)  # conceptual, practical, explanation, behavioral
    question = Column(Text, nullable=False)
    expected_answer = Column(Text, nullable=True)
    user_answer = Column(Text, nullable=True)
    file_uploaded = Column(Boolean, default=False)
    file_path = Column(String, nullable=True)
    score = Column(Numeric(5, 2, asdecimal=False), nullable=True)
    ai_evaluation = Column(JSON, nullable=True)
    is_completed = Column(Boolean, default=False)
    time_spent = Column(Integer, nullable=True)  # seconds

    # Relationships
    session = relationship("InterviewSession", back_populates="questions")
    evaluations = relationship("ExcelEvaluation", back_populates="question")


class ExcelEvaluation(Base):
    __tablename__ = "excel_evaluations"

    id = Column(Integer, primary_key=True, index=True)
    question_id = Column(Integer, ForeignKey("interview_questions.id"), nullable=False, index=True)
    file_path = Column(String, nullable=False)
    formula_accuracy = Column(Numeric(5, 2, asdecimal=False), nullable=True)
    structure_score = Column(Numeric(5, 2, asdecimal=False), nullable=True)
    best_practices_score = Column(Numeric(5, 2, asdecimal=False), nullable=True)
    evaluation_details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    question = relationship("InterviewQuestion", back_populates="evaluations")
