"""Pydantic schemas for API requests and responses."""
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional, Dict, Any
from datetime import datetime


class MessageRequest(BaseModel):
    message: str


class InterviewSessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    status: str
    current_question_index: int
    total_questions: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    overall_score: Optional[float] = None
    practical_score: Optional[float] = None
    conceptual_score: Optional[float] = None
    explanation_score: Optional[float] = None
    behavioral_score: Optional[float] = None
    strengths: Optional[List[str]] = None
    improvements: Optional[List[str]] = None
    recommendations: Optional[List[str]] = None


class ChatMessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    session_id: str
    sender: str
    content: str
    message_type: str
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="meta")
    timestamp: Optional[datetime] = None


class InterviewQuestionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    question_index: int
    category: str
    question: str
    expected_answer: Optional[str] = None
    user_answer: Optional[str] = None
    file_uploaded: Optional[bool] = None
    file_path: Optional[str] = None
    score: Optional[float] = None
    ai_evaluation: Optional[Dict[str, Any]] = None
    is_completed: Optional[bool] = None
    time_spent: Optional[int] = None


class Progress(BaseModel):
    current_question: int
    total_questions: int
    percentage: int


class SessionDetails(BaseModel):
    session: InterviewSessionOut
    messages: List[ChatMessageOut]
    questions: List[InterviewQuestionOut]
    progress: Progress


class TurnResult(BaseModel):
    session: InterviewSessionOut
    messages: List[ChatMessageOut]
