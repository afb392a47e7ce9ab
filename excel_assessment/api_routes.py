"""API routes for the Excel skills assessment."""
import os
import uuid
from typing import List

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session
from starlette.background import BackgroundTask
import structlog

from excel_assessment.auth import get_current_user_id
from excel_assessment.config import settings
from excel_assessment.database.db import get_db
from excel_assessment.database.models import InterviewSession
from excel_assessment.database.schemas import (
    InterviewSessionOut, MessageRequest, SessionDetails, TurnResult
)
from excel_assessment.database.storage import InterviewStorage
from excel_assessment.excel_processor import ExcelProcessor, UnknownTemplateError, excel_processor
from excel_assessment.interview_engine import InterviewEngine
from excel_assessment.llm_service import LLMService, llm_service

logger = structlog.get_logger()
router = APIRouter()

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
UPLOAD_CHUNK_SIZE = 1024 * 1024


def get_llm_service() -> LLMService:
    return llm_service


def get_excel_processor() -> ExcelProcessor:
    return excel_processor


def get_engine(
    db: Session = Depends(get_db),
    llm: LLMService = Depends(get_llm_service),
    processor: ExcelProcessor = Depends(get_excel_processor),
) -> InterviewEngine:
    return InterviewEngine(db, llm=llm, processor=processor)


def _get_owned_session(db: Session, session_id: str, user_id: str) -> InterviewSession:
    session = InterviewStorage(db).get_session(session_id)
    if not session or session.user_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Interview session not found"
        )
    return session


async def _save_upload(upload: UploadFile) -> str:
    """Stream an upload to disk, rejecting it once it exceeds MAX_UPLOAD_BYTES."""
    os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
    file_path = os.path.join(settings.UPLOAD_DIR, f"{uuid.uuid4().hex}.xlsx")
    size = 0
    with open(file_path, "wb") as f:
        while True:
            chunk = await upload.read(UPLOAD_CHUNK_SIZE)
            if not chunk:
                break
            size += len(chunk)
            if size > settings.MAX_UPLOAD_BYTES:
                break
            f.write(chunk)
    if size > settings.MAX_UPLOAD_BYTES:
        os.remove(file_path)
        raise HTTPException(
            status_code=413,
            detail="File exceeds the 10MB limit"
        )
    return file_path


@router.post("/interviews/start", response_model=InterviewSessionOut)
async def start_interview(
    engine: InterviewEngine = Depends(get_engine),
    user_id: str = Depends(get_current_user_id),
):
    """Start a new interview session."""
    try:
        return engine.start_interview(user_id)
    except Exception as e:
        logger.error("Failed to start interview", user_id=user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to start interview"
        )


@router.get("/interviews/history", response_model=List[InterviewSessionOut])
async def get_interview_history(
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    """All sessions of the current identity, newest first."""
    try:
        return InterviewStorage(db).get_user_sessions(user_id)
    except Exception as e:
        logger.error("Failed to fetch interview history", user_id=user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch interview history"
        )


@router.get("/interviews/{session_id}", response_model=SessionDetails)
async def get_interview(
    session_id: str,
    db: Session = Depends(get_db),
    engine: InterviewEngine = Depends(get_engine),
    user_id: str = Depends(get_current_user_id),
):
    """Session with messages, questions and progress."""
    try:
        _get_owned_session(db, session_id, user_id)
        return engine.get_session_details(session_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error("Failed to fetch interview", session_id=session_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch interview"
        )


@router.post("/interviews/{session_id}/message", response_model=TurnResult)
async def send_message(
    session_id: str,
    request: MessageRequest,
    db: Session = Depends(get_db),
    engine: InterviewEngine = Depends(get_engine),
    user_id: str = Depends(get_current_user_id),
):
    """Submit a text answer for the current question."""
    try:
        _get_owned_session(db, session_id, user_id)
        session, messages = await engine.handle_turn(session_id, request.message)
        return {"session": session, "messages": messages}
    except HTTPException:
        raise
    except Exception as e:
        logger.error("Failed to process message", session_id=session_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process message"
        )


@router.post("/interviews/{session_id}/upload", response_model=TurnResult)
async def upload_excel(
    session_id: str,
    excel: UploadFile = File(...),
    message: str = Form(""),
    db: Session = Depends(get_db),
    engine: InterviewEngine = Depends(get_engine),
    user_id: str = Depends(get_current_user_id),
):
    """Submit a completed workbook for the current practical task."""
    if excel.content_type not in settings.ALLOWED_UPLOAD_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only Excel files are allowed"
        )
    try:
        _get_owned_session(db, session_id, user_id)
        file_path = await _save_upload(excel)
        session, messages = await engine.handle_turn(session_id, message, file_path)
        return {"session": session, "messages": messages}
    except HTTPException:
        raise
    except Exception as e:
        logger.error("Failed to upload file", session_id=session_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to upload file"
        )


@router.get("/interviews/{session_id}/template/{template_type}")
async def download_template(
    session_id: str,
    template_type: str,
    db: Session = Depends(get_db),
    processor: ExcelProcessor = Depends(get_excel_processor),
    user_id: str = Depends(get_current_user_id),
):
    """Generate a task template on demand; the file is deleted after sending."""
    try:
        _get_owned_session(db, session_id, user_id)
        template_path = os.path.join(settings.UPLOAD_DIR, f"template_{template_type}_{uuid.uuid4().hex}.xlsx")
        processor.save_template(template_type, template_path)
        return FileResponse(
            template_path,
            media_type=XLSX_MEDIA_TYPE,
            filename=f"{template_type}_template.xlsx",
            background=BackgroundTask(os.remove, template_path),
        )
    except HTTPException:
        raise
    except UnknownTemplateError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Template not found"
        )
    except Exception as e:
        logger.error("Failed to generate template", session_id=session_id, template_type=template_type, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate template"
        )


# Health check endpoint
@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "Excel Skills Assessment API"}
