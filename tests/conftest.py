import pytest
from fastapi.testclient import TestClient
from openpyxl import Workbook
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from excel_assessment.api_routes import get_llm_service
from excel_assessment.config import settings
from excel_assessment.database.db import get_db, init_db
from excel_assessment.llm_service import (
    ConceptualEvaluation,
    ExplanationEvaluation,
    InterviewReply,
    LLMServiceError,
    ReportData,
)
from excel_assessment.main import app


SALES_SOLUTION = {
    "Monthly_Summary": [
        ["Month", "Region", "Total Revenue"],
        ["2024-01", "North", "=SUMIFS(Raw_Data!E:E,Raw_Data!B:B,B2)"],
    ],
    "Top_Products": [
        ["Region", "Rank", "Product"],
        ["North", 1, "=XLOOKUP(A2,Raw_Data!B:B,Raw_Data!C:C)"],
    ],
    "KPI_Dashboard": [
        ["Month", "Total Revenue", "Alert Flag"],
        ["2024-02", 5000, '=IF(B2<4500,"Drop","OK")'],
    ],
}


class FakeLLMService:
    """Deterministic stand-in for the generative model."""

    def __init__(self, conceptual_score=75, explanation_score=65):
        self.conceptual_score = conceptual_score
        self.explanation_score = explanation_score
        self.calls = []
        self.fail_on = set()

    def _record(self, name):
        self.calls.append(name)
        if name in self.fail_on:
            raise LLMServiceError(f"{name} unavailable")

    async def score_conceptual(self, question, user_answer, expected_answer=None):
        self._record("score_conceptual")
        return ConceptualEvaluation(
            score=self.conceptual_score,
            reasoning="You covered the main lookup differences.",
            strengths=["Knows XLOOKUP defaults"],
            improvements=["Mention approximate matching"],
        )

    async def score_explanation(self, context, explanation):
        self._record("score_explanation")
        return ExplanationEvaluation(
            score=self.explanation_score,
            clarity=70,
            accuracy=60,
            completeness=70,
            feedback="Walk through the SUMIFS criteria in more detail.",
        )

    async def free_reply(self, context, user_message, current_question_index, total_questions):
        self._record("free_reply")
        return InterviewReply(
            response="Take your time with the workbook.",
            should_continue=True,
            hints=["Start with the Clean_Data sheet"],
        )

    async def generate_report(self, overall_score, practical_score, conceptual_score,
                              explanation_score, behavioral_score, session_data):
        self._record("generate_report")
        return ReportData(
            strengths=["Strong lookup knowledge"],
            improvements=["Data cleanup speed"],
            recommendations=["Practice Power Query"],
        )


@pytest.fixture(autouse=True)
def upload_dir(tmp_path, monkeypatch):
    path = tmp_path / "uploads"
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(path))
    monkeypatch.setattr(settings, "AUTH_MODE", "demo")
    return path


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        engine.dispose()


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def fake_llm():
    return FakeLLMService()


@pytest.fixture
def client(session_factory, fake_llm):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_llm_service] = lambda: fake_llm
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_workbook(tmp_path):
    """Write a workbook from {sheet_name: rows} and return its path."""
    counter = {"n": 0}

    def _make(sheets):
        workbook = Workbook()
        workbook.remove(workbook.active)
        for title, rows in sheets.items():
            worksheet = workbook.create_sheet(title=title)
            for row in rows:
                worksheet.append(row)
        counter["n"] += 1
        path = tmp_path / f"workbook_{counter['n']}.xlsx"
        workbook.save(path)
        return str(path)

    return _make


@pytest.fixture
def sales_workbook(make_workbook):
    return make_workbook(SALES_SOLUTION)
