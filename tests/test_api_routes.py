import os
from datetime import datetime
from io import BytesIO
from pathlib import Path

import pytest
from openpyxl import load_workbook

from excel_assessment.config import settings
from excel_assessment.database.storage import InterviewStorage

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _start(client, **kwargs):
    response = client.post("/api/interviews/start", **kwargs)
    assert response.status_code == 200
    return response.json()


def _say(client, session_id, message):
    response = client.post(f"/api/interviews/{session_id}/message", json={"message": message})
    assert response.status_code == 200
    return response.json()


def test_start_interview(client):
    session = _start(client)

    assert session["status"] == "in_progress"
    assert session["current_question_index"] == -1
    assert session["total_questions"] == 8
    assert session["user_id"] == "demo-user"


def test_get_interview_details(client):
    session = _start(client)

    response = client.get(f"/api/interviews/{session['id']}")

    assert response.status_code == 200
    body = response.json()
    assert body["session"]["id"] == session["id"]
    assert len(body["messages"]) == 1
    assert body["messages"][0]["sender"] == "ai"
    assert body["questions"] == []
    assert body["progress"] == {"current_question": 0, "total_questions": 8, "percentage": 0}


def test_message_advances_interview(client, fake_llm):
    session = _start(client)

    first = _say(client, session["id"], "Ready")
    assert first["session"]["current_question_index"] == 0
    assert fake_llm.calls == []

    second = _say(client, session["id"], "XLOOKUP defaults to exact match")
    assert second["session"]["current_question_index"] == 1
    assert fake_llm.calls == ["score_conceptual"]
    assert [m["sender"] for m in second["messages"]] == ["ai", "user", "ai", "user", "ai"]

    progress = client.get(f"/api/interviews/{session['id']}").json()["progress"]
    assert progress == {"current_question": 2, "total_questions": 8, "percentage": 25}


def test_upload_evaluates_practical_task(client, sales_workbook, upload_dir):
    session = _start(client)
    for text in ("Ready", "answer one", "answer two"):
        result = _say(client, session["id"], text)
    template_message = result["messages"][-1]
    assert template_message["message_type"] == "template_download"
    assert template_message["metadata"] == {"template_type": "data_cleanup", "time_limit": 8}

    with open(sales_workbook, "rb") as f:
        response = client.post(
            f"/api/interviews/{session['id']}/upload",
            files={"excel": ("solution.xlsx", f, XLSX)},
            data={"message": "Cleaned it"},
        )

    assert response.status_code == 200
    body = response.json()
    assert body["session"]["current_question_index"] == 3
    upload_message = body["messages"][-3]
    assert upload_message["message_type"] == "file_upload"
    stored_path = upload_message["metadata"]["file_path"]
    assert stored_path.endswith(".xlsx")
    assert Path(stored_path).parent == upload_dir
    assert os.path.exists(stored_path)

    details = client.get(f"/api/interviews/{session['id']}").json()
    question = details["questions"][-1]
    assert question["category"] == "practical"
    assert question["score"] == 20
    assert "Missing required sheets" in question["ai_evaluation"]["details"]["issues"]


def test_upload_rejects_non_spreadsheet_type(client, fake_llm):
    session = _start(client)

    response = client.post(
        f"/api/interviews/{session['id']}/upload",
        files={"excel": ("notes.txt", BytesIO(b"hello"), "text/plain")},
    )

    assert response.status_code == 400
    details = client.get(f"/api/interviews/{session['id']}").json()
    assert len(details["messages"]) == 1
    assert fake_llm.calls == []


def test_upload_rejects_oversized_file(client, monkeypatch, upload_dir):
    monkeypatch.setattr(settings, "MAX_UPLOAD_BYTES", 16)
    session = _start(client)

    response = client.post(
        f"/api/interviews/{session['id']}/upload",
        files={"excel": ("big.xlsx", BytesIO(b"x" * 64), XLSX)},
    )

    assert response.status_code == 413
    assert list(upload_dir.iterdir()) == []


@pytest.mark.parametrize(
    "method, path, kwargs",
    [
        ("get", "/api/interviews/missing", {}),
        ("post", "/api/interviews/missing/message", {"json": {"message": "hi"}}),
        ("post", "/api/interviews/missing/upload", {"files": {"excel": ("a.xlsx", b"data", XLSX)}}),
        ("get", "/api/interviews/missing/template/sales_analysis", {}),
    ],
)
def test_missing_session_is_not_found(client, method, path, kwargs):
    response = getattr(client, method)(path, **kwargs)

    assert response.status_code == 404
    assert response.json() == {"detail": "Interview session not found"}


def test_template_download(client, upload_dir):
    session = _start(client)

    response = client.get(f"/api/interviews/{session['id']}/template/sales_analysis")

    assert response.status_code == 200
    assert response.headers["content-type"] == XLSX
    assert "sales_analysis_template.xlsx" in response.headers["content-disposition"]
    workbook = load_workbook(BytesIO(response.content))
    assert workbook.sheetnames == ["Raw_Data", "Instructions", "Expected_Structure"]
    assert [p for p in upload_dir.iterdir() if p.name.startswith("template_")] == []


def test_unknown_template_is_not_found(client):
    session = _start(client)

    response = client.get(f"/api/interviews/{session['id']}/template/pivot_magic")

    assert response.status_code == 404


def test_history_lists_newest_first(client, session_factory):
    first = _start(client)
    second = _start(client)
    db = session_factory()
    try:
        storage = InterviewStorage(db)
        storage.update_session(storage.get_session(first["id"]), started_at=datetime(2024, 1, 1))
        db.commit()
    finally:
        db.close()

    response = client.get("/api/interviews/history")

    assert response.status_code == 200
    assert [s["id"] for s in response.json()] == [second["id"], first["id"]]


def test_failed_scoring_returns_generic_error(client, fake_llm):
    session = _start(client)
    _say(client, session["id"], "Ready")
    fake_llm.fail_on.add("score_conceptual")

    response = client.post(f"/api/interviews/{session['id']}/message", json={"message": "answer"})

    assert response.status_code == 500
    assert response.json() == {"detail": "Failed to process message"}
    details = client.get(f"/api/interviews/{session['id']}").json()
    assert details["session"]["current_question_index"] == 0
    assert len(details["messages"]) == 3


def test_header_identity_requires_header(client, monkeypatch):
    monkeypatch.setattr(settings, "AUTH_MODE", "header")

    response = client.post("/api/interviews/start")

    assert response.status_code == 401


def test_header_identity_scopes_sessions(client, monkeypatch):
    monkeypatch.setattr(settings, "AUTH_MODE", "header")
    session = _start(client, headers={"X-User-Id": "alice"})

    own = client.get(f"/api/interviews/{session['id']}", headers={"X-User-Id": "alice"})
    other = client.get(f"/api/interviews/{session['id']}", headers={"X-User-Id": "bob"})
    history = client.get("/api/interviews/history", headers={"X-User-Id": "bob"})

    assert own.status_code == 200
    assert other.status_code == 404
    assert history.json() == []


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_responses_carry_request_id(client):
    generated = client.get("/api/health")
    echoed = client.get("/api/health", headers={"X-Request-ID": "req-42"})

    assert len(generated.headers["X-Request-ID"]) == 32
    assert echoed.headers["X-Request-ID"] == "req-42"
