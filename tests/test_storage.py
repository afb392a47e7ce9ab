from datetime import datetime

from excel_assessment.database.storage import InterviewStorage


def test_upsert_user_creates_then_updates(db_session):
    storage = InterviewStorage(db_session)

    created = storage.upsert_user("u1", email="u1@example.com")
    updated = storage.upsert_user("u1", first_name="Uma")
    db_session.commit()

    assert created is updated
    user = storage.get_user("u1")
    assert user.email == "u1@example.com"
    assert user.first_name == "Uma"


def test_messages_keep_insertion_order(db_session):
    storage = InterviewStorage(db_session)
    storage.upsert_user("u1")
    session = storage.create_session("u1", total_questions=8)
    for n in range(5):
        storage.add_chat_message(session.id, "ai" if n % 2 else "user", f"message {n}")
    db_session.commit()

    contents = [m.content for m in storage.get_session_messages(session.id)]

    assert contents == [f"message {n}" for n in range(5)]


def test_questions_ordered_by_index_and_evaluations_linked(db_session):
    storage = InterviewStorage(db_session)
    storage.upsert_user("u1")
    session = storage.create_session("u1", total_questions=8)
    later = storage.add_question(
        session.id, question_index=3, category="practical", question="Build a dashboard", score=88, is_completed=True
    )
    storage.add_question(session.id, question_index=0, category="conceptual", question="VLOOKUP?")
    storage.add_excel_evaluation(later.id, file_path="/tmp/a.xlsx", formula_accuracy=90)
    db_session.commit()

    questions = storage.get_session_questions(session.id)

    assert [q.question_index for q in questions] == [0, 3]
    assert questions[1].score == 88
    evaluations = storage.get_question_evaluations(later.id)
    assert len(evaluations) == 1
    assert evaluations[0].formula_accuracy == 90


def test_user_sessions_scoped_to_owner(db_session):
    storage = InterviewStorage(db_session)
    storage.upsert_user("u1")
    storage.upsert_user("u2")
    mine = storage.create_session("u1", total_questions=8)
    storage.create_session("u2", total_questions=8)
    db_session.commit()

    assert [s.id for s in storage.get_user_sessions("u1")] == [mine.id]
    assert storage.get_session("missing") is None


def test_user_sessions_newest_first_with_stable_ties(db_session):
    storage = InterviewStorage(db_session)
    storage.upsert_user("u1")
    older = storage.create_session("u1", total_questions=8)
    tied_a = storage.create_session("u1", total_questions=8)
    tied_b = storage.create_session("u1", total_questions=8)
    storage.update_session(older, started_at=datetime(2024, 1, 1, 9, 0))
    storage.update_session(tied_a, started_at=datetime(2024, 1, 2, 9, 0))
    storage.update_session(tied_b, started_at=datetime(2024, 1, 2, 9, 0))
    db_session.commit()

    ids = [s.id for s in storage.get_user_sessions("u1")]

    assert ids == sorted([tied_a.id, tied_b.id], reverse=True) + [older.id]
