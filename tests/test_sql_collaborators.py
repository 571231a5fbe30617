from decimal import Decimal

import pytest

from assessment_cli.cbt.catalog import SqlCbtExamCatalog
from assessment_cli.errors import ValidationError
from assessment_cli.gradebook import SqlGradebook
from assessment_cli.models import CbtQuiz, CbtQuizAttempt, StudentAssessmentScore
from assessment_cli.school import SqlSchoolContext
from tests.conftest import SESSION, TERM


@pytest.fixture
def quiz(db, school):
    quiz = CbtQuiz(
        id="quiz-1",
        school_id=school.id,
        title="Basic Science",
        subject_id="BSC",
        class_id="JSS2",
        status="published",
    )
    db.add(quiz)
    db.add_all(
        [
            CbtQuizAttempt(
                id="a1", quiz_id="quiz-1", student_id="s1", score=Decimal("7"),
                max_score=Decimal("10"), status="submitted", submitted_at=200,
            ),
            CbtQuizAttempt(
                id="a2", quiz_id="quiz-1", student_id="s2", score=Decimal("9"),
                max_score=Decimal("10"), status="submitted", submitted_at=300,
            ),
            CbtQuizAttempt(
                id="a3", quiz_id="quiz-1", student_id="s3", status="in_progress",
            ),
        ]
    )
    db.commit()
    return quiz


def test_catalog_exposes_published_exam(db, quiz):
    exam = SqlCbtExamCatalog(db).get_exam(quiz.id)
    assert exam.title == "Basic Science"
    assert exam.subject_id == "BSC"
    assert exam.class_id == "JSS2"


def test_catalog_hides_draft_and_missing_exams(db, quiz):
    quiz.status = "draft"
    db.commit()
    catalog = SqlCbtExamCatalog(db)
    assert catalog.get_exam(quiz.id) is None
    assert catalog.get_exam("nope") is None


def test_catalog_lists_submitted_attempts_only(db, quiz):
    catalog = SqlCbtExamCatalog(db)
    attempts = catalog.list_attempts(quiz.id)
    assert [a.attempt_id for a in attempts] == ["a1", "a2"]
    assert attempts[0].raw_score == Decimal("7")

    assert [a.attempt_id for a in catalog.list_attempts(quiz.id, since=300)] == ["a2"]


def test_gradebook_upsert_is_last_write_wins(db, component):
    gradebook = SqlGradebook(db)
    gradebook.upsert_score("s1", component.id, "JSS1", TERM, SESSION, Decimal("6"))
    gradebook.upsert_score("s1", component.id, "JSS1", TERM, SESSION, Decimal("8"))
    gradebook.upsert_score(
        "s1", component.id, "JSS1", TERM, SESSION, Decimal("5"), subject_id="MATH"
    )
    db.commit()

    scores = {
        s.subject_id: s.score for s in db.query(StudentAssessmentScore).all()
    }
    assert scores == {None: Decimal("8.00"), "MATH": Decimal("5.00")}


def test_gradebook_write_is_not_committed(db, component):
    SqlGradebook(db).upsert_score("s1", component.id, "JSS1", TERM, SESSION, Decimal("6"))
    db.rollback()
    assert db.query(StudentAssessmentScore).count() == 0


def test_school_context(db, school):
    context = SqlSchoolContext(db, school.id)
    assert context.current().term_id == TERM

    context.set_current("2026-2027", "T2")
    assert context.current().session_id == "2026-2027"

    with pytest.raises(ValidationError):
        context.set_current("", "T2")
    with pytest.raises(ValidationError):
        SqlSchoolContext(db, "missing").current()
