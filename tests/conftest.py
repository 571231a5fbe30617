from decimal import Decimal
from typing import Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from assessment_cli.cbt.catalog import Attempt, CbtExamCatalog, Exam
from assessment_cli.cbt.links import CbtLinkRegistry
from assessment_cli.cbt.reconciliation import ImportReconciliationEngine
from assessment_cli.db.config import get_session
from assessment_cli.errors import ExamUnavailableError
from assessment_cli.gradebook import Gradebook
from assessment_cli.models import AssessmentComponent, Base, School
from assessment_cli.school import SqlSchoolContext

SESSION = "2025-2026"
TERM = "T1"


class FakeCatalog(CbtExamCatalog):
    def __init__(self):
        self.exams: Dict[str, Exam] = {}
        self.attempts: Dict[str, List[Attempt]] = {}
        self.unreachable = False
        self.since_calls: List[Optional[int]] = []

    def add_exam(self, exam_id, title="Quiz", subject_id=None, class_id=None):
        self.exams[exam_id] = Exam(exam_id, title, subject_id, class_id)
        self.attempts.setdefault(exam_id, [])
        return self.exams[exam_id]

    def add_attempt(
        self,
        exam_id,
        student_id,
        raw_score,
        raw_max=10,
        class_id="JSS1",
        attempt_id=None,
        submitted_at=None,
    ):
        attempts = self.attempts.setdefault(exam_id, [])
        attempt = Attempt(
            student_id=student_id,
            attempt_id=attempt_id or f"{student_id}-a{len(attempts) + 1}",
            raw_score=None if raw_score is None else Decimal(str(raw_score)),
            raw_max=None if raw_max is None else Decimal(str(raw_max)),
            class_id=class_id,
            submitted_at=submitted_at or 1000 + len(attempts),
        )
        attempts.append(attempt)
        return attempt

    def get_exam(self, exam_id):
        if self.unreachable:
            raise ExamUnavailableError("CBT service is down")
        return self.exams.get(exam_id)

    def list_attempts(self, exam_id, since=None):
        self.since_calls.append(since)
        return [
            a
            for a in self.attempts.get(exam_id, [])
            if since is None or (a.submitted_at or 0) >= since
        ]


class RecordingGradebook(Gradebook):
    """Keeps every write; raises for students listed in `failing`."""

    def __init__(self):
        self.writes = []
        self.scores = {}
        self.failing = set()

    def upsert_score(
        self,
        student_id,
        component_id,
        class_id,
        term_id,
        session_id,
        score,
        subject_id=None,
    ):
        if student_id in self.failing:
            raise RuntimeError(f"gradebook rejected {student_id}")
        key = (student_id, component_id, class_id, term_id, session_id, subject_id)
        self.writes.append((key, score))
        self.scores[key] = score


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = get_session(engine)
    yield session
    session.close()


@pytest.fixture
def school(db):
    school = School(name="Test School", current_session_id=SESSION, current_term_id=TERM)
    db.add(school)
    db.commit()
    return school


@pytest.fixture
def component(db, school):
    component = AssessmentComponent(
        school_id=school.id, name="CA1", max_score=Decimal("10")
    )
    db.add(component)
    db.commit()
    return component


@pytest.fixture
def catalog():
    catalog = FakeCatalog()
    catalog.add_exam("exam-1", title="Maths CBT 1")
    return catalog


@pytest.fixture
def gradebook():
    return RecordingGradebook()


@pytest.fixture
def registry(db, school, catalog):
    return CbtLinkRegistry(db, catalog, SqlSchoolContext(db, school.id))


@pytest.fixture
def reconciler(db, catalog, gradebook):
    return ImportReconciliationEngine(db, catalog, gradebook)
