from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from assessment_cli.models import CbtQuiz, CbtQuizAttempt


@dataclass(frozen=True)
class Exam:
    id: str
    title: str
    subject_id: Optional[str] = None
    class_id: Optional[str] = None


@dataclass(frozen=True)
class Attempt:
    student_id: str
    attempt_id: str
    raw_score: Optional[Decimal]
    raw_max: Optional[Decimal]
    class_id: Optional[str] = None
    submitted_at: Optional[int] = None


class CbtExamCatalog(ABC):
    """Read access to the CBT subsystem's exams and attempt scores."""

    @abstractmethod
    def get_exam(self, exam_id: str) -> Optional[Exam]:
        """Return the exam, or None when it no longer exists or is not available.

        Implementations may raise ExamUnavailableError when the catalog itself
        cannot be reached.
        """

    @abstractmethod
    def list_attempts(self, exam_id: str, since: Optional[int] = None) -> List[Attempt]:
        """Finished attempts of an exam, optionally only those submitted at or after `since`."""


class SqlCbtExamCatalog(CbtExamCatalog):
    """Catalog backed by the CBT tables living in the same database."""

    AVAILABLE_STATUSES = ("published", "closed")

    def __init__(self, db: Session):
        self.db = db

    def get_exam(self, exam_id: str) -> Optional[Exam]:
        quiz = self.db.get(CbtQuiz, exam_id)
        if quiz is None or quiz.status not in self.AVAILABLE_STATUSES:
            return None
        return Exam(
            id=quiz.id,
            title=quiz.title,
            subject_id=quiz.subject_id,
            class_id=quiz.class_id,
        )

    def list_attempts(self, exam_id: str, since: Optional[int] = None) -> List[Attempt]:
        query = self.db.query(CbtQuizAttempt).filter(
            CbtQuizAttempt.quiz_id == exam_id,
            CbtQuizAttempt.status == "submitted",
        )
        if since is not None:
            # inclusive: attempts sharing the cursor second may not be seen yet
            query = query.filter(CbtQuizAttempt.submitted_at >= since)

        attempts = query.order_by(
            CbtQuizAttempt.submitted_at, CbtQuizAttempt.id
        ).all()
        return [
            Attempt(
                student_id=attempt.student_id,
                attempt_id=attempt.id,
                raw_score=attempt.score,
                raw_max=attempt.max_score,
                class_id=attempt.class_id,
                submitted_at=attempt.submitted_at,
            )
            for attempt in attempts
        ]
