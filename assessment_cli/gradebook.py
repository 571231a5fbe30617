from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from assessment_cli.models import StudentAssessmentScore, now_ts


class Gradebook(ABC):
    """The gradebook of record that approved CBT scores are written into."""

    @abstractmethod
    def upsert_score(
        self,
        student_id: str,
        component_id: str,
        class_id: str,
        term_id: str,
        session_id: str,
        score: Decimal,
        subject_id: Optional[str] = None,
    ) -> None:
        """Insert or replace the score stored under the key; last write wins."""


class SqlGradebook(Gradebook):
    """
    Gradebook stored in the same database as the import rows.

    Writes go through the caller's session and are not committed here, so a
    row's status change and its gradebook write commit or roll back together.
    """

    def __init__(self, db: Session):
        self.db = db

    def upsert_score(
        self,
        student_id: str,
        component_id: str,
        class_id: str,
        term_id: str,
        session_id: str,
        score: Decimal,
        subject_id: Optional[str] = None,
    ) -> None:
        query = self.db.query(StudentAssessmentScore).filter(
            StudentAssessmentScore.student_id == student_id,
            StudentAssessmentScore.assessment_component_id == component_id,
            StudentAssessmentScore.class_id == class_id,
            StudentAssessmentScore.term_id == term_id,
            StudentAssessmentScore.session_id == session_id,
        )
        if subject_id is None:
            query = query.filter(StudentAssessmentScore.subject_id.is_(None))
        else:
            query = query.filter(StudentAssessmentScore.subject_id == subject_id)

        existing = query.first()
        if existing:
            existing.score = score
            existing.updated_at = now_ts()
        else:
            self.db.add(
                StudentAssessmentScore(
                    student_id=student_id,
                    assessment_component_id=component_id,
                    class_id=class_id,
                    term_id=term_id,
                    session_id=session_id,
                    subject_id=subject_id,
                    score=score,
                )
            )
        self.db.flush()
