from dataclasses import dataclass
from decimal import Decimal
from typing import Any, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from assessment_cli.cbt.catalog import CbtExamCatalog
from assessment_cli.errors import StaleContextError, ValidationError
from assessment_cli.models import (
    AssessmentComponent,
    CbtAssessmentLink,
    ScoreImportRow,
)
from assessment_cli.school import SchoolContext, SchoolContextProvider
from assessment_cli.scoring.converter import MAPPING_TYPES, to_decimal
from assessment_cli.scoring.structures import clean_id
from assessment_cli.utils.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ScoreMapping:
    mapping_type: str = "direct"
    max_score_override: Optional[Any] = None
    auto_sync: bool = False

    def validated_override(self) -> Optional[Decimal]:
        if self.mapping_type not in MAPPING_TYPES:
            raise ValidationError(
                f"Unknown score mapping type '{self.mapping_type}', expected one of {', '.join(MAPPING_TYPES)}"
            )
        override = to_decimal(self.max_score_override, "max_score_override")
        if self.mapping_type == "scaled":
            if override is None:
                raise ValidationError("Provide a max score override for scaled mapping")
            if override <= 0:
                raise ValidationError(
                    f"max_score_override must be greater than zero, got {override}"
                )
            return override
        if override is not None:
            raise ValidationError(
                f"max_score_override only applies to scaled mapping, not '{self.mapping_type}'"
            )
        return None


class CbtLinkRegistry:
    """Links between assessment components and CBT exams."""

    def __init__(
        self, db: Session, catalog: CbtExamCatalog, context: SchoolContextProvider
    ):
        self.db = db
        self.catalog = catalog
        self.context = context

    def get(self, link_id: str) -> CbtAssessmentLink:
        link = self.db.get(CbtAssessmentLink, link_id)
        if link is None:
            raise ValidationError(f"CBT link {link_id} not found")
        return link

    def _check_current_context(self, session_id: str, term_id: str) -> SchoolContext:
        current = self.context.current()
        if not current.session_id or not current.term_id:
            raise StaleContextError(
                "Set the current session and term in school settings before linking CBT scores"
            )
        if session_id != current.session_id or term_id != current.term_id:
            raise StaleContextError(
                f"Links can only be created for the current session/term "
                f"({current.session_id}/{current.term_id}), got {session_id}/{term_id}"
            )
        return current

    def create(
        self,
        component_id: str,
        exam_id: str,
        session_id: str,
        term_id: str,
        class_id: Optional[str] = None,
        subject_id: Optional[str] = None,
        mapping: ScoreMapping = ScoreMapping(),
    ) -> CbtAssessmentLink:
        """
        Link a component to a CBT exam for the current session and term.

        Creating a link never imports anything; run an import for that.

        Raises:
            ValidationError: unknown component or exam, bad mapping, a class or
                subject that contradicts the exam's own scope, or an active
                link between the same component and exam
            StaleContextError: session/term is not the school's current one
        """
        component = self.db.get(AssessmentComponent, component_id)
        if component is None:
            raise ValidationError(f"Assessment component {component_id} not found")
        if not exam_id:
            raise ValidationError("Select a CBT exam to link")

        override = mapping.validated_override()
        current = self._check_current_context(session_id, term_id)
        if component.school_id != current.school_id:
            raise ValidationError(
                f"Assessment component {component_id} belongs to another school"
            )

        class_id = clean_id(class_id)
        subject_id = clean_id(subject_id)

        exam = self.catalog.get_exam(exam_id)
        if exam is None:
            raise ValidationError(f"CBT exam {exam_id} not found or not available")
        if exam.class_id and class_id and exam.class_id != class_id:
            raise ValidationError(
                f"Exam '{exam.title}' is already scoped to class {exam.class_id}"
            )
        if exam.subject_id and subject_id and exam.subject_id != subject_id:
            raise ValidationError(
                f"Exam '{exam.title}' is already scoped to subject {exam.subject_id}"
            )

        # sync writes under this subject and never asks the catalog again
        subject_id = subject_id or exam.subject_id

        if self._active_link_exists(component_id, exam_id):
            raise ValidationError(
                f"Exam '{exam.title}' is already linked to this component"
            )

        link = CbtAssessmentLink(
            assessment_component_id=component_id,
            cbt_exam_id=exam_id,
            session_id=session_id,
            term_id=term_id,
            class_id=class_id,
            subject_id=subject_id,
            score_mapping_type=mapping.mapping_type,
            max_score_override=override,
            auto_sync=mapping.auto_sync,
            is_active=True,
        )
        self.db.add(link)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ValidationError(
                f"Exam '{exam.title}' is already linked to this component"
            )

        logger.info(
            f"Created CBT link {link.id}: component={component_id} exam={exam_id} "
            f"mapping={link.score_mapping_type}"
        )
        return link

    def _active_link_exists(self, component_id: str, exam_id: str) -> bool:
        return (
            self.db.query(CbtAssessmentLink.id)
            .filter(
                CbtAssessmentLink.assessment_component_id == component_id,
                CbtAssessmentLink.cbt_exam_id == exam_id,
                CbtAssessmentLink.is_active.is_(True),
            )
            .first()
            is not None
        )

    def deactivate(self, link_id: str) -> CbtAssessmentLink:
        link = self.get(link_id)
        if link.is_active:
            link.is_active = False
            self.db.commit()
            logger.info(f"Deactivated CBT link {link_id}")
        return link

    def delete(self, link_id: str) -> None:
        """Remove a link and its import rows. Scores already synced stay in the gradebook."""
        link = self.get(link_id)
        self.db.delete(link)
        self.db.commit()
        logger.info(f"Deleted CBT link {link_id}")

    def list(self, component_id: str) -> List[CbtAssessmentLink]:
        return (
            self.db.query(CbtAssessmentLink)
            .filter(CbtAssessmentLink.assessment_component_id == component_id)
            .order_by(CbtAssessmentLink.is_active.desc(), CbtAssessmentLink.created_at)
            .all()
        )

    def list_with_pending_counts(
        self, component_id: str
    ) -> List[Tuple[CbtAssessmentLink, int]]:
        links = self.list(component_id)
        counts = dict(
            self.db.query(ScoreImportRow.link_id, func.count(ScoreImportRow.id))
            .filter(
                ScoreImportRow.link_id.in_([link.id for link in links]),
                ScoreImportRow.status == "pending",
                ScoreImportRow.rejected_at.is_(None),
            )
            .group_by(ScoreImportRow.link_id)
            .all()
        )
        return [(link, counts.get(link.id, 0)) for link in links]
