from typing import Dict, List, Optional

import click
from sqlalchemy.orm import Session

from assessment_cli.cbt.catalog import SqlCbtExamCatalog
from assessment_cli.cbt.links import CbtLinkRegistry
from assessment_cli.cbt.reconciliation import (
    ImportReconciliationEngine,
    RowError,
    SyncSummary,
)
from assessment_cli.errors import AssessmentError
from assessment_cli.gradebook import SqlGradebook
from assessment_cli.models import Student
from assessment_cli.school import SqlSchoolContext
from assessment_cli.utils.logging_config import get_logger

logger = get_logger(__name__)


def build_registry(db: Session, school_id: str) -> CbtLinkRegistry:
    return CbtLinkRegistry(db, SqlCbtExamCatalog(db), SqlSchoolContext(db, school_id))


def build_engine(db: Session) -> ImportReconciliationEngine:
    return ImportReconciliationEngine(db, SqlCbtExamCatalog(db), SqlGradebook(db))


def report_error(db: Session, action: str, error: Exception) -> None:
    db.rollback()
    if isinstance(error, AssessmentError):
        click.secho(f"{action}: {error}", fg="red")
    else:
        logger.exception(f"{action} failed")
        click.secho(f"{action}: unexpected error: {str(error)}", fg="red")


def student_names(db: Session, student_ids: List[str]) -> Dict[str, str]:
    if not student_ids:
        return {}
    students = db.query(Student).filter(Student.id.in_(set(student_ids))).all()
    return {
        s.id: f"{s.name} ({s.admission_no})" if s.admission_no else s.name
        for s in students
    }


def print_row_errors(errors: List[RowError], fg: str = "yellow") -> None:
    for error in errors:
        click.secho(f"  - {error.row_id}: {error.reason}", fg=fg)


def print_sync_summary(summary: SyncSummary, link_id: Optional[str] = None) -> None:
    label = f" for link {link_id}" if link_id else ""
    click.secho(f"Synced {summary.synced} scores{label} to the gradebook", fg="green")
    if summary.failed:
        click.secho(f"{len(summary.failed)} scores could not be synced:", fg="red")
        print_row_errors(summary.failed, fg="red")
