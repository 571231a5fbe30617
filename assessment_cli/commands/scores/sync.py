import click
from sqlalchemy.orm import Session

from assessment_cli.commands.common import build_engine, print_sync_summary, report_error
from assessment_cli.errors import AssessmentError, ReconciliationError


def sync_scores(db: Session, link_id: str, strict: bool = False) -> None:
    """
    Write approved scores of a link to the gradebook.

    With `strict`, any row that could not be written makes the command fail
    after the rest have been synced.
    """
    try:
        summary = build_engine(db).sync(link_id)
    except AssessmentError as e:
        report_error(db, "Unable to sync scores", e)
        return

    print_sync_summary(summary, link_id)
    if strict and summary.failed:
        raise ReconciliationError(
            f"{len(summary.failed)} approved scores for link {link_id} were not synced",
            summary,
        )
