from typing import List, Optional, Sequence

import click
from sqlalchemy.orm import Session

from assessment_cli.cbt.reconciliation import ReviewSummary
from assessment_cli.commands.common import (
    build_engine,
    print_row_errors,
    print_sync_summary,
    report_error,
    student_names,
)
from assessment_cli.errors import AssessmentError
from assessment_cli.models import ScoreImportRow


def _format_score(value, maximum) -> str:
    if value is None:
        return "-"
    return f"{value}/{maximum}" if maximum is not None else str(value)


def _print_rows(db: Session, rows: List[ScoreImportRow]) -> None:
    names = student_names(db, [row.student_id for row in rows])
    for row in rows:
        line = (
            f"{row.id}  {names.get(row.student_id, row.student_id):<32} "
            f"raw={_format_score(row.cbt_raw_score, row.cbt_max_score):<14} "
            f"score={_format_score(row.converted_score, row.target_max_score):<14} "
            f"{row.status}"
        )
        if row.needs_attention:
            click.secho(f"{line}  NEEDS ATTENTION: {row.note}", fg="red")
        elif row.status == "rejected":
            click.secho(
                f"{line}  {row.rejection_reason or 'No reason given'}",
                fg="bright_black",
            )
        elif row.flagged:
            click.secho(f"{line}  {row.note}", fg="yellow")
        else:
            click.echo(line)


def list_pending(db: Session, link_id: str) -> None:
    try:
        rows = build_engine(db).pending_rows(link_id)
    except AssessmentError as e:
        report_error(db, "Unable to list pending scores", e)
        return

    if not rows:
        click.secho("No scores pending review.", fg="green")
        return

    attention = sum(1 for row in rows if row.needs_attention)
    click.echo(f"{len(rows)} scores pending review")
    if attention:
        click.secho(f"{attention} need attention before they can be approved", fg="red")
    _print_rows(db, rows)


def list_history(db: Session, link_id: str, status: Optional[str] = None) -> None:
    try:
        rows = build_engine(db).history(link_id, status=status)
    except AssessmentError as e:
        report_error(db, "Unable to list import history", e)
        return

    if not rows:
        click.secho("No imported scores found.", fg="yellow")
        return

    counts = {}
    for row in rows:
        counts[row.status] = counts.get(row.status, 0) + 1
    click.echo(", ".join(f"{status}: {count}" for status, count in sorted(counts.items())))
    _print_rows(db, rows)


def _report_review(summary: ReviewSummary, verb: str) -> None:
    click.secho(f"{verb} {len(summary.succeeded)} scores", fg="green")
    if summary.errors:
        click.secho(f"{len(summary.errors)} scores were not {verb.lower()}:", fg="yellow")
        print_row_errors(summary.errors)
    for link_id, sync_summary in summary.synced.items():
        print_sync_summary(sync_summary, link_id)


def approve_scores(
    db: Session,
    row_ids: Sequence[str],
    link_id: Optional[str] = None,
    approve_all: bool = False,
) -> None:
    engine = build_engine(db)
    try:
        if approve_all:
            if not link_id:
                click.secho("Error: --all needs a link id", fg="red")
                return
            summary = engine.approve_all(link_id)
        else:
            if not row_ids:
                click.secho("Error: No score ids given", fg="red")
                return
            summary = engine.approve(row_ids, link_id=link_id)
    except AssessmentError as e:
        report_error(db, "Unable to approve scores", e)
        return

    _report_review(summary, "Approved")


def reject_scores(
    db: Session,
    row_ids: Sequence[str],
    reason: Optional[str] = None,
    link_id: Optional[str] = None,
) -> None:
    if not row_ids:
        click.secho("Error: No score ids given", fg="red")
        return
    try:
        summary = build_engine(db).reject(row_ids, reason=reason, link_id=link_id)
    except AssessmentError as e:
        report_error(db, "Unable to reject scores", e)
        return

    _report_review(summary, "Rejected")
