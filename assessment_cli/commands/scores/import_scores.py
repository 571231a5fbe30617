import click
from sqlalchemy.orm import Session

from assessment_cli.commands.common import build_engine, report_error
from assessment_cli.errors import AssessmentError


def import_scores(db: Session, link_id: str, incremental: bool = False) -> None:
    engine = build_engine(db)
    try:
        summary = engine.import_for(link_id, incremental=incremental)
    except AssessmentError as e:
        report_error(db, "Unable to import CBT scores", e)
        return

    for warning in summary.warnings:
        click.secho(f"Warning: {warning}", fg="yellow")

    click.secho(f"Imported {summary.imported} scores for review", fg="green")
    if summary.skipped_existing:
        click.secho(
            f"Skipped {summary.skipped_existing} attempts already imported", fg="blue"
        )
    if summary.out_of_scope:
        click.secho(
            f"Ignored {summary.out_of_scope} attempts from other classes", fg="blue"
        )
    if summary.flagged:
        click.secho(f"{summary.flagged} scores were capped, check them", fg="yellow")
    if summary.needs_attention:
        click.secho(
            f"{summary.needs_attention} scores need attention and cannot be approved",
            fg="red",
        )
