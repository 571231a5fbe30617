from typing import Optional

import click
from sqlalchemy.orm import Session

from assessment_cli.cbt.links import ScoreMapping
from assessment_cli.commands.common import build_registry, report_error
from assessment_cli.errors import AssessmentError


def create_link(
    db: Session,
    school_id: str,
    component_id: str,
    exam_id: str,
    session_id: str,
    term_id: str,
    class_id: Optional[str] = None,
    subject_id: Optional[str] = None,
    mapping_type: str = "direct",
    max_score_override: Optional[str] = None,
    auto_sync: bool = False,
) -> None:
    registry = build_registry(db, school_id)
    mapping = ScoreMapping(
        mapping_type=mapping_type,
        max_score_override=max_score_override,
        auto_sync=auto_sync,
    )
    try:
        link = registry.create(
            component_id,
            exam_id,
            session_id,
            term_id,
            class_id=class_id,
            subject_id=subject_id,
            mapping=mapping,
        )
    except AssessmentError as e:
        report_error(db, "Unable to link CBT exam", e)
        return

    click.secho(f"Linked exam {exam_id} to component {component_id}", fg="green")
    click.echo(f"Link id: {link.id}")
    click.echo("Run 'scores import' to pull attempts into review.")


def list_links(db: Session, school_id: str, component_id: str) -> None:
    registry = build_registry(db, school_id)
    links = registry.list_with_pending_counts(component_id)
    if not links:
        click.secho("No CBT exams linked to this component.", fg="yellow")
        return

    for link, pending in links:
        mapping = link.score_mapping_type
        if link.max_score_override is not None:
            mapping = f"{mapping} /{link.max_score_override}"
        click.secho(
            f"{link.id}  exam={link.cbt_exam_id:<12} {mapping:<16} "
            f"{link.session_id}/{link.term_id} class={link.class_id or 'exam'} "
            f"auto_sync={'yes' if link.auto_sync else 'no'} pending={pending}",
            fg=None if link.is_active else "bright_black",
        )
        if not link.is_active:
            click.secho("    (inactive)", fg="bright_black")


def deactivate_link(db: Session, school_id: str, link_id: str) -> None:
    try:
        build_registry(db, school_id).deactivate(link_id)
    except AssessmentError as e:
        report_error(db, "Unable to deactivate link", e)
        return
    click.secho(f"Link {link_id} deactivated", fg="green")


def delete_link(db: Session, school_id: str, link_id: str) -> None:
    try:
        build_registry(db, school_id).delete(link_id)
    except AssessmentError as e:
        report_error(db, "Unable to delete link", e)
        return
    click.secho(
        f"Deleted link {link_id} and its import history. Synced scores are kept.",
        fg="green",
    )
