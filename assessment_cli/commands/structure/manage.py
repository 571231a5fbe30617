from typing import Optional

import click
from sqlalchemy.orm import Session

from assessment_cli.commands.common import report_error
from assessment_cli.errors import AssessmentError
from assessment_cli.scoring.resolver import ScoreStructureResolver
from assessment_cli.scoring.structures import (
    clean_id,
    delete_structure,
    list_structures,
    save_structure,
    set_structure_active,
)


def _scope(class_id: Optional[str], term_id: Optional[str]) -> str:
    return f"class={class_id or 'all'} term={term_id or 'all'}"


def set_structure(
    db: Session,
    component_id: str,
    max_score: str,
    class_id: Optional[str],
    term_id: Optional[str],
    description: Optional[str],
    active: bool,
) -> None:
    try:
        structure = save_structure(
            db,
            component_id,
            max_score,
            class_id=class_id,
            term_id=term_id,
            description=description,
            is_active=active,
        )
    except AssessmentError as e:
        report_error(db, "Unable to save structure", e)
        return

    click.secho(
        f"Saved structure {structure.id}: {_scope(structure.class_id, structure.term_id)} "
        f"max={structure.max_score} ({'active' if structure.is_active else 'inactive'})",
        fg="green",
    )


def show_structures(db: Session, component_id: str) -> None:
    try:
        structures = list_structures(db, component_id)
    except AssessmentError as e:
        report_error(db, "Unable to list structures", e)
        return

    if not structures:
        click.secho("No structures found; the component default applies.", fg="yellow")
        return

    active = sum(1 for s in structures if s.is_active)
    click.echo(f"{len(structures)} structures ({active} active)")
    for s in structures:
        click.secho(
            f"{s.id}  {_scope(s.class_id, s.term_id):<36} max={s.max_score:<8} "
            f"{'Active' if s.is_active else 'Inactive':<9} {s.description or 'No description'}",
            fg=None if s.is_active else "bright_black",
        )


def show_applicable(
    db: Session, component_id: str, class_id: Optional[str], term_id: Optional[str]
) -> None:
    """Show the active structures that apply to a class/term, most specific first."""
    try:
        snapshot = ScoreStructureResolver(db).snapshot(component_id)
    except AssessmentError as e:
        report_error(db, "Unable to load structures", e)
        return

    applicable = snapshot.applicable(clean_id(class_id), clean_id(term_id))
    if not applicable:
        click.secho("No structure applies; the component default is used.", fg="yellow")
    for position, (level, entry) in enumerate(applicable, start=1):
        marker = "*" if position == 1 else " "
        click.echo(
            f"{marker} {level:<10} {_scope(entry.class_id, entry.term_id):<36} max={entry.max_score}"
        )
    default = snapshot.default_max_score
    click.echo(f"  default    max={default if default is not None else 'Not set'}")


def resolve_max_score(
    db: Session, component_id: str, class_id: Optional[str], term_id: Optional[str]
) -> None:
    try:
        resolution = ScoreStructureResolver(db).resolve_with_level(
            component_id, clean_id(class_id), clean_id(term_id)
        )
    except AssessmentError as e:
        report_error(db, "Unable to resolve max score", e)
        return

    source = "structure" if resolution.from_structure else "default"
    click.secho(
        f"Max score for {_scope(class_id, term_id)}: {resolution.max_score} "
        f"(from {source}, level {resolution.level})",
        fg="green",
    )


def change_structure_status(db: Session, structure_id: str, active: bool) -> None:
    try:
        structure = set_structure_active(db, structure_id, active)
    except AssessmentError as e:
        report_error(db, "Unable to update structure", e)
        return
    click.secho(
        f"Structure {structure.id} is now {'active' if structure.is_active else 'inactive'}",
        fg="green",
    )


def remove_structure(db: Session, structure_id: str) -> None:
    try:
        delete_structure(db, structure_id)
    except AssessmentError as e:
        report_error(db, "Unable to delete structure", e)
        return
    click.secho(f"Deleted structure {structure_id}", fg="green")
