from typing import Optional

import click
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from assessment_cli.commands.common import report_error
from assessment_cli.errors import AssessmentError, ValidationError
from assessment_cli.models import AssessmentComponent, School
from assessment_cli.scoring.converter import to_decimal


def add_component(
    db: Session,
    school_id: str,
    name: str,
    max_score: Optional[str] = None,
    weight: Optional[str] = None,
    label: Optional[str] = None,
) -> None:
    """Add an assessment component (e.g. CA1) with its default max score and weight."""
    try:
        if db.get(School, school_id) is None:
            raise ValidationError(f"School {school_id} not found")
        default_max = to_decimal(max_score, "max_score")
        if default_max is not None and default_max <= 0:
            raise ValidationError("max_score must be greater than zero")

        component = AssessmentComponent(
            school_id=school_id,
            name=name.strip(),
            label=label,
            max_score=default_max,
            weight=to_decimal(weight, "weight"),
        )
        db.add(component)
        db.commit()
    except IntegrityError:
        db.rollback()
        click.secho(f"Component '{name}' already exists for this school", fg="red")
        return
    except AssessmentError as e:
        report_error(db, "Unable to add component", e)
        return

    click.secho(f"Added component {component.name} ({component.id})", fg="green")
    if component.max_score is None:
        click.secho(
            "No default max score set; add structures before importing CBT scores.",
            fg="yellow",
        )


def list_components(db: Session, school_id: str) -> None:
    components = (
        db.query(AssessmentComponent)
        .filter(AssessmentComponent.school_id == school_id)
        .order_by(AssessmentComponent.name)
        .all()
    )
    if not components:
        click.secho("No assessment components found.", fg="yellow")
        return

    for component in components:
        max_score = component.max_score if component.max_score is not None else "Not set"
        weight = f"{component.weight:.2f}" if component.weight is not None else "Not set"
        click.echo(
            f"{component.id}  {component.name:<10} {component.label or '':<20} "
            f"max={max_score} weight={weight}"
        )
