import click
from sqlalchemy.orm import Session

from assessment_cli.commands.common import report_error
from assessment_cli.errors import AssessmentError
from assessment_cli.models import School
from assessment_cli.school import SqlSchoolContext


def add_school(db: Session, name: str) -> None:
    school = School(name=name)
    db.add(school)
    db.commit()
    click.secho(f"Created school {school.name} with id {school.id}", fg="green")


def show_school_context(db: Session, school_id: str) -> None:
    try:
        context = SqlSchoolContext(db, school_id).current()
    except AssessmentError as e:
        report_error(db, "Unable to read school context", e)
        return

    click.echo(f"School:  {context.school_id}")
    click.echo(f"Session: {context.session_id or 'Not set'}")
    click.echo(f"Term:    {context.term_id or 'Not set'}")
    if not context.session_id or not context.term_id:
        click.secho(
            "Set the current session and term before linking CBT scores.", fg="yellow"
        )


def set_school_context(db: Session, school_id: str, session_id: str, term_id: str) -> None:
    try:
        context = SqlSchoolContext(db, school_id).set_current(session_id, term_id)
    except AssessmentError as e:
        report_error(db, "Unable to update school context", e)
        return

    click.secho(
        f"Current session/term set to {context.session_id}/{context.term_id}",
        fg="green",
    )
