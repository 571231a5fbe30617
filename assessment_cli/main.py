from typing import Optional

import click
from sqlalchemy.orm import Session

from assessment_cli.commands.export.import_rows import export_import_rows
from assessment_cli.commands.link.manage import (
    create_link,
    deactivate_link,
    delete_link,
    list_links,
)
from assessment_cli.commands.school.context import (
    add_school,
    set_school_context,
    show_school_context,
)
from assessment_cli.commands.scores.import_scores import import_scores
from assessment_cli.commands.scores.review import (
    approve_scores,
    list_history,
    list_pending,
    reject_scores,
)
from assessment_cli.commands.scores.sync import sync_scores
from assessment_cli.commands.structure.components import add_component, list_components
from assessment_cli.commands.structure.manage import (
    change_structure_status,
    remove_structure,
    resolve_max_score,
    set_structure,
    show_applicable,
    show_structures,
)
from assessment_cli.commands.structure.upload import upload_structures_from_excel
from assessment_cli.cbt.states import STATUSES
from assessment_cli.db.config import get_engine, get_session
from assessment_cli.errors import ReconciliationError
from assessment_cli.models import Base
from assessment_cli.scoring.converter import MAPPING_TYPES
from assessment_cli.utils.logging_config import configure_from_env


def get_db(ctx: click.Context) -> Session:
    engine = get_engine(use_local=not ctx.obj["prod"])
    db = get_session(engine)
    ctx.call_on_close(db.close)
    return db


def require_school(ctx: click.Context) -> str:
    school_id = ctx.obj.get("school_id")
    if not school_id:
        raise click.UsageError("Pass --school or set SCHOOL_ID")
    return school_id


@click.group()
@click.option("--prod", is_flag=True, help="Use the production database")
@click.option("--school", "school_id", envvar="SCHOOL_ID", help="School id (tenant)")
@click.pass_context
def cli(ctx: click.Context, prod: bool, school_id: Optional[str]) -> None:
    configure_from_env()
    ctx.ensure_object(dict)
    ctx.obj["prod"] = prod
    ctx.obj["school_id"] = school_id


@cli.command(name="init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create all tables."""
    engine = get_engine(use_local=not ctx.obj["prod"])
    Base.metadata.create_all(engine)
    click.secho("Database tables created", fg="green")


@cli.group()
def school() -> None:
    pass


@school.command(name="add")
@click.argument("name")
@click.pass_context
def school_add(ctx: click.Context, name: str) -> None:
    add_school(get_db(ctx), name)


@school.command(name="show")
@click.pass_context
def school_show(ctx: click.Context) -> None:
    show_school_context(get_db(ctx), require_school(ctx))


@school.command(name="set-current")
@click.option("--session", "session_id", required=True, help="Academic session id")
@click.option("--term", "term_id", required=True, help="Term id")
@click.pass_context
def school_set_current(ctx: click.Context, session_id: str, term_id: str) -> None:
    """Set the school's current session and term."""
    set_school_context(get_db(ctx), require_school(ctx), session_id, term_id)


@cli.group()
def component() -> None:
    pass


@component.command(name="add")
@click.argument("name")
@click.option("--max-score", help="Default maximum score")
@click.option("--weight", help="Weight of the component in the term score")
@click.option("--label", help="Display label")
@click.pass_context
def component_add(
    ctx: click.Context,
    name: str,
    max_score: Optional[str],
    weight: Optional[str],
    label: Optional[str],
) -> None:
    add_component(
        get_db(ctx), require_school(ctx), name, max_score=max_score, weight=weight, label=label
    )


@component.command(name="list")
@click.pass_context
def component_list(ctx: click.Context) -> None:
    list_components(get_db(ctx), require_school(ctx))


@cli.group()
def structure() -> None:
    pass


@structure.command(name="set")
@click.argument("component_id")
@click.argument("max_score")
@click.option("--class", "class_id", help="Class id (omit for all classes)")
@click.option("--term", "term_id", help="Term id (omit for all terms)")
@click.option("--description", help="Description")
@click.option("--inactive", is_flag=True, help="Save the structure as inactive")
@click.pass_context
def structure_set(
    ctx: click.Context,
    component_id: str,
    max_score: str,
    class_id: Optional[str],
    term_id: Optional[str],
    description: Optional[str],
    inactive: bool,
) -> None:
    """Create or update the max score for a component in a class/term."""
    set_structure(
        get_db(ctx), component_id, max_score, class_id, term_id, description, not inactive
    )


@structure.command(name="list")
@click.argument("component_id")
@click.pass_context
def structure_list(ctx: click.Context, component_id: str) -> None:
    show_structures(get_db(ctx), component_id)


@structure.command(name="applicable")
@click.argument("component_id")
@click.option("--class", "class_id", help="Class id")
@click.option("--term", "term_id", help="Term id")
@click.pass_context
def structure_applicable(
    ctx: click.Context, component_id: str, class_id: Optional[str], term_id: Optional[str]
) -> None:
    show_applicable(get_db(ctx), component_id, class_id, term_id)


@structure.command(name="resolve")
@click.argument("component_id")
@click.option("--class", "class_id", help="Class id")
@click.option("--term", "term_id", help="Term id")
@click.pass_context
def structure_resolve(
    ctx: click.Context, component_id: str, class_id: Optional[str], term_id: Optional[str]
) -> None:
    """Show the max score that applies to a class/term."""
    resolve_max_score(get_db(ctx), component_id, class_id, term_id)


@structure.command(name="deactivate")
@click.argument("structure_id")
@click.pass_context
def structure_deactivate(ctx: click.Context, structure_id: str) -> None:
    change_structure_status(get_db(ctx), structure_id, False)


@structure.command(name="activate")
@click.argument("structure_id")
@click.pass_context
def structure_activate(ctx: click.Context, structure_id: str) -> None:
    change_structure_status(get_db(ctx), structure_id, True)


@structure.command(name="delete")
@click.argument("structure_id")
@click.pass_context
def structure_delete(ctx: click.Context, structure_id: str) -> None:
    remove_structure(get_db(ctx), structure_id)


@structure.command(name="upload")
@click.argument("component_id")
@click.argument("file_path", type=click.Path(exists=True))
@click.pass_context
def structure_upload(ctx: click.Context, component_id: str, file_path: str) -> None:
    """Save structures from an Excel sheet with Class, Term and Max Score columns."""
    upload_structures_from_excel(get_db(ctx), component_id, file_path)


@cli.group()
def link() -> None:
    pass


@link.command(name="create")
@click.argument("component_id")
@click.argument("exam_id")
@click.option("--session", "session_id", required=True, help="Academic session id")
@click.option("--term", "term_id", required=True, help="Term id")
@click.option("--class", "class_id", help="Only import attempts from this class")
@click.option("--subject", "subject_id", help="Subject the scores belong to")
@click.option(
    "--mapping",
    "mapping_type",
    type=click.Choice(MAPPING_TYPES),
    default="direct",
    show_default=True,
)
@click.option("--max-score-override", help="Target max score for scaled mapping")
@click.option("--auto-sync", is_flag=True, help="Sync scores as soon as they are approved")
@click.pass_context
def link_create(
    ctx: click.Context,
    component_id: str,
    exam_id: str,
    session_id: str,
    term_id: str,
    class_id: Optional[str],
    subject_id: Optional[str],
    mapping_type: str,
    max_score_override: Optional[str],
    auto_sync: bool,
) -> None:
    """Link a CBT exam to an assessment component."""
    create_link(
        get_db(ctx),
        require_school(ctx),
        component_id,
        exam_id,
        session_id,
        term_id,
        class_id=class_id,
        subject_id=subject_id,
        mapping_type=mapping_type,
        max_score_override=max_score_override,
        auto_sync=auto_sync,
    )


@link.command(name="list")
@click.argument("component_id")
@click.pass_context
def link_list(ctx: click.Context, component_id: str) -> None:
    list_links(get_db(ctx), require_school(ctx), component_id)


@link.command(name="deactivate")
@click.argument("link_id")
@click.pass_context
def link_deactivate(ctx: click.Context, link_id: str) -> None:
    deactivate_link(get_db(ctx), require_school(ctx), link_id)


@link.command(name="delete")
@click.argument("link_id")
@click.confirmation_option(prompt="Delete the link and its import history?")
@click.pass_context
def link_delete(ctx: click.Context, link_id: str) -> None:
    delete_link(get_db(ctx), require_school(ctx), link_id)


@cli.group()
def scores() -> None:
    pass


@scores.command(name="import")
@click.argument("link_id")
@click.option(
    "--incremental",
    is_flag=True,
    help="Only fetch attempts submitted since the last import",
)
@click.pass_context
def scores_import(ctx: click.Context, link_id: str, incremental: bool) -> None:
    """Import CBT attempt scores for review."""
    import_scores(get_db(ctx), link_id, incremental=incremental)


@scores.command(name="pending")
@click.argument("link_id")
@click.pass_context
def scores_pending(ctx: click.Context, link_id: str) -> None:
    list_pending(get_db(ctx), link_id)


@scores.command(name="history")
@click.argument("link_id")
@click.option("--status", type=click.Choice(STATUSES), help="Only rows in this status")
@click.pass_context
def scores_history(ctx: click.Context, link_id: str, status: Optional[str]) -> None:
    list_history(get_db(ctx), link_id, status=status)


@scores.command(name="approve")
@click.argument("row_ids", nargs=-1)
@click.option("--link", "link_id", help="Only approve rows of this link")
@click.option("--all", "approve_all", is_flag=True, help="Approve every pending row of --link")
@click.pass_context
def scores_approve(
    ctx: click.Context, row_ids: tuple[str, ...], link_id: Optional[str], approve_all: bool
) -> None:
    approve_scores(get_db(ctx), row_ids, link_id=link_id, approve_all=approve_all)


@scores.command(name="reject")
@click.argument("row_ids", nargs=-1)
@click.option("--reason", help="Why the scores are rejected")
@click.option("--link", "link_id", help="Only reject rows of this link")
@click.pass_context
def scores_reject(
    ctx: click.Context, row_ids: tuple[str, ...], reason: Optional[str], link_id: Optional[str]
) -> None:
    reject_scores(get_db(ctx), row_ids, reason=reason, link_id=link_id)


@scores.command(name="sync")
@click.argument("link_id")
@click.option("--strict", is_flag=True, help="Exit with an error if any score was not synced")
@click.pass_context
def scores_sync(ctx: click.Context, link_id: str, strict: bool) -> None:
    """Write approved scores to the gradebook."""
    try:
        sync_scores(get_db(ctx), link_id, strict=strict)
    except ReconciliationError as e:
        click.secho(str(e), fg="red")
        ctx.exit(1)


@scores.command(name="export")
@click.argument("link_id")
@click.option("--status", type=click.Choice(STATUSES), help="Only rows in this status")
@click.pass_context
def scores_export(ctx: click.Context, link_id: str, status: Optional[str]) -> None:
    """Export imported scores to Excel."""
    export_import_rows(get_db(ctx), link_id, status=status)


if __name__ == "__main__":
    cli()
