import os
from typing import Any, Optional

import click
import openpyxl
from sqlalchemy.orm import Session

from assessment_cli.errors import AssessmentError
from assessment_cli.scoring.structures import save_structure
from assessment_cli.utils.logging_config import get_logger

logger = get_logger(__name__)

REQUIRED_COLUMNS = ["Class", "Term", "Max Score"]
FALSE_VALUES = {"no", "n", "false", "0", "inactive"}


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _active(value: Any) -> bool:
    if value is None or value == "":
        return True
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() not in FALSE_VALUES


def upload_structures_from_excel(db: Session, component_id: str, file_path: str) -> None:
    """
    Save one structure per worksheet row.

    Blank Class or Term cells mean "any class" or "any term". Each row is saved
    on its own and its outcome is written to the Status column; rows already
    marked "done" are skipped on a re-run.
    """
    if not os.path.exists(file_path):
        click.secho(f"Error: File {file_path} not found", fg="red")
        return

    click.echo(f"Reading structures from {file_path}...")
    workbook = openpyxl.load_workbook(file_path)
    worksheet = workbook.active
    if worksheet is None:
        click.secho(f"Error: No active worksheet found in {file_path}", fg="red")
        return

    header_row = [_text(cell.value) for cell in worksheet[1]]
    missing_columns = [c for c in REQUIRED_COLUMNS if c not in header_row]
    if missing_columns:
        click.secho(
            f"Error: Missing required columns: {', '.join(missing_columns)}", fg="red"
        )
        return

    column_indices = {name: index for index, name in enumerate(header_row) if name}
    if "Status" in column_indices:
        status_column = column_indices["Status"] + 1
    else:
        status_column = len(header_row) + 1
        worksheet.cell(row=1, column=status_column, value="Status")

    saved_count = 0
    skipped_count = 0
    error_count = 0

    for row_index, row in enumerate(
        worksheet.iter_rows(min_row=2, values_only=True), start=2
    ):
        status_cell = worksheet.cell(row=row_index, column=status_column)
        if status_cell.value == "done":
            skipped_count += 1
            continue

        def value(column: str) -> Any:
            index = column_indices.get(column)
            return row[index] if index is not None and index < len(row) else None

        if all(v is None for v in row):
            continue

        try:
            save_structure(
                db,
                component_id,
                value("Max Score"),
                class_id=_text(value("Class")),
                term_id=_text(value("Term")),
                description=_text(value("Description")),
                is_active=_active(value("Active")),
            )
        except AssessmentError as e:
            click.secho(f"Row {row_index}: {e}", fg="yellow")
            status_cell.value = str(e)
            error_count += 1
            continue

        status_cell.value = "done"
        saved_count += 1

    workbook.save(file_path)
    logger.info(
        f"Structure upload for {component_id}: saved={saved_count} "
        f"skipped={skipped_count} errors={error_count}"
    )

    click.secho(f"Successfully saved {saved_count} structures", fg="green")
    if skipped_count > 0:
        click.secho(
            f"Skipped {skipped_count} rows that were already marked as done", fg="blue"
        )
    if error_count > 0:
        click.secho(f"Encountered {error_count} errors while saving", fg="red")
