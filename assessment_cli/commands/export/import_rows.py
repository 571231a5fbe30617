import os
from datetime import datetime
from typing import Optional

import click
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter
from sqlalchemy.orm import Session

from assessment_cli.commands.common import build_engine, report_error, student_names
from assessment_cli.errors import AssessmentError

HEADERS = [
    "Row ID",
    "Student",
    "Attempt",
    "Class",
    "Raw Score",
    "Raw Max",
    "Converted Score",
    "Max Score",
    "Status",
    "Flagged",
    "Note",
    "Rejection Reason",
]

ATTENTION_FILL = PatternFill(start_color="F8CBAD", end_color="F8CBAD", fill_type="solid")


def _number(value) -> Optional[float]:
    return float(value) if value is not None else None


def export_import_rows(
    db: Session, link_id: str, status: Optional[str] = None
) -> Optional[str]:
    """Export a link's imported scores to Excel for offline review. Returns the file path."""
    try:
        rows = build_engine(db).history(link_id, status=status)
    except AssessmentError as e:
        report_error(db, "Unable to export imported scores", e)
        return None

    if not rows:
        click.secho("No imported scores found.", fg="yellow")
        return None

    output_dir = "exports"
    os.makedirs(output_dir, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    excel_path = os.path.join(output_dir, f"cbt_scores_{link_id}_{timestamp}.xlsx")

    wb = Workbook()
    ws = wb.active
    ws.title = "Imported Scores"

    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
    for col, header in enumerate(HEADERS, 1):
        cell = ws.cell(row=1, column=col, value=header)
        cell.font = header_font
        cell.fill = header_fill

    names = student_names(db, [row.student_id for row in rows])
    for row_index, row in enumerate(rows, 2):
        values = [
            row.id,
            names.get(row.student_id, row.student_id),
            row.attempt_id,
            row.class_id,
            _number(row.cbt_raw_score),
            _number(row.cbt_max_score),
            _number(row.converted_score),
            _number(row.target_max_score),
            row.status,
            "Yes" if row.flagged else "No",
            row.note,
            row.rejection_reason,
        ]
        for col, value in enumerate(values, 1):
            cell = ws.cell(row=row_index, column=col, value=value)
            if row.needs_attention:
                cell.fill = ATTENTION_FILL

    for col in range(1, len(HEADERS) + 1):
        column_letter = get_column_letter(col)
        max_length = max(
            len(str(cell.value)) for cell in ws[column_letter] if cell.value is not None
        )
        ws.column_dimensions[column_letter].width = min(max_length + 2, 50)

    wb.save(excel_path)
    click.secho(f"Successfully exported {len(rows)} scores to: {excel_path}", fg="green")
    return excel_path
