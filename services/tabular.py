"""
services/tabular.py

Import / export boundary adapters.

- parse_table(): xlsx / csv bytes → ordered row mappings + column manifest
- *_template(): 2-D grids handed to operators to fill in
- results_export_grid(): ranked class view → 2-D grid
- grid_to_xlsx() / grid_to_csv(): grid serialisation (formatting lives here)

The engine only ever sees TabularPayload and plain grids.
"""

import csv
import io
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from pydantic import BaseModel, Field

from schemas.results import ResultView
from services.errors import TabularParseError

logger = logging.getLogger(__name__)

Grid = List[List[Any]]

# =========================================================
# Column manifests (canonical name → accepted headers, lower case)
# =========================================================

RESULT_COLUMNS: Dict[str, Tuple[str, ...]] = {
    "student_id": ("student id*", "student id", "student_id", "student number", "id"),
    "term": ("term*", "term"),
    "academic_year": ("academic year*", "academic year", "academic_year", "year"),
    "assessment_type": ("assessment type", "assessment_type"),
    "days_school_opened": ("days school opened", "days_school_opened", "days opened"),
    "days_present": ("days present", "days_present"),
    "days_absent": ("days absent", "days_absent"),
}

STUDENT_COLUMNS: Dict[str, Tuple[str, ...]] = {
    "student_id": ("student id*", "student id", "student_id", "student number", "id"),
    "full_name": ("full name*", "full name", "full_name", "name", "student name"),
    "gender": ("gender", "sex"),
    "class_name": ("class", "class name", "class_name"),
    "academic_year": ("academic year", "academic_year", "year"),
    "guardian_name": ("guardian name", "guardian_name", "parent name"),
    "guardian_phone": ("guardian phone", "guardian_phone", "parent phone", "phone"),
    "address": ("address",),
}

SUBJECT_COMPONENTS = ("ca1", "ca2", "ca3", "ca4", "exam", "score")
SUBJECT_COLUMN = re.compile(r"^(?P<subject>.+?)\s+-\s+(?P<component>ca1|ca2|ca3|ca4|exam|score)$")

# sheet titles preferred when a workbook carries several
_DATA_SHEET_HINTS = ("data", "results", "student", "records")


class TabularRow(BaseModel):
    row_number: int                                     # sheet row, header is row 1
    values: Dict[str, Any]                              # canonical column → cell value


class TabularPayload(BaseModel):
    rows: List[TabularRow] = Field(default_factory=list)
    columns: List[str] = Field(default_factory=list)                        # recognised canonical columns
    subject_columns: Dict[str, Tuple[str, str]] = Field(default_factory=dict)  # header → (subject, component)
    unrecognized: List[str] = Field(default_factory=list)


# =========================================================
# Parsing
# =========================================================

def _clean(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def _read_xlsx(payload: bytes) -> List[Tuple[Any, ...]]:
    try:
        wb = load_workbook(io.BytesIO(payload), read_only=True, data_only=True)
    except Exception as e:
        raise TabularParseError(f"Invalid Excel file: {e}") from e

    try:
        sheets = [ws for ws in wb.worksheets if ws.title.strip().lower() != "instructions"]
        if not sheets:
            raise TabularParseError("Workbook has no data sheet")
        ws = next(
            (s for s in sheets if any(h in s.title.lower() for h in _DATA_SHEET_HINTS)),
            sheets[0],
        )
        return [tuple(r) for r in ws.iter_rows(values_only=True)]
    finally:
        wb.close()


def _read_csv(payload: bytes) -> List[Tuple[Any, ...]]:
    try:
        text = payload.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = payload.decode("latin-1")
    try:
        return [tuple(r) for r in csv.reader(io.StringIO(text))]
    except csv.Error as e:
        raise TabularParseError(f"Invalid CSV file: {e}") from e


def _header_map(headers: Sequence[str], aliases: Dict[str, Tuple[str, ...]], with_subjects: bool):
    lookup = {alias: canonical for canonical, names in aliases.items() for alias in names}
    mapped: Dict[int, str] = {}
    subject_columns: Dict[str, Tuple[str, str]] = {}
    unrecognized: List[str] = []
    for index, header in enumerate(headers):
        if not header:
            continue
        canonical = lookup.get(header)
        if canonical is not None:
            if canonical not in mapped.values():
                mapped[index] = canonical
            else:
                unrecognized.append(header)
            continue
        match = SUBJECT_COLUMN.match(header) if with_subjects else None
        if match:
            mapped[index] = header
            subject_columns[header] = (match.group("subject").strip(), match.group("component"))
            continue
        unrecognized.append(header)
    return mapped, subject_columns, unrecognized


def parse_table(payload: bytes, filename: str,
                columns: Dict[str, Tuple[str, ...]] = RESULT_COLUMNS,
                with_subjects: bool = True) -> TabularPayload:
    """
    Decode an uploaded sheet. Raises TabularParseError when the payload cannot be
    read at all; anything finer grained is left to row validation.
    """
    if not payload:
        raise TabularParseError("Uploaded file is empty")

    name = (filename or "").lower()
    if name.endswith((".xlsx", ".xlsm")):
        raw_rows = _read_xlsx(payload)
    elif name.endswith(".csv"):
        raw_rows = _read_csv(payload)
    else:
        raise TabularParseError(f"Unsupported file type: {filename!r} (expected .xlsx or .csv)")

    if not raw_rows or not any(_clean(v) is not None for v in raw_rows[0]):
        raise TabularParseError("Header row is missing")

    headers = [str(v).strip().lower() if v is not None else "" for v in raw_rows[0]]
    mapped, subject_columns, unrecognized = _header_map(headers, columns, with_subjects)
    if not mapped:
        raise TabularParseError("No recognised columns in header row")

    rows: List[TabularRow] = []
    for row_number, raw in enumerate(raw_rows[1:], start=2):
        cells = [_clean(v) for v in raw]
        if not any(v is not None for v in cells):
            continue
        values = {
            canonical: cells[index] if index < len(cells) else None
            for index, canonical in mapped.items()
        }
        rows.append(TabularRow(row_number=row_number, values=values))

    logger.info(f"Parsed {filename}: {len(rows)} rows, {len(mapped)} columns, {len(unrecognized)} unrecognised")
    return TabularPayload(
        rows=rows,
        columns=[c for c in mapped.values() if c not in subject_columns],
        subject_columns=subject_columns,
        unrecognized=unrecognized,
    )


# =========================================================
# Templates
# =========================================================

def _component_label(component: str) -> str:
    return component.upper() if component.lower().startswith("ca") else component.title()


def results_template(subjects: Sequence[str], components: Sequence[str] = ("score",)) -> Grid:
    header = ["Student ID*", "Term*", "Academic Year*", "Days School Opened", "Days Present", "Days Absent"]
    header += [f"{s} - {_component_label(c)}" for s in subjects for c in components]
    example = ["STU001", "first", "2024/2025", 60, 58, 2] + [None] * (len(header) - 6)
    return [header, example]


def students_template() -> Grid:
    return [
        ["Student ID*", "Full Name*", "Gender", "Class", "Academic Year",
         "Guardian Name", "Guardian Phone", "Address"],
        ["STU001", "Ama Mensah", "female", "JHS 1", "2024/2025", "Kofi Mensah", "0240000000", "Accra"],
    ]


# =========================================================
# Export
# =========================================================

def results_export_grid(views: Iterable[ResultView], title: str) -> Grid:
    """Title row, blank row, header row (row 3), one row per student."""
    views = list(views)
    subjects = sorted({(s.subject_id, s.subject_name) for v in views for s in v.subjects}, key=lambda x: x[1])

    header = ["Position", "Student ID", "Student Name"]
    for _, name in subjects:
        header += [f"{name} Total", f"{name} Grade"]
    header += ["Total Score", "Total Marks", "Average"]

    grid: Grid = [[title], [], header]
    for view in views:
        marks = {s.subject_id: s for s in view.subjects}
        row: List[Any] = [view.position_label or "-", view.student_number, view.student_name]
        for subject_id, _ in subjects:
            mark = marks.get(subject_id)
            row += [mark.total_score if mark else None, mark.grade if mark else None]
        row += [view.total_score, view.total_marks, view.average_score]
        grid.append(row)
    return grid


def grid_to_xlsx(grid: Grid, sheet_title: str = "Data", header_row: int = 1,
                 instructions: Optional[Sequence[str]] = None) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_title[:31]

    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
    for row in grid:
        ws.append(list(row))
    for cell in ws[header_row]:
        if cell.value is not None:
            cell.font = header_font
            cell.fill = header_fill
            cell.alignment = Alignment(horizontal="center", vertical="center")
    if header_row > 1 and grid and grid[0]:
        ws.cell(row=1, column=1).font = Font(bold=True, size=14)

    widths = [max((len(str(r[i])) for r in grid if i < len(r) and r[i] is not None), default=8)
              for i in range(max((len(r) for r in grid), default=0))]
    for index, width in enumerate(widths, start=1):
        ws.column_dimensions[get_column_letter(index)].width = min(max(width + 2, 10), 40)

    if instructions:
        sheet = wb.create_sheet("Instructions")
        sheet.column_dimensions["A"].width = 80
        for line in instructions:
            sheet.append([line])
        sheet.cell(row=1, column=1).font = Font(bold=True)

    output = io.BytesIO()
    wb.save(output)
    return output.getvalue()


def grid_to_csv(grid: Grid) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    for row in grid:
        writer.writerow(["" if v is None else v for v in row])
    return buffer.getvalue().encode("utf-8")
