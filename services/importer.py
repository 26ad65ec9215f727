"""
services/importer.py

Bulk ingestion pipeline.

    parsing → validating → importing → complete
                 │                        (failed: unreadable payload / lost store)
                 └─ rows are validated independently, only valid rows go on

- Rows are processed one by one in source order; each valid row is its own
  upsert transaction keyed by natural identity, so a re-run updates in place
  and an interrupted batch leaves a well-defined partial state.
- A row failure never stops the batch. A missing grading scale fails every row
  of that scope; a missing assessment type fails only the rows that name it in
  that scope. A lost record store fails the rest of the batch and propagates
  (StoreUnavailableError.summary holds the partial outcome).
- Cancellation is cooperative: the event is checked before each row.
"""

import logging
import math
import re
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError as SchemaError
from sqlalchemy.orm import Session

from config.settings import settings
from models.classes import SchoolClass
from models.students import Student
from models.subjects import Subject
from schemas.grading import GradingScope, normalize_term
from schemas.imports import ImportPhase, ImportProgress, ImportSummary, RowIssue
from schemas.students import StudentCreate
from services.errors import (
    ConfigurationError,
    IdentityConflictError,
    NoAssessmentConfigured,
    RangeError,
    RecordNotFound,
    ResultsEngineError,
    StoreUnavailableError,
    TabularParseError,
    ValidationError,
)
from services.results import ResultsService, results_service
from services.store import SQLAlchemyRecordStore, store_errors
from services.tabular import RESULT_COLUMNS, STUDENT_COLUMNS, TabularPayload, TabularRow, parse_table

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ImportProgress], None]

ACADEMIC_YEAR = re.compile(r"^\d{4}/\d{4}$")
_GENDERS = {"m": "male", "male": "male", "f": "female", "female": "female"}
_ATTENDANCE = ("days_school_opened", "days_present", "days_absent")


@dataclass
class ValidRow:
    row_number: int
    key: str
    fields: Dict[str, Any]
    # subject label (as written in the header) → component → raw value
    scores: Dict[str, Dict[str, float]] = field(default_factory=dict)


class BulkImportPipeline:
    """
    One batch of one kind ("results" or "students").
    Instances are single use: create, run(), read the returned summary.
    """

    def __init__(self, db: Session, kind: str,
                 on_progress: Optional[ProgressCallback] = None,
                 cancel_event: Optional[threading.Event] = None,
                 assessment_type: Optional[str] = None,
                 service: ResultsService = None):
        if kind not in ("results", "students"):
            raise ValueError(f"Unknown import kind: {kind}")
        self.db = db
        self.kind = kind
        self.on_progress = on_progress
        self.cancel_event = cancel_event or threading.Event()
        self.assessment_type = assessment_type
        self.service = service or results_service

        self.summary = ImportSummary(kind=kind)
        # (scope, None) → scale problem, (scope, name) → assessment type problem
        self._scope_errors: Dict[Tuple[GradingScope, Optional[str]], ConfigurationError] = {}
        self._subjects: Optional[Dict[str, Subject]] = None
        self._classes: Optional[Dict[str, SchoolClass]] = None

    # ==========================================================
    # entry points
    # ==========================================================

    def run(self, payload: bytes, filename: str) -> ImportSummary:
        """Parse, validate and import one uploaded file."""
        self._announce("parsing", 0, 0, f"Reading {filename}")
        try:
            if self.kind == "results":
                table = parse_table(payload, filename, RESULT_COLUMNS, with_subjects=True)
            else:
                table = parse_table(payload, filename, STUDENT_COLUMNS, with_subjects=False)
        except TabularParseError as e:
            logger.warning(f"[IMPORT:{self.kind}] {filename} rejected: {e.message}")
            self.summary.status = "failed"
            self.summary.fatal_error = e.message
            self.summary.issues.append(RowIssue(row=0, severity="error", code=e.code, message=e.message))
            return self.summary
        return self.run_table(table)

    def run_table(self, table: TabularPayload) -> ImportSummary:
        """Validate and import already decoded rows."""
        summary = self.summary
        summary.total = len(table.rows)
        logger.info(f"[IMPORT:{self.kind}] {summary.total} rows received")

        for header in table.unrecognized:
            self._issue(0, None, "warning", "UNRECOGNIZED_COLUMN", f"Column '{header}' is not recognised and was ignored")

        self._announce("validating", 0, summary.total, f"Validating {summary.total} rows")
        valid = self._validate_all(table)
        summary.valid = len(valid)
        summary.failed = summary.total - summary.valid
        logger.info(f"[IMPORT:{self.kind}] {summary.valid}/{summary.total} rows valid")

        self._import_all(valid)
        logger.info(
            f"[IMPORT:{self.kind}] {summary.status}: imported={summary.imported} "
            f"(created={summary.created}, updated={summary.updated}) failed={summary.failed} "
            f"skipped={summary.skipped}"
        )
        return summary

    # ==========================================================
    # progress / issues
    # ==========================================================

    def _emit(self, phase: ImportPhase, current: int, total: int, message: str):
        if self.on_progress is not None:
            self.on_progress(ImportProgress(phase=phase, current=current, total=total, message=message))

    def _announce(self, phase: ImportPhase, current: int, total: int, message: str):
        if settings.IMPORT_ANNOUNCE_PHASES:
            self._emit(phase, current, total, message)

    def _issue(self, row: int, key: Optional[str], severity: str, code: str, message: str):
        self.summary.issues.append(RowIssue(row=row, key=key, severity=severity, code=code, message=message))

    # ==========================================================
    # [1] validation
    # ==========================================================

    def _validate_all(self, table: TabularPayload) -> List[ValidRow]:
        seen: Dict[str, int] = {}
        valid: List[ValidRow] = []
        for row in table.rows:
            if self.kind == "results":
                candidate, errors, warnings = self._validate_result_row(row, table)
            else:
                candidate, errors, warnings = self._validate_student_row(row)

            key = candidate.key if candidate else self._text(row.values.get("student_id"))
            if candidate is not None and not errors:
                if candidate.key in seen:
                    errors.append(("DUPLICATE_KEY", f"Duplicate of row {seen[candidate.key]} ({candidate.key})"))
                else:
                    seen[candidate.key] = row.row_number

            for code, message in errors:
                self._issue(row.row_number, key, "error", code, message)
            for code, message in warnings:
                self._issue(row.row_number, key, "warning", code, message)
            if candidate is not None and not errors:
                valid.append(candidate)
        return valid

    @staticmethod
    def _text(value) -> Optional[str]:
        if value is None:
            return None
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        text = str(value).strip()
        return text or None

    @staticmethod
    def _count(name: str, value, errors: list) -> Optional[int]:
        if value is None:
            return None
        try:
            number = float(value)
        except (TypeError, ValueError):
            errors.append(("INVALID_NUMBER", f"{name.replace('_', ' ')} must be a whole number, got {value!r}"))
            return None
        if math.isnan(number) or number < 0 or not number.is_integer():
            errors.append(("INVALID_NUMBER", f"{name.replace('_', ' ')} must be a whole number, got {value!r}"))
            return None
        return int(number)

    def _term_and_year(self, values: Dict[str, Any], errors: list, warnings: list) -> Tuple[Optional[str], Optional[str]]:
        raw_term = values.get("term")
        if raw_term is None:
            term = settings.DEFAULT_TERM
            warnings.append(("DEFAULTED_TERM", f"Term is blank, '{term}' assumed"))
        else:
            term = normalize_term(raw_term)
            if term is None:
                errors.append(("INVALID_TERM", f"Invalid term {raw_term!r} (expected first, second or third)"))

        year = self._text(values.get("academic_year"))
        if year is None:
            year = settings.DEFAULT_ACADEMIC_YEAR
            warnings.append(("DEFAULTED_ACADEMIC_YEAR", f"Academic year is blank, '{year}' assumed"))
        elif not ACADEMIC_YEAR.match(year):
            errors.append(("INVALID_ACADEMIC_YEAR", f"Invalid academic year {year!r} (expected e.g. 2024/2025)"))
        return term, year

    def _validate_result_row(self, row: TabularRow, table: TabularPayload):
        errors: List[Tuple[str, str]] = []
        warnings: List[Tuple[str, str]] = []
        values = row.values

        student_number = self._text(values.get("student_id"))
        if student_number is None:
            errors.append(("MISSING_FIELD", "Student ID is required"))
        term, year = self._term_and_year(values, errors, warnings)

        fields: Dict[str, Any] = {name: self._count(name, values.get(name), errors) for name in _ATTENDANCE}
        fields["assessment_type"] = self._text(values.get("assessment_type")) or self.assessment_type

        scores: Dict[str, Dict[str, float]] = defaultdict(dict)
        for header, (subject, component) in table.subject_columns.items():
            raw = values.get(header)
            if raw is None:
                continue
            try:
                score = float(raw)
            except (TypeError, ValueError):
                errors.append(("INVALID_SCORE", f"{header}: {raw!r} is not a number"))
                continue
            if math.isnan(score) or not 0 <= score <= 100:
                errors.append(("SCORE_OUT_OF_RANGE", f"{header}: score {raw} is outside 0-100"))
                continue
            scores[subject][component] = score

        if not scores and not errors:
            warnings.append(("NO_SCORES", "Row has no subject scores"))

        if student_number is None or term is None:
            return None, errors, warnings
        candidate = ValidRow(
            row_number=row.row_number,
            key=f"{student_number}|{term}|{year}",
            fields={"student_number": student_number, "term": term, "academic_year": year, **fields},
            scores=dict(scores),
        )
        return candidate, errors, warnings

    def _validate_student_row(self, row: TabularRow):
        errors: List[Tuple[str, str]] = []
        warnings: List[Tuple[str, str]] = []
        values = row.values

        student_number = self._text(values.get("student_id"))
        full_name = self._text(values.get("full_name"))
        if student_number is None:
            errors.append(("MISSING_FIELD", "Student ID is required"))
        if full_name is None:
            errors.append(("MISSING_FIELD", "Full name is required"))

        gender = self._text(values.get("gender"))
        if gender is not None:
            normalized = _GENDERS.get(gender.lower())
            if normalized is None:
                warnings.append(("INVALID_GENDER", f"Gender {gender!r} not recognised and was left blank"))
            gender = normalized

        year = self._text(values.get("academic_year"))
        if year is not None and not ACADEMIC_YEAR.match(year):
            errors.append(("INVALID_ACADEMIC_YEAR", f"Invalid academic year {year!r} (expected e.g. 2024/2025)"))

        if student_number is None or full_name is None:
            return None, errors, warnings
        try:
            student = StudentCreate(
                student_number=student_number,
                full_name=full_name,
                gender=gender,
                class_name=self._text(values.get("class_name")),
                academic_year=year or settings.DEFAULT_ACADEMIC_YEAR,
                guardian_name=self._text(values.get("guardian_name")),
                guardian_phone=self._text(values.get("guardian_phone")),
                address=self._text(values.get("address")),
            )
        except SchemaError as e:
            for err in e.errors():
                errors.append(("INVALID_FIELD", f"{err['loc'][0]}: {err['msg']}"))
            return None, errors, warnings
        return ValidRow(row_number=row.row_number, key=student_number, fields=student.model_dump()), errors, warnings

    # ==========================================================
    # [2] importing
    # ==========================================================

    def _import_all(self, rows: List[ValidRow]):
        summary = self.summary
        total = len(rows)
        for index, row in enumerate(rows, start=1):
            if self.cancel_event.is_set():
                self._cancel(rows[index - 1:])
                self._emit("complete", index - 1, total, f"Import cancelled after {index - 1} of {total} rows")
                return

            try:
                self._import_row_with_retry(row)
            except StoreUnavailableError as e:
                logger.exception(f"[IMPORT:{self.kind}] record store lost at row {row.row_number}")
                for pending in rows[index - 1:]:
                    self._issue(pending.row_number, pending.key, "error", e.code, "Not imported: record store unavailable")
                summary.failed += total - index + 1
                summary.status = "failed"
                summary.fatal_error = e.message
                e.summary = summary
                raise
            except ResultsEngineError as e:
                logger.warning(f"[IMPORT:{self.kind}] row {row.row_number} failed: {e.message}")
                self._issue(row.row_number, row.key, "error", e.code, e.message)
                summary.failed += 1
            else:
                summary.imported += 1

            self._emit("importing", index, total, f"Imported {summary.imported} of {total} rows")

        summary.status = "complete"
        self._emit(
            "complete", total, total,
            f"Import complete: {summary.imported} imported, {summary.failed} failed",
        )

    def _cancel(self, remaining: List[ValidRow]):
        logger.info(f"[IMPORT:{self.kind}] cancelled with {len(remaining)} rows left")
        for row in remaining:
            self._issue(row.row_number, row.key, "warning", "CANCELLED", "Not imported: import was cancelled")
        self.summary.skipped = len(remaining)
        self.summary.status = "cancelled"

    def _import_row_with_retry(self, row: ValidRow):
        try:
            created = self._import_row(row)
        except IdentityConflictError:
            # another writer inserted the same key first; the second attempt updates it
            logger.info(f"[IMPORT:{self.kind}] row {row.row_number}: concurrent insert, retrying as update")
            created = self._import_row(row)
        if created:
            self.summary.created += 1
        else:
            self.summary.updated += 1

    def _import_row(self, row: ValidRow) -> bool:
        if self.kind == "results":
            return self._import_result_row(row)
        return self._import_student_row(row)

    # ------------------------------------------------------
    # lookups (loaded once per batch)
    # ------------------------------------------------------
    def _subject(self, label: str) -> Optional[Subject]:
        if self._subjects is None:
            with store_errors(self.db):
                subjects = self.db.query(Subject).all()
            self._subjects = {}
            for s in subjects:
                self._subjects[s.name.strip().lower()] = s
                if s.code:
                    self._subjects.setdefault(s.code.strip().lower(), s)
        return self._subjects.get(label.strip().lower())

    def _school_class(self, name: str) -> Optional[SchoolClass]:
        if self._classes is None:
            with store_errors(self.db):
                self._classes = {c.name.strip().lower(): c for c in self.db.query(SchoolClass).all()}
        return self._classes.get(name.strip().lower())

    # ------------------------------------------------------
    # results
    # ------------------------------------------------------
    def _import_result_row(self, row: ValidRow) -> bool:
        fields = dict(row.fields)
        student_number = fields.pop("student_number")
        term = fields.pop("term")
        year = fields.pop("academic_year")
        assessment_type = fields.pop("assessment_type")

        student = SQLAlchemyRecordStore(self.db, Student, ("student_number",)).find({"student_number": student_number})
        if student is None:
            raise RecordNotFound(f"Student {student_number} not found", student_number=student_number)
        if student.class_id is None:
            raise ValidationError(f"Student {student_number} is not assigned to a class")

        grading_scope = GradingScope(
            department=student.school_class.department.name, academic_year=year, term=term,
        )
        for cache_key in ((grading_scope, None), (grading_scope, assessment_type)):
            if cache_key in self._scope_errors:
                raise self._scope_errors[cache_key]

        marks: List[Tuple[Subject, Dict[str, float]]] = []
        for label, components in row.scores.items():
            subject = self._subject(label)
            if subject is None:
                self._issue(row.row_number, row.key, "warning", "UNKNOWN_SUBJECT",
                            f"Subject '{label}' does not exist and was skipped")
                continue
            marks.append((subject, components))

        scopes = self.service.write_scopes(self.db, student.id, term, year, student.class_id)
        with self.service.rankings.writing(*scopes), store_errors(self.db, row.key):
            try:
                result, created = self.service.upsert_result(
                    self.db, student.id, term, year,
                    {"class_id": student.class_id,
                     **{k: v for k, v in fields.items() if v is not None}},
                )
                for subject, components in marks:
                    self.service.apply_subject_mark(self.db, result, subject.id, components, assessment_type)
            except ConfigurationError as e:
                self.db.rollback()
                self._scope_errors[self._scope_error_key(grading_scope, e)] = e
                raise
            except (ValidationError, RangeError, RecordNotFound):
                self.db.rollback()
                raise
            self.db.commit()
        return created

    @staticmethod
    def _scope_error_key(scope: GradingScope, error: ConfigurationError) -> Tuple[GradingScope, Optional[str]]:
        if isinstance(error, NoAssessmentConfigured):
            return scope, error.name
        return scope, None

    # ------------------------------------------------------
    # students
    # ------------------------------------------------------
    def _import_student_row(self, row: ValidRow) -> bool:
        fields = dict(row.fields)
        student_number = fields.pop("student_number")
        class_name = fields.pop("class_name")
        if class_name is not None:
            school_class = self._school_class(class_name)
            if school_class is None:
                raise RecordNotFound(f"Class '{class_name}' not found", class_name=class_name)
            fields["class_id"] = school_class.id

        store = SQLAlchemyRecordStore(self.db, Student, ("student_number",))
        with store_errors(self.db, student_number):
            _, created = store.upsert(
                {"student_number": student_number},
                {k: v for k, v in fields.items() if v is not None},
            )
            self.db.commit()
        return created


def run_import(db: Session, kind: str, payload: bytes, filename: str, **options) -> ImportSummary:
    """One-shot helper used by the routers and scripts."""
    return BulkImportPipeline(db, kind, **options).run(payload, filename)
