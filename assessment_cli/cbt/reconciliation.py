"""
Import and reconciliation of CBT attempt scores.

Rows move through pending -> approved -> synced, or pending -> rejected.
Every status change is a compare-and-swap on the row's current status and is
committed on its own, so an import or sync interrupted half way leaves valid
partial progress that the next run picks up.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from assessment_cli.cbt.catalog import Attempt, CbtExamCatalog, Exam
from assessment_cli.cbt.states import STATUS_TIMESTAMPS, can_transition
from assessment_cli.errors import (
    AssessmentError,
    ConflictError,
    ExamUnavailableError,
    ValidationError,
)
from assessment_cli.gradebook import Gradebook
from assessment_cli.models import (
    CbtAssessmentLink,
    ScoreImportAudit,
    ScoreImportRow,
    new_id,
    now_ts,
)
from assessment_cli.scoring.converter import ConversionResult, convert, to_decimal
from assessment_cli.scoring.resolver import ScoreStructureResolver, StructureSnapshot
from assessment_cli.utils.logging_config import get_logger, get_reconciliation_logger

logger = get_logger(__name__)
audit_logger = get_reconciliation_logger()


@dataclass
class ImportSummary:
    imported: int = 0
    skipped_existing: int = 0
    out_of_scope: int = 0
    needs_attention: int = 0
    flagged: int = 0
    warnings: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, int]:
        return {"imported": self.imported, "skipped_existing": self.skipped_existing}


@dataclass
class RowError:
    row_id: str
    reason: str

    def as_dict(self) -> Dict[str, str]:
        return {"row_id": self.row_id, "reason": self.reason}


@dataclass
class SyncSummary:
    synced: int = 0
    failed: List[RowError] = field(default_factory=list)

    def as_dict(self) -> Dict:
        return {"synced": self.synced, "failed": [e.as_dict() for e in self.failed]}


@dataclass
class ReviewSummary:
    succeeded: List[str] = field(default_factory=list)
    errors: List[RowError] = field(default_factory=list)
    synced: Dict[str, SyncSummary] = field(default_factory=dict)  # auto sync, by link


class ImportReconciliationEngine:
    def __init__(
        self,
        db: Session,
        catalog: CbtExamCatalog,
        gradebook: Gradebook,
        resolver: Optional[ScoreStructureResolver] = None,
    ):
        self.db = db
        self.catalog = catalog
        self.gradebook = gradebook
        self.resolver = resolver or ScoreStructureResolver(db)

    def _get_link(self, link_id: str) -> CbtAssessmentLink:
        link = self.db.get(CbtAssessmentLink, link_id)
        if link is None:
            raise ValidationError(f"CBT link {link_id} not found")
        return link

    def _fetch_exam(self, exam_id: str) -> Optional[Exam]:
        try:
            return self.catalog.get_exam(exam_id)
        except ExamUnavailableError as e:
            logger.warning(f"CBT catalog unavailable for exam {exam_id}: {e}")
            return None

    # Import

    def import_for(self, link_id: str, incremental: bool = False) -> ImportSummary:
        """
        Pull new attempts for a link and store them as pending rows.

        Attempts already imported for the link (same student and attempt) are
        skipped, so running this again only adds genuinely new attempts. A row
        whose score cannot be converted is still stored, with no converted
        score, so a reviewer sees it.

        Args:
            link_id: Link to import for
            incremental: Only ask the catalog for attempts submitted since the
                latest one this link has seen, instead of rescanning them all

        Raises:
            ValidationError: unknown or inactive link
            ConfigurationError: no max score can be resolved for the link's class/term
        """
        link = self._get_link(link_id)
        if not link.is_active:
            raise ValidationError(f"CBT link {link_id} is not active")

        summary = ImportSummary()

        exam = self._fetch_exam(link.cbt_exam_id)
        if exam is None:
            summary.warnings.append(
                f"CBT exam {link.cbt_exam_id} is not available; nothing imported"
            )
            logger.warning(summary.warnings[-1])
            return summary

        if link.subject_id and exam.subject_id and link.subject_id != exam.subject_id:
            summary.warnings.append(
                f"Exam '{exam.title}' now belongs to subject {exam.subject_id}, "
                f"link is scoped to {link.subject_id}; nothing imported"
            )
            logger.warning(summary.warnings[-1])
            return summary

        # Values used after per-row commits/rollbacks, which expire the link
        component_id = link.assessment_component_id
        mapping_type = link.score_mapping_type
        override = link.max_score_override
        term_id = link.term_id
        scope_class_id = link.class_id or exam.class_id
        since = link.last_attempt_at if incremental else None

        snapshot = None
        if mapping_type != "scaled":
            # structures are read once; edits made during the import do not
            # change rows converted by it
            snapshot = self.resolver.snapshot(component_id)
            if scope_class_id is not None:
                snapshot.resolve(scope_class_id, term_id)

        try:
            attempts = self.catalog.list_attempts(exam.id, since=since)
        except ExamUnavailableError as e:
            summary.warnings.append(f"Could not list attempts for exam {exam.id}: {e}")
            logger.warning(summary.warnings[-1])
            return summary

        existing = self._existing_keys(link_id)
        cursor = since

        for attempt in attempts:
            if attempt.submitted_at is not None:
                cursor = max(cursor or 0, attempt.submitted_at)

            if (
                scope_class_id
                and attempt.class_id
                and attempt.class_id != scope_class_id
            ):
                summary.out_of_scope += 1
                continue

            key = (attempt.student_id, attempt.attempt_id)
            if key in existing:
                summary.skipped_existing += 1
                continue

            row = self._build_row(
                link_id,
                attempt,
                scope_class_id or attempt.class_id,
                mapping_type,
                override,
                snapshot,
                term_id,
            )
            row_id, converted, flagged = row.id, row.converted_score, row.flagged
            try:
                self.db.add(row)
                self.db.flush()
                self.db.add(
                    ScoreImportAudit(
                        import_id=row_id,
                        previous_status=None,
                        new_status="pending",
                        reason=row.note,
                    )
                )
                self.db.commit()
            except IntegrityError:
                # a concurrent import stored this attempt first
                self.db.rollback()
                summary.skipped_existing += 1
                existing.add(key)
                continue

            existing.add(key)
            summary.imported += 1
            if converted is None:
                summary.needs_attention += 1
            elif flagged:
                summary.flagged += 1
            audit_logger.info(
                f"row={row_id} link={link_id} student={attempt.student_id} "
                f"attempt={attempt.attempt_id} none->pending converted={converted}"
            )

        if cursor is not None and cursor != since:
            link = self._get_link(link_id)
            link.last_attempt_at = max(link.last_attempt_at or 0, cursor)
            self.db.commit()

        logger.info(
            f"Import for link {link_id}: imported={summary.imported} "
            f"skipped_existing={summary.skipped_existing} "
            f"needs_attention={summary.needs_attention} flagged={summary.flagged}"
        )
        return summary

    def _existing_keys(self, link_id: str) -> set:
        return set(
            self.db.query(ScoreImportRow.student_id, ScoreImportRow.attempt_id)
            .filter(ScoreImportRow.link_id == link_id)
            .all()
        )

    def _build_row(
        self,
        link_id: str,
        attempt: Attempt,
        class_id: Optional[str],
        mapping_type: str,
        override: Optional[Decimal],
        snapshot: Optional[StructureSnapshot],
        term_id: str,
    ) -> ScoreImportRow:
        row = ScoreImportRow(
            id=new_id(),
            link_id=link_id,
            student_id=attempt.student_id,
            attempt_id=attempt.attempt_id,
            class_id=class_id,
            status="pending",
        )
        try:
            row.cbt_raw_score = to_decimal(attempt.raw_score, "raw_score")
            row.cbt_max_score = to_decimal(attempt.raw_max, "raw_max")
            result = self._convert(attempt, class_id, mapping_type, override, snapshot, term_id)
        except AssessmentError as e:
            logger.warning(
                f"Could not convert attempt {attempt.attempt_id} for student "
                f"{attempt.student_id}: {e}"
            )
            row.converted_score = None
            row.flagged = True
            row.note = str(e)
            return row

        row.converted_score = result.converted_score
        row.target_max_score = result.max_score
        row.flagged = result.flagged
        row.note = result.warning
        return row

    def _convert(
        self,
        attempt: Attempt,
        class_id: Optional[str],
        mapping_type: str,
        override: Optional[Decimal],
        snapshot: Optional[StructureSnapshot],
        term_id: str,
    ) -> ConversionResult:
        target = None
        if snapshot is not None:
            target = snapshot.resolve(class_id, term_id).max_score
        return convert(
            attempt.raw_score,
            attempt.raw_max,
            mapping_type,
            max_score_override=override,
            target_max_score=target,
        )

    # Review

    def transition(
        self,
        row_id: str,
        expected: str,
        new: str,
        reason: Optional[str] = None,
    ) -> None:
        """
        Move a row from `expected` to `new` if it is still in `expected`.

        The change is staged in the current transaction; the caller commits.

        Raises:
            ConflictError: the transition is not allowed from `expected`, or
                the row is no longer in `expected` (another caller got there first)
        """
        if not can_transition(expected, new):
            raise ConflictError(
                f"Row {row_id} cannot move from {expected} to {new}", row_id
            )

        values = {"status": new, STATUS_TIMESTAMPS[new]: now_ts()}
        if new == "rejected":
            values["rejection_reason"] = reason or None

        stmt = (
            update(ScoreImportRow)
            .where(
                ScoreImportRow.id == row_id,
                ScoreImportRow.status == expected,
                ScoreImportRow.rejected_at.is_(None),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if new in ("approved", "synced"):
            stmt = stmt.where(ScoreImportRow.converted_score.is_not(None))

        result = self.db.execute(stmt)
        cached = self.db.identity_map.get(
            self.db.identity_key(ScoreImportRow, row_id)
        )
        if cached is not None:
            self.db.expire(cached)

        if result.rowcount != 1:
            raise ConflictError(
                f"Row {row_id} is no longer {expected}; reload it and retry", row_id
            )

        self.db.add(
            ScoreImportAudit(
                import_id=row_id, previous_status=expected, new_status=new, reason=reason
            )
        )
        audit_logger.info(
            f"row={row_id} {expected}->{new}" + (f" reason={reason!r}" if reason else "")
        )

    def _load_for_review(
        self, row_id: str, link_id: Optional[str], errors: List[RowError]
    ) -> Optional[ScoreImportRow]:
        row = self.db.get(ScoreImportRow, row_id)
        if row is None:
            errors.append(RowError(row_id, "Import row not found"))
            return None
        if link_id is not None and row.link_id != link_id:
            errors.append(RowError(row_id, f"Row belongs to link {row.link_id}"))
            return None
        if row.rejected_at is not None:
            errors.append(RowError(row_id, "Row was rejected and cannot be reviewed again"))
            return None
        return row

    def approve(
        self, row_ids: Iterable[str], link_id: Optional[str] = None
    ) -> ReviewSummary:
        """
        Approve pending rows that have a converted score.

        Rows that cannot be approved are reported in `errors` while the rest
        of the batch goes through. Links with auto sync are synced afterwards.
        """
        summary = ReviewSummary()
        touched_links = set()

        for row_id in dict.fromkeys(row_ids):
            row = self._load_for_review(row_id, link_id, summary.errors)
            if row is None:
                continue
            if row.converted_score is None:
                summary.errors.append(
                    RowError(row_id, "Needs attention: no converted score to approve")
                )
                continue
            try:
                self.transition(row_id, row.status, "approved")
                self.db.commit()
            except ConflictError as e:
                self.db.rollback()
                summary.errors.append(RowError(row_id, str(e)))
                continue
            summary.succeeded.append(row_id)
            touched_links.add(row.link_id)

        for touched_id in sorted(touched_links):
            link = self.db.get(CbtAssessmentLink, touched_id)
            if link is not None and link.auto_sync:
                summary.synced[touched_id] = self.sync(touched_id)

        logger.info(
            f"Approved {len(summary.succeeded)} rows, {len(summary.errors)} not approved"
        )
        return summary

    def approve_all(self, link_id: str) -> ReviewSummary:
        """Approve every pending row of a link that has a converted score."""
        self._get_link(link_id)
        row_ids = [
            row_id
            for (row_id,) in self.db.query(ScoreImportRow.id)
            .filter(
                ScoreImportRow.link_id == link_id,
                ScoreImportRow.status == "pending",
                ScoreImportRow.rejected_at.is_(None),
                ScoreImportRow.converted_score.is_not(None),
            )
            .order_by(ScoreImportRow.created_at, ScoreImportRow.id)
            .all()
        ]
        return self.approve(row_ids, link_id=link_id)

    def reject(
        self,
        row_ids: Iterable[str],
        reason: Optional[str] = None,
        link_id: Optional[str] = None,
    ) -> ReviewSummary:
        """Reject pending rows. Rejected rows are kept for audit and never synced."""
        summary = ReviewSummary()
        for row_id in dict.fromkeys(row_ids):
            row = self._load_for_review(row_id, link_id, summary.errors)
            if row is None:
                continue
            try:
                self.transition(row_id, row.status, "rejected", reason=reason)
                self.db.commit()
            except ConflictError as e:
                self.db.rollback()
                summary.errors.append(RowError(row_id, str(e)))
                continue
            summary.succeeded.append(row_id)

        logger.info(
            f"Rejected {len(summary.succeeded)} rows, {len(summary.errors)} not rejected"
        )
        return summary

    # Sync

    def _sync_candidates(self, link_id: str) -> List[str]:
        return [
            row_id
            for (row_id,) in self.db.query(ScoreImportRow.id)
            .filter(
                ScoreImportRow.link_id == link_id,
                ScoreImportRow.status == "approved",
                ScoreImportRow.rejected_at.is_(None),
                ScoreImportRow.converted_score.is_not(None),
            )
            .order_by(ScoreImportRow.approved_at, ScoreImportRow.id)
            .all()
        ]

    def sync(self, link_id: str) -> SyncSummary:
        """
        Write every approved row of a link to the gradebook and mark it synced.

        The status change and the gradebook write are committed together; a
        failed write rolls the row back to approved and is reported in
        `failed`. Rows synced by a concurrent caller are left alone.
        """
        link = self._get_link(link_id)
        component_id = link.assessment_component_id
        term_id, session_id = link.term_id, link.session_id
        subject_id = link.subject_id

        summary = SyncSummary()
        for row_id in self._sync_candidates(link_id):
            row = self.db.get(ScoreImportRow, row_id)
            if row is None:
                continue
            if not row.class_id:
                summary.failed.append(
                    RowError(row_id, "No class recorded for this score")
                )
                continue

            student_id, class_id, score = row.student_id, row.class_id, row.converted_score
            try:
                self.transition(row_id, "approved", "synced")
            except ConflictError:
                self.db.rollback()
                continue

            try:
                self.gradebook.upsert_score(
                    student_id,
                    component_id,
                    class_id,
                    term_id,
                    session_id,
                    score,
                    subject_id=subject_id,
                )
                self.db.commit()
            except Exception as e:
                self.db.rollback()
                logger.error(f"Gradebook write failed for row {row_id}: {e}")
                summary.failed.append(RowError(row_id, str(e)))
                continue

            summary.synced += 1

        logger.info(
            f"Sync for link {link_id}: synced={summary.synced} failed={len(summary.failed)}"
        )
        return summary

    # Listings

    def pending_rows(self, link_id: str) -> List[ScoreImportRow]:
        """Pending rows of a link, the ones needing attention first."""
        self._get_link(link_id)
        return (
            self.db.query(ScoreImportRow)
            .filter(
                ScoreImportRow.link_id == link_id,
                ScoreImportRow.status == "pending",
                ScoreImportRow.rejected_at.is_(None),
            )
            .order_by(
                ScoreImportRow.converted_score.is_not(None),
                ScoreImportRow.created_at,
                ScoreImportRow.id,
            )
            .all()
        )

    def history(
        self, link_id: str, status: Optional[str] = None
    ) -> List[ScoreImportRow]:
        self._get_link(link_id)
        query = self.db.query(ScoreImportRow).filter(ScoreImportRow.link_id == link_id)
        if status:
            query = query.filter(ScoreImportRow.status == status)
        return query.order_by(ScoreImportRow.created_at, ScoreImportRow.id).all()
