"""
LabDash Webhooks - Report Upsert

A report is identified by reportId (primary webhook) OR by the pair
(billId, testId) (report-status webhook). Both keys go through the same
upsert: reportId is tried first, then (billId, testId).
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import Report
from .file_store import ReportFileStore, default_store
from .normalizer import normalize_report_status

logger = logging.getLogger(__name__)

# report column <- extracted field
REPORT_FIELDS = (
    "report_id",
    "bill_id",
    "test_id",
    "lab_report_id",
    "test_name",
    "test_code",
    "test_category",
    "sample_date",
    "report_date",
    "approval_date",
    "signing_doctor",
    "report_base64",
)

IDENTITY_FIELDS = ("report_id", "bill_id", "test_id")


def find_report(db: Session, report_id: Optional[str], bill_id: Optional[str], test_id: Optional[str]) -> Optional[Report]:
    if report_id:
        report = db.query(Report).filter_by(report_id=report_id).first()
        if report:
            return report
    if bill_id and test_id:
        return db.query(Report).filter_by(bill_id=bill_id, test_id=test_id).first()
    return None


def _store_file(report: Report, base64_data: str, store: ReportFileStore) -> None:
    """Decode once: a report that already has a pdf_path is left alone."""
    if report.pdf_path:
        logger.debug(f"⏭️ Report {report.report_id or report.id} already has a file, not re-decoding")
        return
    stem = report.report_id or f"{report.bill_id}_{report.test_id}"
    stored = store.save_base64(base64_data, stem)
    if stored:
        report.pdf_path = stored["pdf_path"]
        report.file_size = stored["file_size"]
        report.file_name = stored["file_name"]


def _apply_fields(report: Report, known: Dict[str, Any]) -> None:
    for field in REPORT_FIELDS:
        value = known.get(field)
        if value is None:
            continue
        # Identity keys are fill-only so a report never moves between keys
        if field in IDENTITY_FIELDS and getattr(report, field):
            continue
        # The stored base64 always matches the file at pdf_path
        if field == "report_base64" and report.pdf_path:
            continue
        setattr(report, field, value)


def upsert_report(
    db: Session,
    known: Dict[str, Any],
    raw: Optional[Dict[str, Any]] = None,
    patient_pk: Optional[int] = None,
    doctor_pk: Optional[int] = None,
    file_store: Optional[ReportFileStore] = None,
) -> Tuple[Report, bool]:
    """
    Create or update one Report from extracted fields.

    Only fields present in `known` are applied on update; nothing is nulled.
    Flushes but does not commit.

    A concurrent insert of the same report is resolved by rolling back and
    updating the winner's row, so callers commit their own pending work
    before calling this.

    RETURNS:
        (report, created)
    """
    report_id = known.get("report_id")
    bill_id = known.get("bill_id")
    test_id = known.get("test_id")

    if not report_id and not (bill_id and test_id):
        raise ValueError("Report requires reportId or both billId and testId")

    for attempt in range(2):
        report = find_report(db, report_id, bill_id, test_id)
        created = report is None

        if created:
            report = Report(status=normalize_report_status(known.get("status")))
            db.add(report)
        elif known.get("status") is not None:
            report.status = normalize_report_status(known["status"])

        _apply_fields(report, known)

        if report.status == "Report Generated" and not report.report_generated_date:
            report.report_generated_date = known.get("approval_date") or known.get("report_date") or datetime.utcnow()

        if raw:
            report.webhook_metadata = raw

        if patient_pk and not report.patient_id:
            report.patient_id = patient_pk
        if doctor_pk and not report.doctor_id:
            report.doctor_id = doctor_pk

        try:
            db.flush()
            break
        except IntegrityError as e:
            db.rollback()
            logger.warning(f"⚠️ Report (reportId={report_id}, billId={bill_id}, testId={test_id}) created concurrently (attempt {attempt + 1}): {e.orig}")
    else:
        raise ValueError(f"Could not save report (reportId={report_id}, billId={bill_id}, testId={test_id})")

    if created:
        logger.info(f"🆕 Created report {report.id} (reportId={report_id}, billId={bill_id}, testId={test_id})")
    else:
        logger.info(f"📝 Updated report {report.id} (status={report.status})")

    # File goes to disk only once the row is safely flushed
    if known.get("report_base64"):
        _store_file(report, known["report_base64"], file_store or default_store())
        db.flush()

    return report, created


def upsert_report_by_report_id(db: Session, known: Dict[str, Any], raw=None, **kwargs) -> Tuple[Report, bool]:
    """Primary webhook path, keyed by reportId."""
    if not known.get("report_id"):
        raise ValueError("reportId is required")
    return upsert_report(db, known, raw, **kwargs)


def upsert_report_by_bill_test(db: Session, known: Dict[str, Any], raw=None, **kwargs) -> Tuple[Report, bool]:
    """Report-status webhook path, keyed by (billId, testId)."""
    if not (known.get("bill_id") and known.get("test_id")):
        raise ValueError("billId and testId are required")
    return upsert_report(db, known, raw, **kwargs)
