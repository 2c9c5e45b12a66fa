"""
=============================================================================
PATIENT CONSOLIDATOR
=============================================================================

Folds partial patient facts from four webhook kinds into one Patient row:

    registration   primary report webhook (reportId, demographics, PDF)
    bill           bill generation (most demographics + billing)
    report_status  report status change (signing doctor, report dates)
    sample_status  sample status change (accession info)

IDENTITY PRIORITY (lookup and new ids):
    1. patientId       -> PAT-<v>
    2. labPatientId    -> LAB-PAT-<v>
    3. billId          -> BILL-<v>
    4. name + phone    -> PAT-<FIRST6>-<LAST4>   (weak, can collide)
    5. timestamp       -> PAT-<ms>-<rand>       (never matched again)

Lookup tries the explicit patient identifiers before the bill id, because
one patient keeps the same identifier across many bills.

MERGE RULES:
    scalars         fill-only (first write wins)
    workflow        status / current_stage / report_status take the latest
    address         fill-only per key, null keys stripped
    arrays          concatenated, duplicates kept
    dates           only real datetimes, latest wins
    other objects   shallow merge, latest keys win
=============================================================================
"""
import logging
import re
import time
import uuid
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from .. import db as database
from ..models import Patient, Report, RequestDump, ReportStatusTracker, SampleStatusTracker
from .extractor import extract, doctor_name_from_referral, doctor_name_from_signing_doctor
from .normalizer import normalize_patient_status, normalize_report_status
from .directory import find_or_create_doctor, find_or_create_lab, refresh_patient_count

logger = logging.getLogger(__name__)

EVENT_KINDS = ("registration", "bill", "report_status", "sample_status")

WORKFLOW_FIELDS = {"status", "current_stage", "report_status"}
ARRAY_FIELDS = {"signing_doctor", "file_attachments", "report_format_and_values"}
DATE_FIELDS = {
    "date_of_birth", "bill_time", "sample_date", "accession_date",
    "report_date", "approval_date", "last_visit_date",
}

# Columns a fragment may write; patient_id is assigned once on create
PATIENT_FIELDS = {
    column.name for column in Patient.__table__.columns
} - {"id", "patient_id", "assigned_doctor_id", "registration_date", "created_at", "updated_at"}


SOURCE_MODELS = (
    ("bill", RequestDump),
    ("report_status", ReportStatusTracker),
    ("sample_status", SampleStatusTracker),
)


# ==================== Identity ====================

def generate_patient_id(data: Dict[str, Any]) -> str:
    if data.get("patient_id_number"):
        return f"PAT-{data['patient_id_number']}"
    if data.get("lab_patient_id"):
        return f"LAB-PAT-{data['lab_patient_id']}"
    if data.get("bill_id"):
        return f"BILL-{data['bill_id']}"

    name, phone = data.get("name"), data.get("phone")
    if name and phone:
        digits = re.sub(r"\D", "", str(phone))
        if digits:
            name_part = re.sub(r"\s+", "", str(name))[:6].upper()
            return f"PAT-{name_part}-{digits[-4:]}"

    return f"PAT-{int(time.time() * 1000)}-{uuid.uuid4().hex[:4].upper()}"


def find_existing_patient(db: Session, fragment: Dict[str, Any]) -> Optional[Patient]:
    """Explicit identifiers first, then the bill id, then the name + phone id."""
    patient_id_number = fragment.get("patient_id_number")
    if patient_id_number:
        patient = db.query(Patient).filter(or_(
            Patient.patient_id_number == patient_id_number,
            Patient.patient_id == f"PAT-{patient_id_number}",
        )).first()
        if patient:
            return patient

    lab_patient_id = fragment.get("lab_patient_id")
    if lab_patient_id:
        patient = db.query(Patient).filter(or_(
            Patient.lab_patient_id == lab_patient_id,
            Patient.patient_id == f"LAB-PAT-{lab_patient_id}",
        )).first()
        if patient:
            return patient

    bill_id = fragment.get("bill_id")
    if bill_id:
        filters = [Patient.bill_id == bill_id, Patient.patient_id == f"BILL-{bill_id}"]
        if fragment.get("bill_id_number") is not None:
            filters.append(Patient.bill_id_number == fragment["bill_id_number"])
        patient = db.query(Patient).filter(or_(*filters)).first()
        if patient:
            return patient

    if fragment.get("name") and fragment.get("phone"):
        patient = db.query(Patient).filter_by(patient_id=generate_patient_id({
            "name": fragment["name"], "phone": fragment["phone"],
        })).first()
        if patient:
            return patient

    return None


# ==================== Merge ====================

def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def merge_patient_data(existing: Dict[str, Any], fragment: Dict[str, Any]) -> Dict[str, Any]:
    """Pure merge of a fragment into an existing record dict (see module docstring)."""
    merged = dict(existing)

    for key, value in fragment.items():
        if value is None:
            continue

        if key in DATE_FIELDS:
            if isinstance(value, datetime):
                merged[key] = value
            continue

        if key == "address":
            if not isinstance(value, dict):
                continue
            address = dict(merged.get("address") or {})
            for part, part_value in value.items():
                if _is_empty(address.get(part)):
                    address[part] = part_value
            address = {part: v for part, v in address.items() if v is not None}
            merged["address"] = address or None
            continue

        if key in WORKFLOW_FIELDS:
            merged[key] = value
            continue

        if isinstance(value, list):
            if key in ARRAY_FIELDS:
                merged[key] = list(merged.get(key) or []) + list(value)
            else:
                merged[key] = value
            continue

        if isinstance(value, dict):
            if value:
                merged[key] = {**(merged.get(key) or {}), **value}
            continue

        if _is_empty(merged.get(key)):
            merged[key] = value

    return merged


def patient_as_dict(patient: Patient) -> Dict[str, Any]:
    return {field: getattr(patient, field) for field in PATIENT_FIELDS}


# ==================== Fragments ====================

def build_fragment(kind: str, known: Dict[str, Any], raw: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Patient-shaped fragment for one event.
    Status is normalized per kind; the primary webhook always carries one.
    """
    if kind not in EVENT_KINDS:
        raise ValueError(f"Unknown event kind: {kind}")

    fragment = {
        key: value for key, value in known.items()
        if key in PATIENT_FIELDS and key not in WORKFLOW_FIELDS
    }

    status = known.get("status")
    if kind == "registration":
        fragment["status"] = normalize_patient_status(status)
        if status is not None:
            fragment["report_status"] = normalize_report_status(status)
    elif status is not None:
        fragment["status"] = normalize_patient_status(status)
        if kind == "report_status":
            fragment["report_status"] = normalize_report_status(status)

    if known.get("current_stage"):
        fragment["current_stage"] = known["current_stage"]

    if kind == "bill" and known.get("bill_time"):
        fragment["last_visit_date"] = known["bill_time"]

    if raw:
        fragment["webhook_metadata"] = raw

    return fragment


def seed_from_bill(db: Session, bill_id: Optional[str]) -> Dict[str, Any]:
    """Demographics from the latest bill-generation payload for this bill id."""
    if not bill_id:
        return {}

    dump = db.query(RequestDump).filter(
        RequestDump.bill_id == bill_id
    ).order_by(RequestDump.id.desc()).first()
    if dump is None:
        return {}

    logger.debug(f"🌱 Seeding patient for bill {bill_id} from RequestDump {dump.id}")
    return build_fragment("bill", extract(dump.request).known)


# ==================== Consolidation ====================

def merge_into_patient(db: Session, fragment: Dict[str, Any]) -> Tuple[Optional[Patient], bool]:
    """
    Resolve identity, merge and commit.

    RETURNS:
        (patient, created); (None, False) when the fragment is nameless and
        matches nobody, which defers it to the full consolidation run
    """
    for attempt in range(2):
        patient = find_existing_patient(db, fragment)

        if not patient and not fragment.get("name"):
            seed = seed_from_bill(db, fragment.get("bill_id"))
            if seed.get("name"):
                fragment = merge_patient_data(seed, fragment)
                patient = find_existing_patient(db, fragment)

        if not patient and not fragment.get("name"):
            logger.info(f"⏸️ Deferring nameless fragment (billId={fragment.get('bill_id')})")
            return None, False

        if patient:
            current = patient_as_dict(patient)
            merged = merge_patient_data(current, fragment)
            changed = [key for key, value in merged.items() if key in PATIENT_FIELDS and value != current.get(key)]
            for key in changed:
                setattr(patient, key, merged[key])
            db.commit()
            if changed:
                logger.info(f"📝 Merged into patient {patient.patient_id}: {', '.join(sorted(changed))}")
            return patient, False

        merged = merge_patient_data({}, fragment)
        patient_id = generate_patient_id(merged)
        values = {key: value for key, value in merged.items() if key in PATIENT_FIELDS and value is not None}
        patient = Patient(patient_id=patient_id, **values)
        try:
            db.add(patient)
            db.commit()
            db.refresh(patient)
            logger.info(f"🆕 Created patient {patient_id} ({patient.name})")
            return patient, True
        except IntegrityError as e:
            db.rollback()
            logger.warning(f"⚠️ Patient {patient_id} created concurrently (attempt {attempt + 1}): {e.orig}")

    raise ValueError(f"Could not create patient for fragment (billId={fragment.get('bill_id')})")


def link_related(db: Session, patient: Patient, known: Optional[Dict[str, Any]] = None) -> None:
    """
    Link doctor (referral first, then signing doctor), attach unlinked
    reports with the same bill id, refresh the doctor's patient_count.
    """
    known = known or {}

    if known:
        find_or_create_lab(db, known)

    doctor = patient.assigned_doctor
    if doctor is None:
        doctor_name = (
            known.get("referral_doctor_name")
            or known.get("doctor_name")
            or known.get("signing_doctor_name")
            or doctor_name_from_referral(patient.bill_referral)
            or doctor_name_from_signing_doctor(patient.signing_doctor)
        )
        if doctor_name:
            doctor = find_or_create_doctor(
                db,
                doctor_name,
                doc_id=known.get("doc_id"),
                email=known.get("doctor_email"),
                phone=known.get("doctor_phone"),
                specialty=known.get("specialty"),
            )
            if doctor:
                patient.assigned_doctor_id = doctor.id
                logger.info(f"🩺 Linked patient {patient.patient_id} to doctor {doctor.doctor_id}")

    if patient.bill_id:
        reports = db.query(Report).filter(Report.bill_id == patient.bill_id, Report.patient_id.is_(None)).all()
        for report in reports:
            report.patient_id = patient.id
            if doctor and not report.doctor_id:
                report.doctor_id = doctor.id
        if reports:
            logger.info(f"📎 Attached {len(reports)} report(s) to patient {patient.patient_id}")

    db.flush()
    if doctor:
        refresh_patient_count(db, doctor)
    db.commit()


def consolidate_event(db: Session, kind: str, payload: Dict[str, Any]) -> Tuple[Optional[Patient], bool]:
    fields = extract(payload)
    fragment = build_fragment(kind, fields.known, fields.all)
    patient, created = merge_into_patient(db, fragment)
    if patient:
        link_related(db, patient, fields.known)
    return patient, created


def consolidate_from_webhook(kind: str, payload: Dict[str, Any]) -> None:
    """
    Background entry point: own session, every failure logged and dropped.
    """
    try:
        with database.get_db_context() as db:
            patient, created = consolidate_event(db, kind, payload)
            if patient:
                action = "created" if created else "updated"
                logger.info(f"✅ Consolidated {kind} event: patient {patient.patient_id} {action}")
    except Exception as e:
        logger.error(f"❌ Background consolidation failed for {kind} event: {e}", exc_info=True)


# ==================== Full Consolidation ====================

def _report_known(report: Report) -> Dict[str, Any]:
    known = {
        "report_id": report.report_id,
        "bill_id": report.bill_id,
        "test_id": report.test_id,
        "lab_report_id": report.lab_report_id,
        "test_name": report.test_name,
        "test_code": report.test_code,
        "report_date": report.report_date,
        "approval_date": report.approval_date,
    }
    known = {key: value for key, value in known.items() if value is not None}
    if report.status:
        known["report_status"] = report.status
    return known


def run_full_consolidation(db: Session) -> Dict[str, int]:
    """
    Replay every source through the same resolve/merge path.

    Sources in order: existing patients, RequestDump, ReportStatusTracker,
    SampleStatusTracker, Report. Per-record errors are counted, not fatal.
    """
    stats = {
        "existing_patients": 0,
        "request_dumps": 0,
        "report_trackers": 0,
        "sample_trackers": 0,
        "reports": 0,
        "created": 0,
        "updated": 0,
        "skipped": 0,
        "errors": 0,
    }
    counters = {"bill": "request_dumps", "report_status": "report_trackers", "sample_status": "sample_trackers"}

    logger.info("🔄 Starting full patient consolidation")

    # Step 1: existing patients
    for patient in db.query(Patient).order_by(Patient.id).all():
        stats["existing_patients"] += 1
        try:
            link_related(db, patient)
        except Exception as e:
            db.rollback()
            stats["errors"] += 1
            logger.error(f"⚠️ Error relinking patient {patient.patient_id}: {e}")
    logger.info(f"📋 Step 1: processed {stats['existing_patients']} existing patients")

    # Steps 2-4: raw webhook logs
    for step, (kind, model) in enumerate(SOURCE_MODELS, start=2):
        rows = db.query(model.id, model.request).order_by(model.id).all()
        for row_id, request in rows:
            stats[counters[kind]] += 1
            try:
                patient, created = consolidate_event(db, kind, request)
                if patient is None:
                    stats["skipped"] += 1
                elif created:
                    stats["created"] += 1
                else:
                    stats["updated"] += 1
            except Exception as e:
                db.rollback()
                stats["errors"] += 1
                logger.error(f"⚠️ Error processing {model.__name__} {row_id}: {e}")
        logger.info(f"📋 Step {step}: processed {stats[counters[kind]]} {model.__name__} entries")

    # Step 5: reports
    for report in db.query(Report).order_by(Report.id).all():
        stats["reports"] += 1
        try:
            fragment = _report_known(report)
            patient, created = merge_into_patient(db, fragment)
            if patient is None:
                stats["skipped"] += 1
                continue
            stats["created" if created else "updated"] += 1
            if not report.patient_id:
                report.patient_id = patient.id
            link_related(db, patient)
        except Exception as e:
            db.rollback()
            stats["errors"] += 1
            logger.error(f"⚠️ Error processing Report {report.id}: {e}")
    logger.info(f"📋 Step 5: processed {stats['reports']} reports")

    logger.info(
        f"🏁 Consolidation finished. Created: {stats['created']}, Updated: {stats['updated']}, "
        f"Skipped: {stats['skipped']}, Errors: {stats['errors']}"
    )
    return stats
