"""
LabDash Webhooks - Doctor & Lab Directory
Find-or-create for the entities webhooks only mention by name
"""
import logging
import re
import uuid
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from ..models import Doctor, Lab, Patient
from .normalizer import normalize_specialty, DEFAULT_SPECIALTY

logger = logging.getLogger(__name__)

PLACEHOLDER_EMAIL_DOMAIN = "crelio.local"
PLACEHOLDER_PHONE = "0000000000"

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


# ==================== Helpers ====================

def is_valid_email(value: Any) -> bool:
    return isinstance(value, str) and bool(EMAIL_PATTERN.match(value.strip()))


def doctor_name_key(name: str) -> str:
    """'  Dr.   SMITH ' -> 'dr. smith'"""
    return " ".join(name.split()).lower()


def slugify(name: str) -> str:
    """'Dr. Anita Rao' -> 'dr.anita.rao'"""
    slug = re.sub(r"[^a-z0-9]+", ".", name.lower()).strip(".")
    return slug or "doctor"


def is_placeholder_email(email: Optional[str]) -> bool:
    return not email or email.lower().endswith(f"@{PLACEHOLDER_EMAIL_DOMAIN}")


def is_placeholder_phone(phone: Optional[str]) -> bool:
    return not phone or phone == PLACEHOLDER_PHONE


# ==================== Doctor ====================

def find_doctor_by_name(db: Session, name: str) -> Optional[Doctor]:
    return db.query(Doctor).filter(Doctor.name_key == doctor_name_key(name)).first()


def _upgrade_doctor(db: Session, doctor: Doctor, email: Optional[str], phone: Optional[str], specialty: Optional[str]) -> None:
    """Replace placeholder contact data and a default specialty. Real values are never overwritten."""
    updates = []

    if email and is_valid_email(email) and is_placeholder_email(doctor.email):
        email = email.strip()
        taken = db.query(Doctor.id).filter(Doctor.email == email, Doctor.id != doctor.id).first()
        if not taken:
            doctor.email = email
            updates.append("email")

    if phone and is_placeholder_phone(doctor.phone):
        doctor.phone = phone
        updates.append("phone")

    if specialty:
        normalized = normalize_specialty(specialty)
        if doctor.specialty == DEFAULT_SPECIALTY and normalized != DEFAULT_SPECIALTY:
            doctor.specialty = normalized
            updates.append("specialty")

    if updates:
        db.commit()
        logger.info(f"📝 Upgraded doctor {doctor.doctor_id}: {', '.join(updates)}")


def _new_doctor(db: Session, name: str, doc_id: Optional[str], email: Optional[str],
                phone: Optional[str], specialty: Optional[str], attempt: int) -> Doctor:
    doctor_id = f"DOC-{doc_id}" if doc_id else f"DOC-{uuid.uuid4().hex[:8].upper()}"
    if attempt or db.query(Doctor.id).filter_by(doctor_id=doctor_id).first():
        doctor_id = f"DOC-{uuid.uuid4().hex[:8].upper()}"

    if email and is_valid_email(email) and not db.query(Doctor.id).filter_by(email=email.strip()).first():
        doctor_email = email.strip()
    else:
        doctor_email = f"{slugify(name)}@{PLACEHOLDER_EMAIL_DOMAIN}"
        if attempt or db.query(Doctor.id).filter_by(email=doctor_email).first():
            doctor_email = f"{slugify(name)}.{doctor_id.lower().replace('-', '')}@{PLACEHOLDER_EMAIL_DOMAIN}"

    return Doctor(
        doctor_id=doctor_id,
        name=" ".join(name.split()),
        name_key=doctor_name_key(name),
        email=doctor_email,
        phone=phone or PLACEHOLDER_PHONE,
        specialty=normalize_specialty(specialty) if specialty else DEFAULT_SPECIALTY,
        status="Active",
        patient_count=0,
    )


def find_or_create_doctor(
    db: Session,
    name: Optional[str],
    doc_id: Optional[str] = None,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    specialty: Optional[str] = None,
) -> Optional[Doctor]:
    """
    Case-insensitive exact-name lookup, create when missing.

    COMMITS the session. Callers must commit their own pending work first,
    because a conflicting insert is rolled back and retried.

    RETURNS:
        Doctor, or None when no usable name was given
    """
    if not name or not isinstance(name, str) or not name.strip():
        return None

    doctor = find_doctor_by_name(db, name)
    if doctor:
        logger.debug(f"✅ Found doctor {doctor.doctor_id} for '{name}'")
        _upgrade_doctor(db, doctor, email, phone, specialty)
        return doctor

    for attempt in range(2):
        doctor = _new_doctor(db, name, doc_id, email, phone, specialty, attempt)
        try:
            db.add(doctor)
            db.commit()
            db.refresh(doctor)
            logger.info(f"🆕 Created doctor {doctor.doctor_id} ({doctor.name})")
            return doctor
        except IntegrityError as e:
            db.rollback()
            # Another request may have created the same name concurrently
            existing = find_doctor_by_name(db, name)
            if existing:
                logger.info(f"🔁 Doctor '{name}' created concurrently, using {existing.doctor_id}")
                return existing
            logger.warning(f"⚠️ Doctor insert conflict for '{name}' (attempt {attempt + 1}): {e.orig}")

    raise ValueError(f"Could not create doctor '{name}'")


def refresh_patient_count(db: Session, doctor: Doctor) -> int:
    """Recompute the denormalized patient_count. Does not commit."""
    count = db.query(func.count(Patient.id)).filter(Patient.assigned_doctor_id == doctor.id).scalar() or 0
    doctor.patient_count = count
    return count


# ==================== Lab ====================

def find_or_create_lab(db: Session, known: Dict[str, Any]) -> Optional[Lab]:
    """
    Lookup by lab_id, then case-insensitive lab name.
    Organization fields fill empty contact/address data. Commits.
    """
    lab_id = known.get("lab_id")
    lab_name = known.get("lab_name") or known.get("org_name")
    if not lab_id and not lab_name:
        return None

    lab = None
    if lab_id:
        lab = db.query(Lab).filter_by(lab_id=lab_id).first()
    if not lab and lab_name:
        lab = db.query(Lab).filter(func.lower(Lab.lab_name) == lab_name.lower()).first()

    address = {
        key: value for key, value in {
            "street": known.get("org_address"),
            "city": known.get("org_city"),
            "area": known.get("org_area"),
        }.items() if value
    }
    email = known.get("org_email") if is_valid_email(known.get("org_email")) else None

    if lab:
        updates = []
        if not lab.email and email:
            lab.email = email
            updates.append("email")
        if not lab.phone and known.get("org_contact"):
            lab.phone = known["org_contact"]
            updates.append("phone")
        if address:
            merged = dict(lab.address or {})
            for key, value in address.items():
                if not merged.get(key):
                    merged[key] = value
            if merged != (lab.address or {}):
                lab.address = merged
                updates.append("address")
        if updates:
            db.commit()
            logger.info(f"📝 Updated lab {lab.lab_id}: {', '.join(updates)}")
        return lab

    lab = Lab(
        lab_id=lab_id or f"LAB-{uuid.uuid4().hex[:8].upper()}",
        lab_name=lab_name or f"Lab {lab_id}",
        email=email,
        phone=known.get("org_contact"),
        address=address or None,
        lab_type=known.get("org_type") or "General",
        status="Active",
    )
    try:
        db.add(lab)
        db.commit()
        db.refresh(lab)
        logger.info(f"🆕 Created lab {lab.lab_id} ({lab.lab_name})")
        return lab
    except IntegrityError:
        db.rollback()
        existing = db.query(Lab).filter_by(lab_id=lab.lab_id).first()
        if existing:
            return existing
        raise
