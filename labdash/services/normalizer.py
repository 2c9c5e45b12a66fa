"""
Status / Specialty Normalizer

Crelio sends free-text workflow and specialty strings that drift over time.
Each is mapped onto a closed enumeration with:
    1. exact phrase lookup (lower-cased, trimmed)
    2. ordered keyword scan (first match wins)
    3. enum default
"""
import logging
from typing import Any, Dict, Sequence, Tuple

logger = logging.getLogger(__name__)

# ==================== Enumerations ====================

PATIENT_STATUSES = (
    "Registered",
    "Lab Test Scheduled",
    "Sample Collected",
    "Under Review",
    "Report Generated",
    "Report Delivered",
    "Completed",
    "On Hold",
    "Cancelled",
)

REPORT_STATUSES = (
    "Pending",
    "Sample Collected",
    "Under Analysis",
    "Report Generated",
    "Reviewed",
    "Delivered",
    "Archived",
)

SPECIALTIES = (
    "General Practitioner",
    "Cardiologist",
    "Dermatologist",
    "Dentist",
    "Oculist",
    "Surgeon",
    "Physician",
    "Gynecologist",
    "Neurologist",
    "Oncologist",
    "Orthopedist",
    "Physiotherapist",
    "Anesthesiologist",
    "Other",
)

DEFAULT_PATIENT_STATUS = "Report Generated"
DEFAULT_REPORT_STATUS = "Report Generated"
DEFAULT_SPECIALTY = "General Practitioner"


# ==================== Patient Status Tables ====================

PATIENT_STATUS_EXACT: Dict[str, str] = {
    "registered": "Registered",
    "registration": "Registered",
    "patient registered": "Registered",
    "new": "Registered",
    "bill generated": "Registered",
    "billed": "Registered",
    "scheduled": "Lab Test Scheduled",
    "test scheduled": "Lab Test Scheduled",
    "lab test scheduled": "Lab Test Scheduled",
    "appointment booked": "Lab Test Scheduled",
    "sample collected": "Sample Collected",
    "sample received": "Sample Collected",
    "sample accessioned": "Sample Collected",
    "accessioned": "Sample Collected",
    "collected": "Sample Collected",
    "in progress": "Under Review",
    "processing": "Under Review",
    "under review": "Under Review",
    "pending approval": "Under Review",
    "awaiting approval": "Under Review",
    "report pdf (webhook)": "Report Generated",
    "report pdf": "Report Generated",
    "report generated": "Report Generated",
    "report ready": "Report Generated",
    "signed": "Report Generated",
    "approved": "Report Generated",
    "report delivered": "Report Delivered",
    "delivered": "Report Delivered",
    "report sent": "Report Delivered",
    "emailed": "Report Delivered",
    "dispatched": "Report Delivered",
    "completed": "Completed",
    "complete": "Completed",
    "done": "Completed",
    "closed": "Completed",
    "on hold": "On Hold",
    "hold": "On Hold",
    "paused": "On Hold",
    "sample rejected": "On Hold",
    "cancelled": "Cancelled",
    "canceled": "Cancelled",
    "bill cancelled": "Cancelled",
    "refunded": "Cancelled",
}

PATIENT_STATUS_KEYWORDS: Sequence[Tuple[str, Tuple[str, ...]]] = (
    ("Cancelled", ("cancel", "refund", "void")),
    ("On Hold", ("hold", "reject", "paused")),
    ("Report Delivered", ("deliver", "dispatch", "sent", "email")),
    ("Report Generated", ("report", "pdf", "sign", "approv")),
    ("Under Review", ("review", "progress", "process", "pending")),
    ("Sample Collected", ("sample", "collect", "accession")),
    ("Lab Test Scheduled", ("schedul", "appointment", "booked")),
    ("Completed", ("complete", "finish", "closed")),
    ("Registered", ("regist", "bill")),
)


# ==================== Report Status Tables ====================

REPORT_STATUS_EXACT: Dict[str, str] = {
    "pending": "Pending",
    "new": "Pending",
    "bill generated": "Pending",
    "registered": "Pending",
    "waiting": "Pending",
    "sample collected": "Sample Collected",
    "sample received": "Sample Collected",
    "sample accessioned": "Sample Collected",
    "accessioned": "Sample Collected",
    "collected": "Sample Collected",
    "in progress": "Under Analysis",
    "processing": "Under Analysis",
    "under analysis": "Under Analysis",
    "result entered": "Under Analysis",
    "partially entered": "Under Analysis",
    "report pdf (webhook)": "Report Generated",
    "report pdf": "Report Generated",
    "report generated": "Report Generated",
    "report ready": "Report Generated",
    "signed": "Report Generated",
    "reviewed": "Reviewed",
    "approved": "Reviewed",
    "verified": "Reviewed",
    "delivered": "Delivered",
    "report delivered": "Delivered",
    "report sent": "Delivered",
    "emailed": "Delivered",
    "archived": "Archived",
}

REPORT_STATUS_KEYWORDS: Sequence[Tuple[str, Tuple[str, ...]]] = (
    ("Archived", ("archiv",)),
    ("Delivered", ("deliver", "dispatch", "sent", "email")),
    ("Reviewed", ("review", "approv", "verif")),
    ("Report Generated", ("report", "pdf", "sign")),
    ("Under Analysis", ("analy", "progress", "process", "result")),
    ("Sample Collected", ("sample", "collect", "accession")),
    ("Pending", ("pending", "wait", "new")),
)


# ==================== Specialty Tables ====================

SPECIALTY_EXACT: Dict[str, str] = {
    "none": "General Practitioner",
    "none (default)": "General Practitioner",
    "default": "General Practitioner",
    "gp": "General Practitioner",
    "general": "General Practitioner",
    "general practice": "General Practitioner",
    "family medicine": "General Practitioner",
    "family physician": "General Practitioner",
    "md": "Physician",
    "mbbs": "Physician",
    "internal medicine": "Physician",
    "general medicine": "Physician",
    "consultant physician": "Physician",
    "ent": "Surgeon",
    "general surgery": "Surgeon",
    "obgyn": "Gynecologist",
    "ob/gyn": "Gynecologist",
    "obstetrics and gynaecology": "Gynecologist",
    "obstetrics and gynecology": "Gynecologist",
    "ophthalmology": "Oculist",
    "ophthalmologist": "Oculist",
    "eye specialist": "Oculist",
    "bds": "Dentist",
    "mds": "Dentist",
    "dental surgeon": "Dentist",
    "skin specialist": "Dermatologist",
    "dermatology": "Dermatologist",
    "orthopaedics": "Orthopedist",
    "orthopedics": "Orthopedist",
    "bone specialist": "Orthopedist",
    "physiotherapy": "Physiotherapist",
    "physio": "Physiotherapist",
    "anaesthesia": "Anesthesiologist",
    "anesthesia": "Anesthesiologist",
    "anaesthetist": "Anesthesiologist",
}

SPECIALTY_KEYWORDS: Sequence[Tuple[str, Tuple[str, ...]]] = (
    ("Cardiologist", ("cardio", "heart")),
    ("Dermatologist", ("derma", "skin")),
    ("Dentist", ("dent", "oral", "orthodont")),
    ("Oculist", ("ophthal", "eye", "optom", "ocul")),
    ("Gynecologist", ("gyn", "obstet", "maternity")),
    ("Neurologist", ("neuro", "brain")),
    ("Oncologist", ("onco", "cancer", "tumor", "tumour")),
    ("Orthopedist", ("ortho", "bone", "joint", "spine")),
    ("Physiotherapist", ("physio", "rehab")),
    ("Anesthesiologist", ("anaesth", "anesth")),
    ("Surgeon", ("surg",)),
    ("Physician", ("physician", "internal", "medicine")),
    ("General Practitioner", ("general", "family", "practitioner")),
)


# ==================== Shared Algorithm ====================

def normalize(
    value: Any,
    exact: Dict[str, str],
    keywords: Sequence[Tuple[str, Tuple[str, ...]]],
    enum: Sequence[str],
    default: str,
) -> str:
    """
    Map a freeform value onto `enum`.

    Enum members match themselves case-insensitively; unknown phrasings
    fall through to the keyword scan, then to `default`.
    """
    if not isinstance(value, str):
        return default

    key = value.strip().lower()
    if not key:
        return default

    if key in exact:
        return exact[key]

    for member in enum:
        if member.lower() == key:
            return member

    for target, needles in keywords:
        if any(needle in key for needle in needles):
            return target

    logger.debug(f"No mapping for '{value}', using default '{default}'")
    return default


def normalize_patient_status(value: Any) -> str:
    return normalize(value, PATIENT_STATUS_EXACT, PATIENT_STATUS_KEYWORDS, PATIENT_STATUSES, DEFAULT_PATIENT_STATUS)


def normalize_report_status(value: Any) -> str:
    return normalize(value, REPORT_STATUS_EXACT, REPORT_STATUS_KEYWORDS, REPORT_STATUSES, DEFAULT_REPORT_STATUS)


def normalize_specialty(value: Any) -> str:
    return normalize(value, SPECIALTY_EXACT, SPECIALTY_KEYWORDS, SPECIALTIES, DEFAULT_SPECIALTY)
