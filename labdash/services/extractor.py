"""
=============================================================================
WEBHOOK FIELD EXTRACTOR
=============================================================================

Crelio webhook payloads have no stable schema. The same fact arrives under
different keys depending on the event kind ("Patient Name", "patientName",
"Contact No", "Mobile Number", ...), sometimes at the top level and
sometimes inside reportDetails[0].

This module turns one raw payload into:
    known - canonical snake_case field -> cleaned, typed value
    all   - the raw payload, untouched (stored as audit metadata)

LOOKUP RULE:
    For a list of candidate keys, every candidate is tried with an exact
    key match first, then every candidate with a case-insensitive match.
    The first value that survives cleaning wins.

CLEANING RULE:
    Strings are trimmed; "", "-", "n/a" and "null" (any case) are absent.
    Non-string values pass through.

Everything here is pure: no database access, no shared state.
=============================================================================
"""
import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

ABSENT_SENTINELS = {"", "-", "n/a", "null"}

REPORT_DETAILS_KEY = "reportDetails"

# Integer columns are 32-bit on PostgreSQL
INT_MAX = 2 ** 31 - 1

DATE_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y",
    "%d-%m-%Y %H:%M:%S",
    "%d-%m-%Y %H:%M",
    "%d-%m-%Y",
    "%d %b %Y %I:%M %p",
    "%d %b %Y",
)


class ExtractedFields(BaseModel):
    """Result of extracting one webhook payload"""
    known: Dict[str, Any] = Field(default_factory=dict)
    all: Dict[str, Any] = Field(default_factory=dict)


# ==================== Primitive Helpers ====================

def clean_value(value: Any) -> Any:
    """Trim strings and map blank/sentinel strings to None."""
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lower() in ABSENT_SENTINELS:
            return None
        return stripped
    return value


def extract_field(payload: Dict[str, Any], candidates: Iterable[str]) -> Any:
    """
    Return the first cleaned value found under any candidate key.

    Exact matches across ALL candidates are tried before any
    case-insensitive match, so {"A": "x", "a": "y"} with ["A", "a"]
    yields "x" and ["a"] alone yields "y".
    """
    if not isinstance(payload, dict):
        return None

    candidates = list(candidates)

    for name in candidates:
        if name in payload:
            value = clean_value(payload[name])
            if value is not None:
                return value

    for name in candidates:
        wanted = name.lower()
        for key, raw in payload.items():
            if isinstance(key, str) and key.lower() == wanted:
                value = clean_value(raw)
                if value is not None:
                    return value

    return None


def parse_age(value: Any) -> Optional[int]:
    """
    "26 years" -> 26, 30 -> 30, "unknown" -> None.
    Numbers are returned unchanged.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        match = re.search(r"[0-9]+", value)
        return int(match.group()) if match else None
    return None


def parse_date(value: Any) -> Optional[datetime]:
    """
    Parse ISO-8601 and common lab date formats into a naive UTC datetime.
    Object-shaped or unparseable values are absent.
    """
    if value is None or isinstance(value, bool):
        return None

    parsed = None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        # Epoch milliseconds vs seconds
        seconds = value / 1000 if value > 10 ** 11 else value
        try:
            parsed = datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            for fmt in DATE_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
    if parsed is None:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def first_item(value: Any) -> Any:
    """testID: [5] -> 5"""
    if isinstance(value, (list, tuple)):
        return clean_value(value[0]) if value else None
    return value


# ==================== Coercers ====================

def as_str(value: Any) -> Optional[str]:
    value = first_item(value)
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return clean_value(str(value))


def as_id(value: Any) -> Optional[str]:
    """Identifiers are stored as strings ("100", not 100)."""
    value = first_item(value)
    if isinstance(value, dict):
        return None
    return as_str(value)


def bounded_int(value: Any) -> Optional[int]:
    """int(value) when it is finite and fits an Integer column, else None."""
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return number if -INT_MAX <= number <= INT_MAX else None


def as_int(value: Any) -> Optional[int]:
    value = first_item(value)
    if isinstance(value, int) and not isinstance(value, bool):
        return bounded_int(value)
    return bounded_int(as_float(value))


def as_float(value: Any) -> Optional[float]:
    """Finite numbers only; "1e400", inf and nan are absent."""
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            number = float(value)
        elif isinstance(value, str):
            number = float(value.replace(",", ""))
        else:
            return None
    except (ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def as_age(value: Any) -> Optional[int]:
    return bounded_int(parse_age(first_item(value)))


def as_list(value: Any) -> Optional[List[Any]]:
    if isinstance(value, list):
        return value or None
    if isinstance(value, dict):
        return [value] if value else None
    return None


def as_dict(value: Any) -> Optional[Dict[str, Any]]:
    if isinstance(value, dict) and value:
        return value
    return None


def id_number(value: Optional[str]) -> Optional[int]:
    """Numeric twin of a string identifier, when it is integral."""
    if value is None:
        return None
    # isdigit() also accepts superscripts like "²"
    if not (value.isascii() and value.isdigit()):
        return None
    return bounded_int(value)


# ==================== Field Catalog ====================
# canonical name -> (candidate keys, coercer)

FieldSpec = Tuple[Tuple[str, ...], Callable[[Any], Any]]

FIELD_CATALOG: Dict[str, FieldSpec] = {
    # Identity
    "report_id": (("reportId", "Report Id", "report_id", "reportID"), as_id),
    "bill_id": (("billId", "bill_id", "Bill Id", "billID"), as_id),
    "test_id": (("testId", "testID", "test_id", "Test Id"), as_id),
    "patient_id_number": (("patientId", "Patient Id", "patient_id", "PatientID"), as_id),
    "lab_patient_id": (("labPatientId", "Lab Patient Id", "lab_patient_id"), as_id),
    "lab_report_id": (("labReportId", "CentreReportId", "lab_report_id", "Lab Report Id"), as_id),
    "sample_id": (("sampleId", "sampleID", "Sample Id", "sample_id"), as_id),
    "order_number": (("orderNumber", "order_number", "Order Number"), as_str),
    "referral_id": (("referralId", "referral_id"), as_id),
    "doc_id": (("docId", "doctorId", "doc_id"), as_id),

    # Demographics
    "name": (("Patient Name", "patientName", "patient_name", "name"), as_str),
    "designation": (("Patient Designation", "designation"), as_str),
    "age": (("Patient Age", "Age", "patientAge", "age"), as_age),
    "gender": (("Patient gender", "Gender", "patientGender", "sex"), as_str),
    "date_of_birth": (("Patient Dob", "dob", "dateOfBirth", "date_of_birth"), parse_date),
    "date_of_birth_string": (("Patient Dob", "dob", "dateOfBirth", "date_of_birth"), as_str),
    "email": (("patient_email", "Patient Email", "patientEmail", "email"), as_str),
    "phone": (("Mobile Number", "Patient Contact", "Contact No", "patientMobile", "phone", "mobile"), as_str),
    "alternate_contact": (("Patient Alternate Contact", "alternateContact", "alternate_contact"), as_str),
    "alternate_email": (("alternateEmail", "patientAlternateEmail", "alternate_email"), as_str),
    "country_code": (("country_code", "countryCode", "countryCodeOfPatient"), as_str),
    "ethnicity": (("ethnicity", "Ethnicity"), as_str),
    "race": (("race", "Race"), as_str),

    # Billing
    "bill_total_amount": (("billTotalAmount", "Bill Total Amount", "totalAmount"), as_float),
    "due_amount": (("dueAmount", "Due Amount"), as_float),
    "bill_advance": (("billAdvance", "Bill Advance", "advance"), as_float),
    "bill_concession": (("billConcession", "Bill Concession", "concession"), as_float),
    "bill_payment_status": (("billPaymentStatus", "paymentStatus"), as_int),
    "bill_payment_mode": (("billPaymentMode", "paymentMode", "Payment Mode"), as_str),
    "bill_time": (("billTime", "Bill Time", "billDate"), parse_date),
    "bill_comments": (("billComments", "Bill Comments"), as_str),
    "bill_referral": (("billReferral", "Bill Referral"), as_str),

    # Referral
    "referral_type": (("Referral Type", "referralType"), as_str),
    "referral_contact": (("Referral Contact", "referralContact"), as_str),
    "referral_email": (("Referral Email", "referralEmail"), as_str),
    "referral_address": (("Referral Address", "referralAddress"), as_str),
    "referral_city": (("Referral City", "referralCity"), as_str),
    "referral_pincode": (("Referral pincode", "referralPincode"), as_str),
    "referral_reg_no": (("Referral RegNo", "referralRegNo"), as_str),
    "referral_comments": (("Referral comments", "referralComments"), as_str),

    # Test / Report
    "status": (("status", "Status", "reportStatus", "Report Status"), as_str),
    "current_stage": (("currentStage", "Current Stage", "stage"), as_str),
    "test_name": (("Test Name", "testName", "test_name", "TestName"), as_str),
    "test_code": (("testCode", "Test Code", "test_code", "TestCode"), as_str),
    "test_category": (("testCategory", "Test Category", "category"), as_str),
    "department_name": (("departmentName", "Department Name", "department"), as_str),
    "sample_date": (("Sample Date", "sampleDate", "sample_date"), parse_date),
    "accession_date": (("Accession Date", "accessionDate", "accession_date"), parse_date),
    "report_date": (("Report Date", "reportDate", "report_date"), parse_date),
    "approval_date": (("Approval Date", "approvalDate", "approval_date"), parse_date),
    "signing_doctor": (("Signing Doctor", "signingDoctor", "signing_doctor"), as_list),
    "report_base64": (("reportBase64", "report_base64", "Report Base64", "pdfBase64"), as_str),
    "file_attachments": (("fileAttachments", "file_attachments"), as_list),
    "report_format_and_values": (("reportFormatAndValues", "report_format_and_values"), as_list),
    "file_input_report": (("fileInputReport",), as_int),
    "is_profile": (("isProfile",), as_int),
    "profile_id": (("profileID", "profileId"), as_id),

    # Doctor
    "doctor_name": (("doctorName", "Doctor Name", "referringDoctor", "doctor"), as_str),
    "doctor_email": (("doctorEmail", "Doctor Email"), as_str),
    "doctor_phone": (("doctorPhone", "Doctor Contact", "doctorContact"), as_str),
    "specialty": (("specialty", "Specialty", "doctorSpecialty", "Doctor Specialty", "speciality"), as_str),

    # Lab / Organization
    "lab_name": (("labName", "Lab Name"), as_str),
    "org_name": (("orgFullName", "orgName", "Org Name"), as_str),
    "org_code": (("Org Code", "orgCode"), as_str),
    "org_type": (("org Type", "orgType"), as_str),
    "org_email": (("Org email", "orgEmail"), as_str),
    "org_contact": (("Org Contact", "orgContact"), as_str),
    "org_address": (("Org Address", "orgAddress"), as_str),
    "org_city": (("Org City", "orgCity"), as_str),
    "org_area": (("Org Area", "orgArea"), as_str),

    "integration_payload": (("integration_payload", "integrationPayload"), as_dict),
}

ADDRESS_CATALOG: Dict[str, Tuple[str, ...]] = {
    "street": ("address", "Patient Address", "street"),
    "city": ("city", "Patient City"),
    "state": ("state", "Patient State"),
    "zipCode": ("zip_code", "zipCode", "pincode", "Patient Pincode"),
    "country": ("country", "Patient Country"),
    "landmark": ("landmark",),
    "areaOfResidence": ("areaOfResidance", "areaOfResidence"),
}


# ==================== Doctor Name Sources ====================

def doctor_name_from_referral(bill_referral: Any) -> Optional[str]:
    """'Dr. Name ; Clinic' -> 'Dr. Name'. 'SELF' means no referring doctor."""
    if not isinstance(bill_referral, str):
        return None
    name = bill_referral.split(";")[0].strip()
    if not name or name.upper() == "SELF":
        return None
    return name


def doctor_name_from_signing_doctor(signing_doctor: Any) -> Optional[str]:
    """[{"Signing Doctor 1": "Dr. Name"}] -> 'Dr. Name'"""
    if not isinstance(signing_doctor, list) or not signing_doctor:
        return None
    first = signing_doctor[0]
    if isinstance(first, dict):
        for value in first.values():
            if isinstance(value, str) and value.strip():
                return value.strip()
    elif isinstance(first, str) and first.strip():
        return first.strip()
    return None


# ==================== Main Extraction ====================

def _scopes(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Top level first, then the first reportDetails entry."""
    scopes = [payload]
    details = payload.get(REPORT_DETAILS_KEY)
    if isinstance(details, list) and details and isinstance(details[0], dict):
        scopes.append(details[0])
    elif isinstance(details, dict):
        scopes.append(details)
    return scopes


def lookup(payload: Dict[str, Any], candidates: Iterable[str]) -> Any:
    """extract_field across the top level and reportDetails[0]."""
    candidates = tuple(candidates)
    for scope in _scopes(payload):
        value = extract_field(scope, candidates)
        if value is not None:
            return value
    return None


def extract(payload: Dict[str, Any]) -> ExtractedFields:
    """
    Extract every catalogued field from one webhook payload.

    ARGS:
        payload: raw webhook JSON object

    RETURNS:
        ExtractedFields(known=..., all=...) where `known` only contains
        fields that were present and survived cleaning/coercion.
    """
    if not isinstance(payload, dict):
        logger.warning(f"Webhook payload is not an object ({type(payload).__name__}); nothing extracted")
        return ExtractedFields(known={}, all={})

    known: Dict[str, Any] = {}

    for field_name, (candidates, coerce) in FIELD_CATALOG.items():
        raw = lookup(payload, candidates)
        if raw is None:
            continue
        value = coerce(raw)
        if value is not None:
            known[field_name] = value

    # labId / orgId arrive either as scalars or as objects
    lab_raw = lookup(payload, ("labId", "lab_id", "Lab Id"))
    if isinstance(lab_raw, dict):
        known["lab_id"] = as_id(lab_raw.get("labId"))
        if "lab_name" not in known:
            known["lab_name"] = as_str(lab_raw.get("labName"))
    elif lab_raw is not None:
        known["lab_id"] = as_id(lab_raw)

    org_raw = lookup(payload, ("orgId", "org_id", "Org Id"))
    if isinstance(org_raw, dict):
        known["org_id"] = as_id(org_raw.get("orgId"))
        if "org_name" not in known:
            known["org_name"] = as_str(org_raw.get("orgFullName") or org_raw.get("orgName"))
    elif org_raw is not None:
        known["org_id"] = as_id(org_raw)

    address = {}
    for part, candidates in ADDRESS_CATALOG.items():
        value = as_str(lookup(payload, candidates))
        if value is not None:
            address[part] = value
    if address:
        known["address"] = address

    # Numeric twins of identifiers
    for field_name in ("bill_id", "test_id", "report_id"):
        number = id_number(known.get(field_name))
        if number is not None:
            known[f"{field_name}_number"] = number

    # Doctor names from referral / signing doctor
    referral_doctor = doctor_name_from_referral(known.get("bill_referral"))
    if referral_doctor:
        known["referral_doctor_name"] = referral_doctor
    signing_doctor = doctor_name_from_signing_doctor(known.get("signing_doctor"))
    if signing_doctor:
        known["signing_doctor_name"] = signing_doctor

    known = {key: value for key, value in known.items() if value is not None}

    logger.debug(f"Extracted {len(known)} known fields from {len(payload)} payload keys")
    return ExtractedFields(known=known, all=dict(payload))
