"""
LabDash Webhooks - Database ORM Models
Consolidated Patient/Report/Doctor/Lab records plus append-only raw webhook logs
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Float, ForeignKey, UniqueConstraint, Index, event
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from .db import Base
from .services.extractor import extract


class Patient(Base):
    """Consolidated view of one person across every webhook source"""
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Identification
    patient_id = Column(String(100), unique=True, nullable=False, index=True)  # PAT-/LAB-PAT-/BILL- derived
    patient_id_number = Column(String(50), index=True)  # "Patient Id" in webhooks
    lab_patient_id = Column(String(50), index=True)

    # Basic Information
    name = Column(String(200), nullable=False)
    designation = Column(String(20))  # Mr., Mrs., Ms., Dr.
    age = Column(Integer)
    gender = Column(String(30), default="Not Specified")
    date_of_birth = Column(DateTime)
    date_of_birth_string = Column(String(50))

    # Contact Information
    email = Column(String(200))
    phone = Column(String(50))
    alternate_contact = Column(String(50))
    alternate_email = Column(String(200))
    country_code = Column(String(10))
    address = Column(JSON)  # street/city/state/zipCode/country/landmark/areaOfResidence
    ethnicity = Column(String(50))
    race = Column(String(50))

    # Workflow
    status = Column(String(50), default="Registered", index=True)
    current_stage = Column(String(100), default="Registration")
    assigned_doctor_id = Column(Integer, ForeignKey("doctors.id"), index=True)

    # Billing Information
    bill_id = Column(String(50), index=True)
    bill_id_number = Column(Integer, index=True)
    bill_total_amount = Column(Float)
    due_amount = Column(Float)
    bill_advance = Column(Float)
    bill_concession = Column(Float)
    bill_payment_status = Column(Integer)  # 0 or 1
    bill_payment_mode = Column(String(50))  # CASH, CARD, ...
    bill_time = Column(DateTime)
    bill_comments = Column(Text)
    bill_referral = Column(String(300))  # "Dr. Name ; Clinic" or "SELF"
    order_number = Column(String(100))

    # Referral Information
    referral_id = Column(String(50))
    referral_type = Column(String(100))
    referral_contact = Column(String(50))
    referral_email = Column(String(200))
    referral_address = Column(Text)
    referral_city = Column(String(100))
    referral_pincode = Column(String(20))
    referral_reg_no = Column(String(100))
    referral_comments = Column(Text)

    # Test and Report snapshot
    test_id = Column(String(50), index=True)
    test_id_number = Column(Integer)
    report_id = Column(String(50), index=True)
    report_id_number = Column(Integer)
    lab_report_id = Column(String(50))
    sample_id = Column(String(100), index=True)
    sample_date = Column(DateTime)
    accession_date = Column(DateTime)
    report_date = Column(DateTime)
    approval_date = Column(DateTime)
    test_name = Column(String(200))
    test_code = Column(String(100))
    department_name = Column(String(100))
    report_status = Column(String(50))
    signing_doctor = Column(JSON)  # [{"Signing Doctor 1": "Dr. Name"}]
    file_attachments = Column(JSON)
    report_format_and_values = Column(JSON)
    file_input_report = Column(Integer)
    is_profile = Column(Integer)
    profile_id = Column(String(50))

    # Lab and Organization
    lab_id = Column(String(50), index=True)
    lab_name = Column(String(200))
    org_id = Column(String(50))
    org_name = Column(String(200))
    org_code = Column(String(50))
    org_type = Column(String(50))
    org_email = Column(String(200))
    org_contact = Column(String(50))
    org_address = Column(Text)
    org_city = Column(String(100))
    org_area = Column(String(100))

    # Provenance
    webhook_metadata = Column(JSON)  # last payload received, verbatim
    integration_payload = Column(JSON)

    registration_date = Column(DateTime(timezone=True), server_default=func.now())
    last_visit_date = Column(DateTime(timezone=True), server_default=func.now())
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    assigned_doctor = relationship("Doctor", back_populates="patients")
    lab_reports = relationship("Report", back_populates="patient", order_by="Report.id")

    __table_args__ = (
        Index("ix_patients_bill_test", "bill_id", "test_id"),
    )


class Report(Base):
    """One lab/imaging report, keyed by reportId or by (billId, testId)"""
    __tablename__ = "reports"

    id = Column(Integer, primary_key=True, autoincrement=True)
    report_id = Column(String(50), unique=True, index=True)
    bill_id = Column(String(50), index=True)
    test_id = Column(String(50))
    lab_report_id = Column(String(50))

    status = Column(String(50), nullable=False, default="Pending")
    test_name = Column(String(200))
    test_code = Column(String(100))
    test_category = Column(String(100))
    sample_date = Column(DateTime)
    report_date = Column(DateTime)
    approval_date = Column(DateTime)
    report_generated_date = Column(DateTime)
    signing_doctor = Column(JSON)

    # Report binary
    report_base64 = Column(Text)
    pdf_path = Column(String(500))
    file_size = Column(Integer)
    file_name = Column(String(200))

    webhook_metadata = Column(JSON)

    patient_id = Column(Integer, ForeignKey("patients.id"), index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    patient = relationship("Patient", back_populates="lab_reports")
    doctor = relationship("Doctor", back_populates="reports")

    __table_args__ = (
        UniqueConstraint("bill_id", "test_id", name="uq_reports_bill_test"),
    )


class Doctor(Base):
    """Referring or signing doctor, deduplicated by case-insensitive name"""
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    doctor_id = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    name_key = Column(String(200), unique=True, nullable=False, index=True)  # lower-cased, whitespace collapsed
    email = Column(String(200), unique=True, nullable=False)
    phone = Column(String(50), nullable=False)
    specialty = Column(String(50), nullable=False, default="General Practitioner")
    status = Column(String(20), default="Active")  # Active, On Leave, Inactive
    patient_count = Column(Integer, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    patients = relationship("Patient", back_populates="assigned_doctor")
    reports = relationship("Report", back_populates="doctor")


class Lab(Base):
    """Laboratory / collection organization"""
    __tablename__ = "labs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    lab_id = Column(String(50), unique=True, nullable=False, index=True)
    lab_name = Column(String(200), nullable=False)
    email = Column(String(200))
    phone = Column(String(50))
    address = Column(JSON)
    lab_type = Column(String(50), default="General")
    status = Column(String(20), default="Active")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


# ==================== Raw Webhook Logs ====================
# APPEND-ONLY: rows are written once per webhook call and never updated.

class RawEventMixin:
    id = Column(Integer, primary_key=True, autoincrement=True)
    request = Column(JSON, nullable=False)  # payload exactly as received
    bill_id = Column(String(50), index=True)  # derived from request on insert
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)


class PatientRegistrationLog(RawEventMixin, Base):
    """Patient registration / primary report webhook payloads"""
    __tablename__ = "patient_registration_logs"


class RequestDump(RawEventMixin, Base):
    """Bill generation webhook payloads"""
    __tablename__ = "request_dumps"


class ReportStatusTracker(RawEventMixin, Base):
    """Report status webhook payloads"""
    __tablename__ = "report_status_trackers"


class SampleStatusTracker(RawEventMixin, Base):
    """Sample status webhook payloads"""
    __tablename__ = "sample_status_trackers"


@event.listens_for(RawEventMixin, "before_insert", propagate=True)
def fill_raw_event_bill_id(mapper, connection, target):
    if target.bill_id is None:
        bill_id = extract(target.request).known.get("bill_id")
        # Oversized ids are left unindexed rather than failing the append
        if bill_id and len(bill_id) <= 50:
            target.bill_id = bill_id
