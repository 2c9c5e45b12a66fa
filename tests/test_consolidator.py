"""Tests for labdash.services.consolidator."""

from datetime import datetime

import pytest

from labdash.models import Doctor, Patient, Report, RequestDump
from labdash.services.consolidator import (
    build_fragment,
    consolidate_event,
    find_existing_patient,
    generate_patient_id,
    link_related,
    merge_into_patient,
    merge_patient_data,
    seed_from_bill,
)


class TestGeneratePatientId:
    def test_explicit_patient_id_first(self):
        assert generate_patient_id({"patient_id_number": "55", "lab_patient_id": "9", "bill_id": "1"}) == "PAT-55"

    def test_lab_patient_id_second(self):
        assert generate_patient_id({"lab_patient_id": "9", "bill_id": "1"}) == "LAB-PAT-9"

    def test_bill_id_third(self):
        assert generate_patient_id({"bill_id": "100", "name": "Jane"}) == "BILL-100"

    def test_name_and_phone(self):
        assert generate_patient_id({"name": "Jane Doe", "phone": "+91 98765-43210"}) == "PAT-JANEDO-3210"

    def test_timestamp_fallback_is_unique(self):
        first = generate_patient_id({"name": "Jane"})
        second = generate_patient_id({"name": "Jane"})
        assert first.startswith("PAT-")
        assert first != second


class TestMergePatientData:
    def test_scalars_first_write_wins(self):
        merged = merge_patient_data({"phone": "555-1111"}, {"phone": "555-2222"})
        assert merged["phone"] == "555-1111"

    def test_empty_string_is_filled(self):
        merged = merge_patient_data({"email": ""}, {"email": "jane@example.com"})
        assert merged["email"] == "jane@example.com"

    def test_workflow_fields_take_latest(self):
        merged = merge_patient_data(
            {"status": "Registered", "current_stage": "Registration", "report_status": "Pending"},
            {"status": "Completed", "current_stage": "Delivery", "report_status": "Delivered"},
        )
        assert merged["status"] == "Completed"
        assert merged["current_stage"] == "Delivery"
        assert merged["report_status"] == "Delivered"

    def test_none_never_overwrites(self):
        merged = merge_patient_data({"status": "Registered"}, {"status": None})
        assert merged["status"] == "Registered"

    def test_address_fill_only_and_strip_nulls(self):
        merged = merge_patient_data(
            {"address": {"city": "Pune", "state": None}},
            {"address": {"city": "Mumbai", "street": "12 Main St"}},
        )
        assert merged["address"] == {"city": "Pune", "street": "12 Main St"}

    def test_empty_address_dropped(self):
        merged = merge_patient_data({}, {"address": {"city": None}})
        assert merged["address"] is None

    def test_arrays_concatenate_with_duplicates(self):
        doctor = {"Signing Doctor 1": "Dr. Mehta"}
        merged = merge_patient_data({"signing_doctor": [doctor]}, {"signing_doctor": [doctor]})
        assert merged["signing_doctor"] == [doctor, doctor]

    def test_dates_must_be_datetimes(self):
        when = datetime(2024, 1, 2, 9, 30)
        merged = merge_patient_data({}, {"bill_time": "not a date", "sample_date": when})
        assert "bill_time" not in merged
        assert merged["sample_date"] == when

    def test_objects_shallow_merge(self):
        merged = merge_patient_data({"webhook_metadata": {"a": 1, "b": 1}}, {"webhook_metadata": {"b": 2}})
        assert merged["webhook_metadata"] == {"a": 1, "b": 2}

    def test_does_not_mutate_inputs(self):
        existing = {"signing_doctor": [1]}
        merge_patient_data(existing, {"signing_doctor": [2]})
        assert existing == {"signing_doctor": [1]}


class TestBuildFragment:
    def test_bill_without_status_leaves_status_unset(self):
        fragment = build_fragment("bill", {"bill_id": "1", "name": "Jane"})
        assert "status" not in fragment

    def test_report_status_sets_both_statuses(self):
        fragment = build_fragment("report_status", {"bill_id": "1", "status": "Report PDF (Webhook)"})
        assert fragment["status"] == "Report Generated"
        assert fragment["report_status"] == "Report Generated"

    def test_registration_always_has_status(self):
        assert build_fragment("registration", {"report_id": "R1"})["status"] == "Report Generated"

    def test_drops_non_patient_fields(self):
        fragment = build_fragment("bill", {"bill_id": "1", "referral_doctor_name": "Dr. Smith", "test_category": "X"})
        assert fragment == {"bill_id": "1"}

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            build_fragment("refund", {})


class TestFindExistingPatient:
    def test_identifier_beats_bill(self, db):
        by_identifier = Patient(patient_id="PAT-55", patient_id_number="55", name="A", bill_id="1")
        by_bill = Patient(patient_id="BILL-2", name="B", bill_id="2")
        db.add_all([by_identifier, by_bill])
        db.commit()

        found = find_existing_patient(db, {"patient_id_number": "55", "bill_id": "2"})
        assert found.patient_id == "PAT-55"

    def test_falls_back_to_bill(self, db):
        db.add(Patient(patient_id="BILL-2", name="B", bill_id="2", bill_id_number=2))
        db.commit()
        assert find_existing_patient(db, {"patient_id_number": "99", "bill_id": "2"}).patient_id == "BILL-2"

    def test_bill_beats_name_and_phone(self, db):
        db.add_all([
            Patient(patient_id=generate_patient_id({"name": "Jane Doe", "phone": "9876543210"}), name="Jane Doe"),
            Patient(patient_id="BILL-2", name="Jane Doe", bill_id="2"),
        ])
        db.commit()

        found = find_existing_patient(db, {"name": "Jane Doe", "phone": "9876543210", "bill_id": "2"})
        assert found.patient_id == "BILL-2"

    def test_name_and_phone_when_bill_unknown(self, db):
        db.add(Patient(patient_id="PAT-JANEDO-3210", name="Jane Doe"))
        db.commit()

        found = find_existing_patient(db, {"name": "Jane Doe", "phone": "9876543210", "bill_id": "404"})
        assert found.patient_id == "PAT-JANEDO-3210"

    def test_no_match(self, db):
        assert find_existing_patient(db, {"bill_id": "404"}) is None


class TestMergeIntoPatient:
    def test_creates_then_merges(self, db):
        patient, created = merge_into_patient(db, {"bill_id": "100", "name": "Jane Doe", "age": 34, "phone": "555-1111"})
        assert created
        assert patient.patient_id == "BILL-100"
        assert patient.status == "Registered"
        assert patient.gender == "Not Specified"

        again, created = merge_into_patient(db, {"bill_id": "100", "phone": "555-2222", "status": "Completed"})
        assert not created
        assert again.id == patient.id
        assert again.phone == "555-1111"
        assert again.status == "Completed"
        assert db.query(Patient).count() == 1

    def test_patient_id_never_changes(self, db):
        patient, _ = merge_into_patient(db, {"bill_id": "100", "name": "Jane"})
        merge_into_patient(db, {"bill_id": "100", "patient_id_number": "77"})
        db.refresh(patient)
        assert patient.patient_id == "BILL-100"
        assert patient.patient_id_number == "77"

    def test_nameless_without_bill_is_deferred(self, db):
        patient, created = merge_into_patient(db, {"bill_id": "100", "status": "Completed"})
        assert patient is None
        assert not created
        assert db.query(Patient).count() == 0

    def test_nameless_is_seeded_from_latest_bill(self, db):
        db.add(RequestDump(request={"billId": 100, "Patient Name": "Old Name"}))
        db.add(RequestDump(request={"billId": 100, "Patient Name": "Jane Doe", "Patient Age": "34 years"}))
        db.add(RequestDump(request={"billId": 200, "Patient Name": "Someone Else"}))
        db.commit()

        patient, created = merge_into_patient(db, {"bill_id": "100", "report_status": "Reviewed"})
        assert created
        assert patient.name == "Jane Doe"
        assert patient.age == 34
        assert patient.report_status == "Reviewed"

    def test_raw_events_index_their_bill_id(self, db):
        dump = RequestDump(request={"billId": [100], "Patient Name": "Jane"})
        nameless = RequestDump(request={"status": "Registered"})
        db.add_all([dump, nameless])
        db.commit()

        assert dump.bill_id == "100"
        assert nameless.bill_id is None
        assert seed_from_bill(db, "100")["name"] == "Jane"
        assert seed_from_bill(db, "999") == {}


class TestConsolidateEvent:
    def test_bill_event_is_idempotent(self, db):
        payload = {"billId": 100, "Patient Name": "Jane Doe", "Patient Age": "34 years"}
        first, created = consolidate_event(db, "bill", payload)
        second, created_again = consolidate_event(db, "bill", payload)

        assert created and not created_again
        assert first.id == second.id
        assert db.query(Patient).count() == 1

    def test_links_referral_doctor_and_reports(self, db):
        db.add(Report(bill_id="100", test_id="5", status="Pending"))
        db.commit()

        patient, _ = consolidate_event(db, "bill", {
            "billId": 100,
            "Patient Name": "Jane Doe",
            "billReferral": "Dr. Smith ; City Clinic",
            "docId": 42,
        })

        doctor = db.query(Doctor).one()
        assert doctor.doctor_id == "DOC-42"
        assert patient.assigned_doctor_id == doctor.id
        assert doctor.patient_count == 1

        report = db.query(Report).one()
        assert report.patient_id == patient.id
        assert report.doctor_id == doctor.id

    def test_signing_doctor_used_without_referral(self, db):
        consolidate_event(db, "bill", {"billId": 100, "Patient Name": "Jane Doe"})
        patient, _ = consolidate_event(db, "report_status", {
            "billId": 100,
            "signingDoctor": [{"Signing Doctor 1": "Dr. Mehta"}],
        })
        assert patient.assigned_doctor.name == "Dr. Mehta"

    def test_link_related_keeps_existing_doctor(self, db):
        patient, _ = consolidate_event(db, "bill", {"billId": 1, "Patient Name": "A", "billReferral": "Dr. One"})
        link_related(db, patient, {"referral_doctor_name": "Dr. Two"})
        assert patient.assigned_doctor.name == "Dr. One"
        assert db.query(Doctor).count() == 1
