"""Tests for the full consolidation run."""

import pytest

from labdash.models import Doctor, Patient, Report, ReportStatusTracker, RequestDump, SampleStatusTracker
from labdash.services import consolidator
from labdash.services.consolidator import run_full_consolidation


@pytest.fixture
def raw_events(db):
    """Raw logs for two patients plus one orphaned sample event."""
    db.add_all([
        RequestDump(request={
            "billId": 100, "Patient Name": "Jane Doe", "Patient Age": "34 years",
            "billReferral": "Dr. Smith ; City Clinic",
        }),
        RequestDump(request={"billId": 200, "Patient Name": "Raj Kumar", "Mobile Number": "9876543210"}),
        ReportStatusTracker(request={
            "billId": 100, "testID": [5], "status": "Report PDF (Webhook)",
            "signingDoctor": [{"Signing Doctor 1": "Dr. Mehta"}],
        }),
        SampleStatusTracker(request={"billId": 200, "status": "Sample Collected"}),
        SampleStatusTracker(request={"billId": 999, "status": "Sample Collected"}),
        Report(bill_id="100", test_id="5", status="Reviewed"),
    ])
    db.commit()


class TestRunFullConsolidation:
    def test_stats(self, db, raw_events):
        stats = run_full_consolidation(db)

        assert stats["existing_patients"] == 0
        assert stats["request_dumps"] == 2
        assert stats["report_trackers"] == 1
        assert stats["sample_trackers"] == 2
        assert stats["reports"] == 1
        assert stats["created"] == 2
        assert stats["skipped"] == 1
        assert stats["errors"] == 0

    def test_merges_all_sources(self, db, raw_events):
        run_full_consolidation(db)

        jane = db.query(Patient).filter_by(patient_id="BILL-100").one()
        assert jane.name == "Jane Doe"
        assert jane.age == 34
        assert jane.report_status == "Reviewed"
        assert jane.assigned_doctor.name == "Dr. Smith"

        raj = db.query(Patient).filter_by(patient_id="BILL-200").one()
        assert raj.status == "Sample Collected"

        report = db.query(Report).one()
        assert report.patient_id == jane.id

    def test_second_run_creates_nothing(self, db, raw_events):
        run_full_consolidation(db)
        stats = run_full_consolidation(db)

        assert stats["existing_patients"] == 2
        assert stats["created"] == 0
        assert db.query(Patient).count() == 2
        assert db.query(Doctor).filter(Doctor.name_key == "dr. smith").count() == 1

    def test_row_errors_are_counted_not_fatal(self, db, raw_events, monkeypatch):
        db.add(SampleStatusTracker(request={"boom": True}))
        db.commit()

        real_extract = consolidator.extract

        def flaky_extract(payload):
            if payload.get("boom"):
                raise RuntimeError("corrupt row")
            return real_extract(payload)

        monkeypatch.setattr(consolidator, "extract", flaky_extract)
        stats = run_full_consolidation(db)

        assert stats["errors"] == 1
        assert stats["created"] == 2
