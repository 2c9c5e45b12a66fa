"""Tests for report upsert and the report file store."""

import base64
from pathlib import Path

import pytest

from labdash.models import Report
from labdash.services import reports
from labdash.services.file_store import ReportFileStore, decode_report
from labdash.services.reports import (
    upsert_report,
    upsert_report_by_bill_test,
    upsert_report_by_report_id,
)

PDF_BYTES = b"%PDF-1.4 test report"
PDF_BASE64 = base64.b64encode(PDF_BYTES).decode()


class RecordingStore:
    """Stands in for the file store and counts decode/write calls."""

    def __init__(self):
        self.calls = []

    def save_base64(self, data, stem):
        self.calls.append((data, stem))
        return {"pdf_path": f"/reports/{stem}.pdf", "file_size": 10, "file_name": f"{stem}.pdf"}


class TestDecodeReport:
    def test_plain_base64(self):
        assert decode_report(PDF_BASE64) == PDF_BYTES

    def test_data_uri_prefix(self):
        assert decode_report(f"data:application/pdf;base64,{PDF_BASE64}") == PDF_BYTES

    def test_invalid(self):
        with pytest.raises(ValueError):
            decode_report("this is not base64!!")


class TestReportFileStore:
    def test_writes_file(self, tmp_path):
        stored = ReportFileStore(tmp_path / "reports").save_base64(PDF_BASE64, "R1")
        assert stored["file_name"] == "report_R1.pdf"
        assert stored["file_size"] == len(PDF_BYTES)
        assert Path(stored["pdf_path"]).read_bytes() == PDF_BYTES

    def test_invalid_payload_returns_none(self, tmp_path):
        assert ReportFileStore(tmp_path).save_base64("%%%", "R1") is None

    def test_unsafe_stem_is_sanitized(self, tmp_path):
        stored = ReportFileStore(tmp_path).save_base64(PDF_BASE64, "../../etc/x")
        assert Path(stored["pdf_path"]).parent == tmp_path


class TestUpsertReport:
    def test_create_by_report_id(self, db):
        report, created = upsert_report_by_report_id(
            db, {"report_id": "R1", "test_name": "CBC", "status": "Report PDF (Webhook)"}, {"reportId": "R1"},
            file_store=RecordingStore(),
        )
        assert created
        assert report.status == "Report Generated"
        assert report.report_generated_date is not None
        assert report.webhook_metadata == {"reportId": "R1"}

    def test_redelivery_updates_in_place(self, db):
        upsert_report(db, {"report_id": "R1", "test_name": "CBC"})
        report, created = upsert_report(db, {"report_id": "R1", "status": "Approved"})
        db.commit()

        assert not created
        assert report.test_name == "CBC"
        assert report.status == "Reviewed"
        assert db.query(Report).count() == 1

    def test_bill_test_lookup_finds_report_id_row(self, db):
        upsert_report_by_report_id(db, {"report_id": "R1", "bill_id": "100", "test_id": "5"})
        report, created = upsert_report_by_bill_test(db, {"bill_id": "100", "test_id": "5", "status": "Delivered"})
        db.commit()

        assert not created
        assert report.report_id == "R1"
        assert report.status == "Delivered"
        assert db.query(Report).count() == 1

    def test_identity_fields_are_fill_only(self, db):
        upsert_report(db, {"bill_id": "100", "test_id": "5"})
        report, _ = upsert_report(db, {"bill_id": "100", "test_id": "5", "report_id": "R9"})
        assert report.report_id == "R9"

        report, _ = upsert_report(db, {"report_id": "R9", "bill_id": "200"})
        assert report.bill_id == "100"

    def test_requires_an_identity(self, db):
        with pytest.raises(ValueError):
            upsert_report(db, {"bill_id": "100"})
        with pytest.raises(ValueError):
            upsert_report_by_report_id(db, {"bill_id": "100", "test_id": "5"})
        with pytest.raises(ValueError):
            upsert_report_by_bill_test(db, {"report_id": "R1"})

    def test_base64_decoded_exactly_once(self, db):
        store = RecordingStore()
        upsert_report(db, {"report_id": "R1", "report_base64": PDF_BASE64}, file_store=store)
        report, _ = upsert_report(db, {"report_id": "R1", "report_base64": PDF_BASE64}, file_store=store)

        assert len(store.calls) == 1
        assert report.pdf_path == "/reports/R1.pdf"
        assert report.file_name == "R1.pdf"

    def test_invalid_base64_does_not_fail_upsert(self, db, tmp_path):
        report, created = upsert_report(
            db, {"report_id": "R1", "report_base64": "%%%"}, file_store=ReportFileStore(tmp_path),
        )
        assert created
        assert report.pdf_path is None

    def test_default_store_uses_reports_dir(self, db, reports_dir):
        report, _ = upsert_report(db, {"bill_id": "100", "test_id": "5", "report_base64": PDF_BASE64})
        assert Path(report.pdf_path) == reports_dir / "report_100_5.pdf"
        assert report.file_size == len(PDF_BYTES)

    def test_stored_base64_matches_stored_file(self, db):
        store = RecordingStore()
        upsert_report(db, {"report_id": "R1", "report_base64": PDF_BASE64}, file_store=store)
        other = base64.b64encode(b"%PDF-1.4 other").decode()
        report, _ = upsert_report(db, {"report_id": "R1", "report_base64": other}, file_store=store)

        assert report.report_base64 == PDF_BASE64
        assert store.calls == [(PDF_BASE64, "R1")]

    def test_base64_retried_until_a_file_is_stored(self, db, tmp_path):
        store = ReportFileStore(tmp_path)
        upsert_report(db, {"report_id": "R1", "report_base64": "%%%"}, file_store=store)
        report, _ = upsert_report(db, {"report_id": "R1", "report_base64": PDF_BASE64}, file_store=store)

        assert report.report_base64 == PDF_BASE64
        assert Path(report.pdf_path).read_bytes() == PDF_BYTES


class TestConcurrentReportInsert:
    """Another session inserts the same report between lookup and flush."""

    @pytest.fixture
    def stale_lookup(self, monkeypatch):
        real_find = reports.find_report
        calls = []

        def find_after_race(db, *args):
            calls.append(args)
            if len(calls) == 1:
                return None
            return real_find(db, *args)

        monkeypatch.setattr(reports, "find_report", find_after_race)
        return calls

    def insert_elsewhere(self, session_factory, **values):
        other = session_factory()
        other.add(Report(status="Sample Collected", **values))
        other.commit()
        other.close()

    def test_report_id_conflict_updates_existing_row(self, db, session_factory, stale_lookup):
        self.insert_elsewhere(session_factory, report_id="R1", test_name="CBC")

        report, created = upsert_report_by_report_id(db, {"report_id": "R1", "status": "Approved"})
        db.commit()

        assert not created
        assert len(stale_lookup) == 2
        assert report.test_name == "CBC"
        assert report.status == "Reviewed"
        assert db.query(Report).count() == 1

    def test_bill_test_conflict_updates_existing_row(self, db, session_factory, stale_lookup):
        self.insert_elsewhere(session_factory, bill_id="100", test_id="5")

        report, created = upsert_report_by_bill_test(
            db, {"bill_id": "100", "test_id": "5", "report_base64": PDF_BASE64}, file_store=RecordingStore(),
        )
        db.commit()

        assert not created
        assert report.pdf_path == "/reports/100_5.pdf"
        assert db.query(Report).count() == 1
