"""
=============================================================================
CRELIO WEBHOOK API
=============================================================================

Entry point for every payload pushed by the Crelio LIS.

    POST /api/webhook/crelio/webhook         primary report webhook
    POST /api/webhook/crelio/bill-generate   bill generation
    POST /api/webhook/crelio/report-status   report status change
    POST /api/webhook/crelio/sample-status   sample status change
    GET  /api/webhook/stats                  monitoring counts
    GET  /api/webhook/health                 liveness

REQUEST FLOW (POST):
    STEP 1: AUTHENTICATE  x-webhook-token vs WEBHOOK_SECRET, 401 otherwise
    STEP 2: PARSE         JSON object body, 400 otherwise
    STEP 3: LOG           append the raw payload to its event log
    STEP 4: SYNC WRITES   Patient + Report (primary), Report (report-status)
    STEP 5: SCHEDULE      consolidation / email alert as background tasks
    STEP 6: RESPOND       {"success", "message", "data"}

Background work runs after the response is sent. Its failures are logged
and never reach the caller.
=============================================================================
"""
import hmac
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Request
from sqlalchemy import func
from sqlalchemy.orm import Session

from .. import config
from ..db import get_db
from ..errors import WebhookError
from ..models import (
    Doctor, Lab, Patient, Report,
    PatientRegistrationLog, RequestDump, ReportStatusTracker, SampleStatusTracker,
)
from ..schemas import WebhookResponse, StatsResponse
from ..services.extractor import extract
from ..services.consolidator import build_fragment, merge_into_patient, link_related, consolidate_from_webhook
from ..services.reports import upsert_report_by_report_id, upsert_report_by_bill_test
from ..services.notifier import send_webhook_alert
from ..services.telemetry import emit_webhook_received, emit_webhook_failed

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/webhook",
    tags=["Webhooks"],
)


# ==================== Helpers ====================

def verify_webhook_token(x_webhook_token: Optional[str] = Header(None, alias=config.WEBHOOK_TOKEN_HEADER)) -> None:
    """Shared-secret check. No configured secret rejects everything."""
    secret = config.WEBHOOK_SECRET
    if not secret or not x_webhook_token or not hmac.compare_digest(x_webhook_token.encode(), secret.encode()):
        logger.warning("🔒 Rejected webhook with missing or invalid token")
        raise WebhookError(401, "Invalid webhook token")


async def read_payload(request: Request) -> Dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError:
        raise WebhookError(400, "Invalid JSON payload")
    if not isinstance(payload, dict):
        raise WebhookError(400, "Webhook payload must be a JSON object")
    return payload


def append_raw_event(db: Session, model, payload: Dict[str, Any]) -> None:
    db.add(model(request=payload))
    db.commit()


# ==================== Webhooks ====================

@router.post("/crelio/webhook", response_model=WebhookResponse, dependencies=[Depends(verify_webhook_token)])
async def crelio_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db)
):
    """
    Primary report webhook: Patient and Report are written before responding.
    """
    payload = await read_payload(request)
    fields = extract(payload)
    report_id = fields.known.get("report_id")

    if not report_id:
        logger.warning("⚠️ Primary webhook rejected: reportId missing")
        raise WebhookError(400, "reportId is required")

    correlation_id = await emit_webhook_received("registration", len(payload))
    logger.info(f"📥 Primary webhook for report {report_id}")

    try:
        append_raw_event(db, PatientRegistrationLog, payload)
    except Exception as e:
        db.rollback()
        logger.error(f"❌ Failed to store primary webhook payload: {e}", exc_info=True)
        await emit_webhook_failed("registration", correlation_id, type(e).__name__)
        raise WebhookError(500, "Failed to save webhook data")

    try:
        # Nameless fragments with no known patient only get a Report;
        # consolidation attaches it once the bill arrives
        fragment = build_fragment("registration", fields.known, fields.all)
        patient, patient_created = merge_into_patient(db, fragment)

        report, report_created = upsert_report_by_report_id(
            db, fields.known, fields.all,
            patient_pk=patient.id if patient else None,
        )
        db.commit()

        if patient:
            link_related(db, patient, fields.known)
            if patient.assigned_doctor_id and not report.doctor_id:
                report.doctor_id = patient.assigned_doctor_id
                db.commit()

    except Exception as e:
        db.rollback()
        logger.error(f"❌ Primary webhook failed for report {report_id}: {e}", exc_info=True)
        await emit_webhook_failed("registration", correlation_id, type(e).__name__)
        raise WebhookError(500, "Failed to save webhook data")

    background_tasks.add_task(
        send_webhook_alert,
        payload,
        report_id,
        patient.name if patient else fields.known.get("name"),
        report.status,
    )

    return WebhookResponse(
        success=True,
        message="Webhook received and saved",
        data={
            "reportId": report.report_id,
            "reportStatus": report.status,
            "reportCreated": report_created,
            "patientId": patient.patient_id if patient else None,
            "patientCreated": patient_created,
        },
    )


@router.post("/crelio/bill-generate", response_model=WebhookResponse, dependencies=[Depends(verify_webhook_token)])
async def bill_generate(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db)
):
    payload = await read_payload(request)
    await emit_webhook_received("bill", len(payload))

    try:
        append_raw_event(db, RequestDump, payload)
    except Exception as e:
        db.rollback()
        logger.error(f"❌ Failed to store bill payload: {e}", exc_info=True)
        raise WebhookError(500, "Failed to save bill data")

    bill_id = extract(payload).known.get("bill_id")
    logger.info(f"🧾 Bill payload stored (billId={bill_id})")
    background_tasks.add_task(consolidate_from_webhook, "bill", payload)

    return WebhookResponse(success=True, message="Bill data received", data={"billId": bill_id})


@router.post("/crelio/report-status", response_model=WebhookResponse, dependencies=[Depends(verify_webhook_token)])
async def report_status(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db)
):
    """
    Report status change. The Report keyed by (billId, testId) is upserted
    before responding; the Patient is consolidated in the background.
    """
    payload = await read_payload(request)
    fields = extract(payload)
    correlation_id = await emit_webhook_received("report_status", len(payload))

    try:
        append_raw_event(db, ReportStatusTracker, payload)
    except Exception as e:
        db.rollback()
        logger.error(f"❌ Failed to store report status payload: {e}", exc_info=True)
        await emit_webhook_failed("report_status", correlation_id, type(e).__name__)
        raise WebhookError(500, "Failed to save report status")

    data = {"billId": fields.known.get("bill_id"), "testId": fields.known.get("test_id")}
    try:
        if fields.known.get("bill_id") and fields.known.get("test_id"):
            report, created = upsert_report_by_bill_test(db, fields.known, fields.all)
            data.update({"reportStatus": report.status, "reportCreated": created})
        else:
            logger.info("ℹ️ Report status without billId/testId, report upsert skipped")
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"❌ Report upsert failed for bill {data['billId']} test {data['testId']}: {e}", exc_info=True)
        await emit_webhook_failed("report_status", correlation_id, type(e).__name__)
        raise WebhookError(500, "Failed to save report status")

    background_tasks.add_task(consolidate_from_webhook, "report_status", payload)

    return WebhookResponse(success=True, message="Report status received", data=data)


@router.post("/crelio/sample-status", response_model=WebhookResponse, dependencies=[Depends(verify_webhook_token)])
async def sample_status(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db)
):
    payload = await read_payload(request)
    await emit_webhook_received("sample_status", len(payload))

    try:
        append_raw_event(db, SampleStatusTracker, payload)
    except Exception as e:
        db.rollback()
        logger.error(f"❌ Failed to store sample status: {e}", exc_info=True)
        raise WebhookError(500, "Failed to save sample status")

    background_tasks.add_task(consolidate_from_webhook, "sample_status", payload)

    return WebhookResponse(success=True, message="Sample status received")


# ==================== Monitoring ====================

@router.get("/stats", response_model=StatsResponse)
async def get_webhook_stats(db: Session = Depends(get_db)):
    """
    Raw event and consolidated record counts.

    EXAMPLE:
        GET /api/webhook/stats
    """
    raw_events = {
        "patient_registration": db.query(func.count(PatientRegistrationLog.id)).scalar() or 0,
        "bill_generate": db.query(func.count(RequestDump.id)).scalar() or 0,
        "report_status": db.query(func.count(ReportStatusTracker.id)).scalar() or 0,
        "sample_status": db.query(func.count(SampleStatusTracker.id)).scalar() or 0,
    }

    patients_by_status = db.query(
        Patient.status,
        func.count(Patient.id)
    ).group_by(Patient.status).all()

    reports_by_status = db.query(
        Report.status,
        func.count(Report.id)
    ).group_by(Report.status).all()

    return StatsResponse(
        raw_events=raw_events,
        patients_total=db.query(func.count(Patient.id)).scalar() or 0,
        patients_by_status={status or "Unknown": count for status, count in patients_by_status},
        doctors_total=db.query(func.count(Doctor.id)).scalar() or 0,
        labs_total=db.query(func.count(Lab.id)).scalar() or 0,
        reports_total=db.query(func.count(Report.id)).scalar() or 0,
        reports_by_status={status or "Unknown": count for status, count in reports_by_status},
        reports_with_files=db.query(func.count(Report.id)).filter(Report.pdf_path.isnot(None)).scalar() or 0,
    )


@router.get("/health")
async def health_check():
    """Liveness only; the app-level /health checks the database."""
    return {"status": "healthy", "service": "labdash-webhooks"}
