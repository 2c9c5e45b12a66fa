"""
Webhook email alerts
Best-effort SMTP notification after the primary webhook is saved
"""
import logging
import smtplib
from datetime import datetime
from email.message import EmailMessage
from typing import Any, Dict, Optional

from .. import config

logger = logging.getLogger(__name__)


def build_alert(payload: Dict[str, Any], report_id: Optional[str], patient_name: Optional[str] = None,
                report_status: Optional[str] = None) -> EmailMessage:
    bill_id = payload.get("billId")
    test_id = payload.get("testId") or payload.get("testID")

    lines = [
        "🔔 New Crelio Webhook Received",
        "",
        f"📅 Received at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        "✅ Data saved to database successfully!",
        "",
        f"📄 Report ID: {report_id or 'Not provided'}",
    ]
    if bill_id:
        lines.append(f"🧾 Bill ID: {bill_id}")
    if test_id:
        lines.append(f"🧪 Test ID: {test_id}")
    if patient_name:
        lines.append(f"👤 Patient: {patient_name}")
    if report_status:
        lines.append(f"📋 Report status: {report_status}")
    lines.append(f"📦 Payload Fields: {', '.join(payload.keys()) or 'None'}")
    lines.append("")
    lines.append("This is an automated notification from the Crelio Dashboard Webhook Receiver.")

    message = EmailMessage()
    message["Subject"] = f"🔔 Crelio Webhook: Report {report_id or 'N/A'}"
    message["From"] = config.EMAIL_FROM
    message["To"] = config.RECIPIENT_EMAIL
    message.set_content("\n".join(lines))
    return message


def send_webhook_alert(payload: Dict[str, Any], report_id: Optional[str], patient_name: Optional[str] = None,
                       report_status: Optional[str] = None) -> bool:
    """
    Send the alert email. Never raises: failures are logged and reported
    through the return value only.
    """
    if not (config.EMAIL_USER and config.EMAIL_PASSWORD and config.RECIPIENT_EMAIL):
        logger.debug("📧 Email not configured, skipping webhook alert")
        return False

    try:
        message = build_alert(payload, report_id, patient_name, report_status)
        smtp_class = smtplib.SMTP_SSL if config.SMTP_SECURE else smtplib.SMTP
        with smtp_class(config.SMTP_HOST, config.SMTP_PORT, timeout=config.EMAIL_TIMEOUT_SECONDS) as smtp:
            if not config.SMTP_SECURE:
                smtp.ehlo()
                if smtp.has_extn("starttls"):
                    smtp.starttls()
                    smtp.ehlo()
            smtp.login(config.EMAIL_USER, config.EMAIL_PASSWORD)
            smtp.send_message(message)
        logger.info(f"📧 Webhook alert sent to {config.RECIPIENT_EMAIL} (report {report_id})")
        return True
    except Exception as e:
        logger.error(f"❌ Failed to send webhook alert for report {report_id}: {e}")
        return False
