"""
LabDash Webhooks - Pydantic Schemas
Response envelopes for the webhook API
"""
from pydantic import BaseModel
from typing import Optional, Dict, Any


class WebhookResponse(BaseModel):
    """Envelope returned by every webhook endpoint"""
    success: bool
    message: str
    data: Optional[Dict[str, Any]] = None


class StatsResponse(BaseModel):
    raw_events: Dict[str, int]
    patients_total: int
    patients_by_status: Dict[str, int]
    doctors_total: int
    labs_total: int
    reports_total: int
    reports_by_status: Dict[str, int]
    reports_with_files: int
