"""
=============================================================================
OBSERVER TELEMETRY
=============================================================================

Fire-and-forget operational events for an external observer service.

    emit(stage, action, data, success)
      - builds the OBSERVER_TELEMETRY envelope
      - schedules an async POST to {OBSERVER_URL}/api/events
      - never raises, never blocks the webhook response

No PHI is sent: only event kinds, counts and identifiers.
Telemetry is disabled when OBSERVER_URL is empty.
=============================================================================
"""
import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from .. import config

logger = logging.getLogger(__name__)

SOURCE_NAME = "labdash-webhooks"

TIMEOUT_SECONDS = 2.0

# Strong references to in-flight sends; the event loop only keeps weak ones
_pending_tasks = set()


def build_event(stage: str, action: str, data: Optional[Dict[str, Any]], success: bool,
                correlation_id: str) -> Dict[str, Any]:
    return {
        "type": "OBSERVER_TELEMETRY",
        "source": SOURCE_NAME,
        "event": {
            "stage": stage,
            "action": action,
            "success": success,
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "correlationId": correlation_id,
            "data": dict(data or {}),
        },
    }


async def emit(
    stage: str,
    action: str,
    data: Optional[Dict[str, Any]] = None,
    success: bool = True,
    correlation_id: Optional[str] = None
) -> str:
    """
    Schedule one telemetry event.

    Returns:
        The correlation ID used, for linking follow-up events
    """
    if correlation_id is None:
        correlation_id = f"labdash_{int(time.time() * 1000)}"

    if not config.OBSERVER_URL:
        return correlation_id

    payload = build_event(stage, action, data, success, correlation_id)
    task = asyncio.create_task(_send_event(payload))
    _pending_tasks.add(task)
    task.add_done_callback(_pending_tasks.discard)
    return correlation_id


async def _send_event(payload: Dict[str, Any]) -> None:
    """Never raises."""
    event = payload.get("event", {})
    try:
        async with httpx.AsyncClient(timeout=TIMEOUT_SECONDS) as client:
            response = await client.post(f"{config.OBSERVER_URL}/api/events", json=payload)

        if response.status_code == 200:
            logger.debug(f"[Telemetry] Event sent: {event.get('stage')}/{event.get('action')}")
        else:
            logger.warning(f"[Telemetry] Observer returned {response.status_code}: {response.text[:100]}")

    except httpx.ConnectError:
        logger.debug(f"[Telemetry] Observer unreachable at {config.OBSERVER_URL}")
    except httpx.TimeoutException:
        logger.debug("[Telemetry] Observer request timed out")
    except Exception as e:
        logger.warning(f"[Telemetry] Failed to send event: {e}")


async def emit_webhook_received(kind: str, field_count: int) -> str:
    return await emit("webhook", "WEBHOOK_RECEIVED", {"kind": kind, "fieldCount": field_count})


async def emit_webhook_failed(kind: str, correlation_id: str, error: str) -> str:
    return await emit("webhook", "WEBHOOK_FAILED", {"kind": kind, "error": error},
                      success=False, correlation_id=correlation_id)
