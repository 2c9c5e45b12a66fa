"""
LabDash Webhooks - FastAPI Main Application
"""
import time
import uuid
import logging
from datetime import datetime

from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from . import __version__
from .db import get_db, check_connection, init_db
from .config import API_HOST, API_PORT, FRONTEND_URL
from .errors import WebhookError
from .logging_config import configure_logging
from .routes.webhooks import router as webhook_router

# ==================== Logging Setup ====================
configure_logging()
logger = logging.getLogger(__name__)

# ==================== App Initialization ====================
app = FastAPI(
    title="LabDash Webhooks",
    description="Crelio LIS webhook receiver with patient-data consolidation",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc"
)

# ==================== Middleware ====================

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Log every request with a short request id, status code and latency.
    """
    request_id = str(uuid.uuid4())[:8]
    start_time = time.time()

    logger.info(f"➡️ [{request_id}] {request.method} {request.url.path}")

    try:
        response = await call_next(request)

        process_time = (time.time() - start_time) * 1000
        logger.info(f"⬅️ [{request_id}] {response.status_code} - {process_time:.2f}ms")
        return response

    except Exception as e:
        process_time = (time.time() - start_time) * 1000
        logger.error(
            f"❌ [{request_id}] FAILED - {process_time:.2f}ms - Error: {str(e)}",
            exc_info=True
        )
        raise

app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== Errors ====================

@app.exception_handler(WebhookError)
async def webhook_error_handler(request: Request, exc: WebhookError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.message},
    )

# ==================== Routers ====================

app.include_router(webhook_router)

# ==================== Startup & Health ====================

@app.on_event("startup")
async def startup_event():
    """Fail fast when the database is unreachable"""
    logger.info("🚀 Starting LabDash Webhooks API...")

    if not check_connection():
        logger.critical("❌ Database connection failed! Application cannot start.")
        raise RuntimeError("Cannot connect to database")

    try:
        init_db()
        logger.info("✅ Database initialized successfully")
    except Exception as e:
        logger.critical(f"❌ Database initialization failed: {e}")
        raise

    logger.info("✅ LabDash Webhooks API ready to accept webhooks")

@app.get("/")
async def root():
    return {
        "service": "LabDash Webhooks",
        "version": __version__,
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "endpoints": {
            "webhook": "/api/webhook/crelio/webhook",
            "bill_generate": "/api/webhook/crelio/bill-generate",
            "report_status": "/api/webhook/crelio/report-status",
            "sample_status": "/api/webhook/crelio/sample-status",
            "stats": "/api/webhook/stats",
        }
    }

@app.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """Health check including database connectivity"""
    try:
        db.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        db_status = f"unhealthy: {str(e)}"

    return {
        "status": "healthy" if db_status == "healthy" else "degraded",
        "database": db_status,
        "timestamp": datetime.now().isoformat()
    }


# Run with: uvicorn labdash.main:app --reload --host 0.0.0.0 --port 5000
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=API_HOST, port=API_PORT)
