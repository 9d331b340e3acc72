from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import uuid
from contextlib import asynccontextmanager
from database import database
from middleware import get_ghl_service
from routes import approvals, audit, intake
from services.ghl_service import GHLService

import os
import logging
from pathlib import Path
from dotenv import load_dotenv
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# In-memory job store: the only job is an idempotent sweep over the mirror store
scheduler = AsyncIOScheduler()

from job_runner import run_proposal_resend_sweep

# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    if os.environ.get("PYTEST_RUNNING"):
        # Tests patch database.get_db and override the GHL dependency
        yield
        return

    # Startup
    logger.info("Starting Sales Intake API")
    await database.connect()

    if not (os.environ.get("GHL_API_KEY") or "").strip():
        logger.error("GHL_API_KEY is not set. CRM endpoints will return 500.")

    if os.environ.get("PROPOSAL_RESEND_ENABLED", "true").strip().lower() != "false":
        # Failed proposal emails - retried every 15 minutes
        scheduler.add_job(
            run_proposal_resend_sweep,
            CronTrigger(minute="*/15"),
            id="proposal_resend_sweep",
            name="Proposal Email Resend",
            replace_existing=True
        )
        scheduler.start()
        logger.info("Background job scheduler started")

    yield

    # Shutdown
    logger.info("Shutting down Sales Intake API")
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Background job scheduler stopped")
    await database.close()

# Create FastAPI app
app = FastAPI(
    title="Sales Intake API",
    description="Sales intake: GHL opportunities, pricing proposals and override approvals",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(intake.router)
app.include_router(approvals.router)
app.include_router(audit.router)

# Root endpoint
@app.get("/api")
async def root():
    return {
        "service": "Sales Intake API",
        "version": "1.0.0",
        "status": "operational"
    }

# Health check
@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": os.getenv("ENVIRONMENT", "development")
    }

# CRM connectivity / rate limiter snapshot
@app.get("/api/crm/status")
async def crm_status(ghl: GHLService = Depends(get_ghl_service)):
    return {
        "service": ghl.get_status(),
        "rate_limits": ghl.get_rate_limit_stats(),
    }

# Validation error handler: log request_id + full errors (loc path)
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = str(uuid.uuid4())
    errors = exc.errors()
    logger.warning(
        "Request validation failed request_id=%s path=%s errors=%s",
        request_id,
        request.url.path,
        [(e.get("loc"), e.get("msg"), e.get("type")) for e in errors],
    )
    return JSONResponse(
        status_code=422,
        content={"detail": errors, "request_id": request_id},
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=os.getenv("ENVIRONMENT") == "development"
    )
