"""
e-KYC Session API

Walks an applicant through consent, location, document and secure
verification (face match + liveness + face consistency) and renders a
pass/fail completion decision for each session.

Usage:
    uvicorn main:app --reload

Then access the API documentation at http://localhost:8000/docs
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from utils.exceptions import AppError
from utils.logging_config import configure_logging
from utils.config import (
    API_KEYS,
    LIVENESS_ALLOW_NO_FRAMES,
    LIVENESS_MAX_WORKERS,
    LOG_JSON_FORMAT,
    LOG_LEVEL,
    SESSION_EXPIRY_MS,
    SESSION_SWEEP_INTERVAL_MS,
)
from middleware.request_id import RequestIDMiddleware
from middleware.api_key import APIKeyMiddleware
from api.routes.metrics import MetricsMiddleware
from services.face_extractor import InsightFaceProvider
from services.liveness_service import LivenessService
from services.secure_verification import SecureVerificationService
from services.session_manager import SessionStore
from services.timeline_service import TimelineService
from services.workflow_config_service import WorkflowConfigStore

# Configure structured JSON logging
configure_logging(level=LOG_LEVEL, json_format=LOG_JSON_FORMAT)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.

    Builds the per-process stores and verification services, pre-loads the
    face analysis model and runs the session expiry sweep.
    """
    logger.info("Starting e-KYC session API...")

    # A provider already placed on app.state (alternative backend) is kept
    provider = getattr(app.state, "provider", None) or InsightFaceProvider()
    app.state.provider = provider

    timeline = TimelineService()
    app.state.timeline = timeline
    app.state.workflow_store = WorkflowConfigStore()
    app.state.session_store = SessionStore(
        expiry_ms=SESSION_EXPIRY_MS,
        sweep_interval_ms=SESSION_SWEEP_INTERVAL_MS,
        timeline=timeline,
    )
    app.state.secure_verifier = SecureVerificationService(
        provider,
        liveness_service=LivenessService(
            provider,
            max_workers=LIVENESS_MAX_WORKERS,
            allow_no_frames=LIVENESS_ALLOW_NO_FRAMES,
        ),
    )

    if LIVENESS_ALLOW_NO_FRAMES:
        logger.warning("LIVENESS_ALLOW_NO_FRAMES is enabled - submissions without frames skip liveness")

    # Pre-load face analysis model
    warm_up = getattr(provider, "warm_up", None)
    if callable(warm_up):
        try:
            logger.info("Loading face analysis model...")
            warm_up()
            logger.info("Face analysis model loaded successfully")
        except Exception as e:
            logger.warning(f"Failed to preload face analysis model: {e}")

    app.state.session_store.start()
    logger.info("e-KYC session API ready!")

    yield  # Application runs here

    logger.info("Shutting down e-KYC session API...")
    app.state.session_store.stop()


# Create FastAPI application
app = FastAPI(
    title="e-KYC Session API",
    description="""
    Electronic Know Your Customer (e-KYC) session backend.

    ## Workflow

    1. `POST /api/v1/kyc/start` - start a session (optionally under an admin workflow)
    2. `POST /api/v1/kyc/consent` - record applicant consent
    3. `POST /api/v1/kyc/location` and `/kyc/location/compare` - capture and verify location
    4. `POST /api/v1/kyc/document` - submit the document OCR result
    5. `POST /api/v1/kyc/secure-verification` - face match, liveness and face consistency
    6. `POST /api/v1/kyc/complete` - evaluate the required steps and render pass/fail

    ## Administration

    * **Workflows**: `/api/v1/admin/workflow` - choose which steps are mandatory
    * **Statistics**: `/api/v1/admin/statistics`
    """,
    version="0.1.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add custom middleware (order matters: last added = outermost)
app.add_middleware(MetricsMiddleware)
app.add_middleware(APIKeyMiddleware, api_keys=API_KEYS)
app.add_middleware(RequestIDMiddleware)


# =============================================================================
# GLOBAL EXCEPTION HANDLER
# =============================================================================

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    """
    Global handler for all AppError exceptions.

    Converts custom exceptions to consistent JSON responses.
    """
    logger.warning(f"[{exc.code}] {exc.message} | Details: {exc.details}")
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict()
    )

# Include API routes
from api.routes import router as production_router
from api.routes.metrics import router as metrics_router
app.include_router(production_router, prefix="/api/v1")
app.include_router(metrics_router)  # /metrics at root level


@app.get("/api")
async def api_info():
    """API information endpoint."""
    return {
        "name": "e-KYC Session API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/api/v1/health"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=False
    )
