"""
Applicant-facing KYC session endpoints.

Routes
------
POST   /kyc/start                      - start a session (optionally under a workflow)
POST   /kyc/consent                    - record consent
POST   /kyc/location                   - capture GPS / request location
POST   /kyc/location/compare           - compare location with the document address
POST   /kyc/document                   - submit the document OCR result
POST   /kyc/secure-verification        - face match + liveness + face consistency
POST   /kyc/questionnaire              - submit the scored questionnaire
POST   /kyc/complete                   - evaluate completion
GET    /kyc/session/{id}               - full session snapshot
GET    /kyc/session/{id}/summary       - condensed view for reports
GET    /kyc/session/{id}/timeline      - backend decision timeline
DELETE /kyc/session/{id}               - remove a session and its artifacts
GET    /kyc/sessions                   - list sessions (optionally by user)
GET    /kyc/liveness/instructions      - prompts shown during liveness capture
GET    /kyc/statistics                 - session counts by status
"""
import logging
import time
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.concurrency import run_in_threadpool

from api.dependencies import (
    get_secure_verifier,
    get_session_store,
    get_timeline,
    get_workflow_store,
)
from api.routes.metrics import (
    SECURE_VERIFICATION_LATENCY,
    SESSION_COMPLETIONS,
    SESSIONS_STARTED,
    record_secure_verification,
)
from models.kyc_models import (
    ConsentData,
    DocumentData,
    IPLocation,
    LocationData,
    QuestionnaireData,
)
from models.schemas import (
    CompleteRequest,
    CompletionResponse,
    ConsentRequest,
    DeleteResponse,
    DocumentSubmitRequest,
    LivenessInstructionsResponse,
    LocationCompareRequest,
    LocationCompareResponse,
    LocationRequest,
    QuestionnaireSubmitRequest,
    SecureVerificationResponse,
    SessionListResponse,
    SessionResponse,
    SessionSummary,
    StartSessionRequest,
    StatisticsResponse,
    TimelineResponse,
)
from services.liveness_service import get_liveness_instructions
from services.location_service import compare_location, validate_gps
from services.secure_verification import SecureVerificationService
from services.session_manager import SessionStore
from services.timeline_service import TimelineService
from services.workflow_config_service import WorkflowConfigStore
from utils.config import LIVENESS_MAX_FRAMES, MAX_UPLOAD_BYTES
from utils.exceptions import ImageProcessingError, SessionStateError, ValidationError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/kyc", tags=["KYC Session"])


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def _read_upload(upload: UploadFile, name: str) -> bytes:
    """Read an uploaded image and reject empty or oversized payloads."""
    data = await upload.read()
    if not data:
        raise ImageProcessingError(f"Empty upload: {name}", details={"field": name})
    if len(data) > MAX_UPLOAD_BYTES:
        raise ImageProcessingError(
            f"Upload too large: {name}",
            details={"field": name, "size": len(data), "max_bytes": MAX_UPLOAD_BYTES}
        )
    return data


# =============================================================================
# SESSION LIFECYCLE
# =============================================================================

@router.post("/start", response_model=SessionResponse)
async def start_session(
    body: StartSessionRequest,
    store: SessionStore = Depends(get_session_store),
    workflows: WorkflowConfigStore = Depends(get_workflow_store),
):
    """
    Start a KYC session.

    When a workflow configuration is given it must exist and be valid
    (active, at least one step enabled); its steps are snapshotted into
    the session.
    """
    config = None
    if body.workflow_config_id:
        config = workflows.get_configuration(body.workflow_config_id)
        validation = workflows.validate_configuration(config.config_id)
        if not validation["is_valid"]:
            raise SessionStateError(
                "Workflow configuration cannot be used to start a session",
                details={"config_id": config.config_id, "errors": validation["errors"]}
            )

    session = store.create_session(
        user_id=body.user_id,
        email=body.email,
        mobile_number=body.mobile_number,
        workflow_config=config,
    )
    SESSIONS_STARTED.inc()
    return SessionResponse(session=session)


@router.post("/consent", response_model=SessionResponse)
async def submit_consent(
    body: ConsentRequest,
    request: Request,
    store: SessionStore = Depends(get_session_store),
):
    consent = ConsentData(
        video_recording=body.video_recording,
        location_tracking=body.location_tracking,
        document_use=body.document_use,
        ip_address=_client_ip(request),
    )
    return SessionResponse(session=store.update_consent(body.session_id, consent))


@router.post("/location", response_model=SessionResponse)
async def capture_location(
    body: LocationRequest,
    request: Request,
    store: SessionStore = Depends(get_session_store),
):
    """
    Capture the applicant's location.

    GPS coordinates are validated before the session is touched. Capturing a
    location does not verify it; use /kyc/location/compare for that.
    """
    gps = None
    if body.latitude is not None or body.longitude is not None:
        if body.latitude is None or body.longitude is None:
            raise ValidationError("Both latitude and longitude are required", field="latitude")
        gps = validate_gps(body.latitude, body.longitude, body.accuracy or 0.0)

    location = LocationData(
        gps=gps,
        ip=IPLocation(
            address=_client_ip(request),
            country=body.country,
            region=body.region,
            city=body.city,
        ),
    )
    return SessionResponse(session=store.update_location(body.session_id, location))


@router.post("/location/compare", response_model=LocationCompareResponse)
async def compare_location_with_document(
    body: LocationCompareRequest,
    store: SessionStore = Depends(get_session_store),
):
    """
    Compare the applicant's location with the document address.

    Uses the coordinates in the request when given, otherwise the session's
    captured GPS position. Radius comparison applies when an allowed radius
    (request or workflow) is > 0, otherwise countries are compared.
    """
    session = store.get_session(body.session_id)

    source = None
    user_lat, user_lon = body.latitude, body.longitude
    if user_lat is not None and user_lon is not None:
        validate_gps(user_lat, user_lon, 0.0)
        source = "request"
    elif session.location is not None and session.location.gps is not None:
        user_lat, user_lon = session.location.gps.latitude, session.location.gps.longitude
        source = "gps"
    else:
        user_lat = user_lon = None

    user_country = body.user_country
    if user_country is None and session.location is not None and session.location.ip is not None:
        user_country = session.location.ip.country

    radius = (
        body.allowed_radius_km if body.allowed_radius_km is not None
        else session.workflow_steps.location_radius_km
    )

    result = compare_location(
        user_lat,
        user_lon,
        document_latitude=body.document_latitude,
        document_longitude=body.document_longitude,
        allowed_radius_km=radius,
        user_country=user_country,
        document_country=body.document_country,
    )
    result.location_source = source

    store.update_location_verified(body.session_id, result.verified, result)
    logger.info(
        f"Location comparison ({result.verification_type}, source={source}): verified={result.verified}",
        extra={"session_id": body.session_id}
    )
    return LocationCompareResponse(document_address=body.document_address, result=result)


@router.post("/document", response_model=SessionResponse)
async def submit_document(
    body: DocumentSubmitRequest,
    store: SessionStore = Depends(get_session_store),
):
    """Record the document collaborator's OCR result for this session."""
    document = DocumentData(
        document_id=body.document_id,
        document_type=body.document_type,
        extracted_fields=body.extracted_fields,
        confidence=body.confidence,
        is_valid=body.is_valid,
        validation_errors=body.validation_errors,
    )
    return SessionResponse(session=store.update_document(body.session_id, document))


@router.post("/secure-verification", response_model=SecureVerificationResponse)
async def secure_verification(
    session_id: str = Form(...),
    face_image: UploadFile = File(..., description="Live face capture"),
    document_image: UploadFile = File(..., description="Document image with the holder photo"),
    frames: List[UploadFile] = File(default=[], description="Liveness video frames"),
    store: SessionStore = Depends(get_session_store),
    verifier: SecureVerificationService = Depends(get_secure_verifier),
):
    """
    Run face match, liveness and face consistency for one submission.

    Verification failures are recorded on the session and returned with
    ``overall_result=false``; only malformed input is rejected.
    """
    # Fail fast on unknown sessions before the expensive analysis
    store.get_session(session_id)

    if len(frames) > LIVENESS_MAX_FRAMES:
        raise ValidationError(
            f"Too many liveness frames (max {LIVENESS_MAX_FRAMES})",
            field="frames",
            details={"received": len(frames)}
        )

    face_bytes = await _read_upload(face_image, "face_image")
    document_bytes = await _read_upload(document_image, "document_image")
    frame_bytes = [await _read_upload(f, f"frames[{i}]") for i, f in enumerate(frames)]

    start = time.time()
    record = await run_in_threadpool(verifier.verify, face_bytes, document_bytes, frame_bytes)
    SECURE_VERIFICATION_LATENCY.observe(time.time() - start)
    record_secure_verification(record)

    session = store.update_secure_verification(session_id, record)
    return SecureVerificationResponse(session_id=session_id, status=session.status, result=record)


@router.post("/questionnaire", response_model=SessionResponse)
async def submit_questionnaire(
    body: QuestionnaireSubmitRequest,
    store: SessionStore = Depends(get_session_store),
):
    questionnaire = QuestionnaireData(
        form_id=body.form_id,
        answers=body.answers,
        score=body.score,
        passed=body.passed,
    )
    return SessionResponse(session=store.update_questionnaire(body.session_id, questionnaire))


@router.post("/complete", response_model=CompletionResponse)
async def complete_session(
    body: CompleteRequest,
    store: SessionStore = Depends(get_session_store),
):
    """Evaluate the session; may be called repeatedly."""
    result = store.complete_session(body.session_id)
    SESSION_COMPLETIONS.labels(status=result.status.value).inc()
    return CompletionResponse(session_id=body.session_id, **result.model_dump())


# =============================================================================
# READS
# =============================================================================

@router.get("/session/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str, store: SessionStore = Depends(get_session_store)):
    return SessionResponse(session=store.get_session(session_id))


@router.get("/session/{session_id}/summary", response_model=SessionSummary)
async def get_session_summary(session_id: str, store: SessionStore = Depends(get_session_store)):
    """Condensed session view consumed by report rendering."""
    session = store.get_session(session_id)
    secure = session.secure_verification
    return SessionSummary(
        session_id=session.session_id,
        user_id=session.user_id,
        status=session.status,
        created_at=session.created_at,
        completed_at=session.completed_at,
        workflow_config_id=session.workflow_config_id,
        required_steps=session.workflow_steps,
        verification_results=session.verification_results,
        overall_score=session.overall_score,
        document_type=session.document.document_type if session.document else None,
        liveness_checks=secure.liveness.checks if secure else [],
        face_match_score=secure.face_match.match_score if secure else None,
        location_comparison=session.location.comparison if session.location else None,
    )


@router.get("/session/{session_id}/timeline", response_model=TimelineResponse)
async def get_session_timeline(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
    timeline: TimelineService = Depends(get_timeline),
):
    store.get_session(session_id)
    return TimelineResponse(session_id=session_id, decisions=timeline.get_timeline(session_id))


@router.delete("/session/{session_id}", response_model=DeleteResponse)
async def delete_session(session_id: str, store: SessionStore = Depends(get_session_store)):
    store.delete_session(session_id)
    return DeleteResponse(message=f"Session {session_id} deleted")


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(
    user_id: Optional[str] = None,
    store: SessionStore = Depends(get_session_store),
):
    sessions = store.list_sessions(user_id=user_id)
    return SessionListResponse(total=len(sessions), sessions=sessions)


@router.get("/liveness/instructions", response_model=LivenessInstructionsResponse)
async def liveness_instructions():
    return LivenessInstructionsResponse(
        instructions=get_liveness_instructions(),
        max_frames=LIVENESS_MAX_FRAMES,
    )


@router.get("/statistics", response_model=StatisticsResponse)
async def session_statistics(store: SessionStore = Depends(get_session_store)):
    return StatisticsResponse(**store.get_statistics())
