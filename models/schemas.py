"""
Pydantic models for API request/response schemas.
"""
from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field

from models.kyc_models import (
    CompletionResult,
    KYCSession,
    KYCStatus,
    LivenessCheck,
    LocationVerificationResult,
    QuestionAnswer,
    SecureVerificationRecord,
    TimelineDecision,
    VerificationResults,
    WorkflowConfiguration,
    WorkflowSteps,
)


# =============================================================================
# SESSION
# =============================================================================

class StartSessionRequest(BaseModel):
    """Request model for the /kyc/start endpoint."""
    user_id: str = Field(..., min_length=1, description="Applicant identifier")
    email: Optional[str] = Field(None, description="Applicant email")
    mobile_number: Optional[str] = Field(None, description="Applicant mobile number")
    workflow_config_id: Optional[str] = Field(
        None,
        description="Workflow configuration to apply. Defaults to all core steps required"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "user_id": "applicant-001",
                "email": "applicant@example.com",
                "workflow_config_id": None
            }
        }


class SessionResponse(BaseModel):
    """Wrapper around a session snapshot."""
    success: bool = True
    session: KYCSession


class ConsentRequest(BaseModel):
    """Request model for the /kyc/consent endpoint."""
    session_id: str
    video_recording: bool = Field(False, description="Consent to video recording")
    location_tracking: bool = Field(False, description="Consent to location capture")
    document_use: bool = Field(False, description="Consent to document processing")


class LocationRequest(BaseModel):
    """Request model for the /kyc/location endpoint."""
    session_id: str
    latitude: Optional[float] = Field(None, description="GPS latitude (-90..90)")
    longitude: Optional[float] = Field(None, description="GPS longitude (-180..180)")
    accuracy: Optional[float] = Field(None, description="GPS accuracy in meters")
    country: Optional[str] = Field(None, description="Country resolved for the request IP")
    region: Optional[str] = None
    city: Optional[str] = None


class LocationCompareRequest(BaseModel):
    """
    Request model for the /kyc/location/compare endpoint.

    The document address must already be geocoded by the document
    collaborator. When latitude/longitude are omitted the session's
    captured GPS position is used.
    """
    session_id: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    document_address: str = Field(..., min_length=1, description="Address printed on the document")
    document_latitude: Optional[float] = None
    document_longitude: Optional[float] = None
    document_country: Optional[str] = None
    user_country: Optional[str] = None
    allowed_radius_km: Optional[float] = Field(
        None,
        ge=0,
        description="Radius comparison when > 0, otherwise country comparison. "
                    "Defaults to the workflow's location radius"
    )


class LocationCompareResponse(BaseModel):
    success: bool = True
    document_address: str
    result: LocationVerificationResult


class DocumentSubmitRequest(BaseModel):
    """Result produced by the document OCR collaborator for this session."""
    session_id: str
    document_id: str = Field(..., min_length=1)
    document_type: str = Field("other", description="national_id, passport, drivers_license, other")
    extracted_fields: Dict[str, str] = Field(default_factory=dict)
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    is_valid: bool = False
    validation_errors: List[str] = Field(default_factory=list)


class QuestionnaireSubmitRequest(BaseModel):
    """Scored questionnaire produced by the questionnaire collaborator."""
    session_id: str
    form_id: Optional[str] = None
    answers: List[QuestionAnswer] = Field(default_factory=list)
    score: float = Field(0.0, ge=0.0, le=1.0)
    passed: bool = False


class CompleteRequest(BaseModel):
    session_id: str


class CompletionResponse(CompletionResult):
    session_id: str


class SecureVerificationResponse(BaseModel):
    """Response for the /kyc/secure-verification endpoint."""
    success: bool = True
    session_id: str
    status: KYCStatus
    result: SecureVerificationRecord


class SessionSummary(BaseModel):
    """Condensed session view for report rendering."""
    session_id: str
    user_id: str
    status: KYCStatus
    created_at: datetime
    completed_at: Optional[datetime] = None
    workflow_config_id: Optional[str] = None
    required_steps: WorkflowSteps
    verification_results: VerificationResults
    overall_score: Optional[float] = None
    document_type: Optional[str] = None
    liveness_checks: List[LivenessCheck] = Field(default_factory=list)
    face_match_score: Optional[float] = None
    location_comparison: Optional[LocationVerificationResult] = None


class SessionListResponse(BaseModel):
    total: int
    sessions: List[KYCSession]


class TimelineResponse(BaseModel):
    session_id: str
    decisions: List[TimelineDecision]


class LivenessInstruction(BaseModel):
    check_type: str
    instruction: str


class LivenessInstructionsResponse(BaseModel):
    instructions: List[LivenessInstruction]
    max_frames: int


class StatisticsResponse(BaseModel):
    total: int
    by_status: Dict[str, int]
    completed: int
    failed: int
    in_progress: int


# =============================================================================
# WORKFLOW ADMIN
# =============================================================================

class WorkflowCreateRequest(BaseModel):
    """Request model for creating a workflow configuration."""
    name: str = Field(..., min_length=1)
    steps: WorkflowSteps = Field(default_factory=WorkflowSteps)
    form_id: Optional[str] = None
    created_by: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Remote onboarding",
                "steps": {
                    "location_capture": True,
                    "document_ocr": True,
                    "secure_verification": True,
                    "form": False,
                    "location_radius_km": 50
                },
                "created_by": "admin"
            }
        }


class WorkflowUpdateRequest(BaseModel):
    """Partial update; omitted fields stay unchanged."""
    name: Optional[str] = Field(None, min_length=1)
    steps: Optional[WorkflowSteps] = None
    form_id: Optional[str] = None
    is_active: Optional[bool] = None


class WorkflowResponse(BaseModel):
    success: bool = True
    configuration: WorkflowConfiguration


class WorkflowListResponse(BaseModel):
    total: int
    configurations: List[WorkflowConfiguration]


class WorkflowLinkResponse(BaseModel):
    config_id: str
    link: str


class WorkflowValidationResponse(BaseModel):
    config_id: str
    is_valid: bool
    errors: List[str] = Field(default_factory=list)


class AdminStatisticsResponse(BaseModel):
    sessions: StatisticsResponse
    workflows: Dict[str, int]


class DeleteResponse(BaseModel):
    success: bool = True
    message: str


# =============================================================================
# SYSTEM
# =============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "ok"
    face_analysis_ready: bool = False
    active_sessions: int = 0
    liveness_allow_no_frames: bool = False
    details: Dict[str, Any] = Field(default_factory=dict)
