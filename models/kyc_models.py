"""
Pydantic domain records for the e-KYC session state machine.

These are owned by the session store; anything handed out of the store is a
deep copy.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any, Literal
from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class KYCStatus(str, Enum):
    """Session status. Terminal: completed, failed, expired."""
    INITIATED = "initiated"
    CONSENT_GIVEN = "consent_given"
    LOCATION_CAPTURED = "location_captured"
    DOCUMENT_UPLOADED = "document_uploaded"
    DOCUMENT_VERIFIED = "document_verified"
    SECURE_VERIFICATION_PENDING = "secure_verification_pending"
    SECURE_VERIFIED = "secure_verified"
    QUESTIONNAIRE_PENDING = "questionnaire_pending"
    QUESTIONNAIRE_COMPLETED = "questionnaire_completed"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


# Position of each status in the state graph. Alternatives at the same
# step (pending/verified) share adjacent ranks so a retry can move between them.
STATUS_RANK: Dict[KYCStatus, int] = {
    KYCStatus.INITIATED: 0,
    KYCStatus.CONSENT_GIVEN: 1,
    KYCStatus.LOCATION_CAPTURED: 2,
    KYCStatus.DOCUMENT_UPLOADED: 3,
    KYCStatus.DOCUMENT_VERIFIED: 4,
    KYCStatus.SECURE_VERIFICATION_PENDING: 5,
    KYCStatus.SECURE_VERIFIED: 6,
    KYCStatus.QUESTIONNAIRE_PENDING: 7,
    KYCStatus.QUESTIONNAIRE_COMPLETED: 8,
    KYCStatus.COMPLETED: 9,
    KYCStatus.FAILED: 9,
    KYCStatus.EXPIRED: 10,
}

TERMINAL_STATUSES = {KYCStatus.COMPLETED, KYCStatus.FAILED, KYCStatus.EXPIRED}


class LivenessCheckType(str, Enum):
    BLINK = "blink_detection"
    HEAD_TURN_LEFT = "head_turn_left"
    HEAD_TURN_RIGHT = "head_turn_right"
    SMILE = "smile_detection"
    PASSIVE_TEXTURE = "passive_liveness"


# =============================================================================
# WORKFLOW CONFIGURATION
# =============================================================================

class WorkflowSteps(BaseModel):
    """Which pipeline stages are mandatory. Fixed set of stages."""
    location_capture: bool = True
    document_ocr: bool = True
    secure_verification: bool = True
    form: bool = Field(False, description="Questionnaire / form step")
    location_radius_km: Optional[float] = Field(
        None, ge=0, description="Allowed distance between GPS and document address"
    )

    def enabled_steps(self) -> List[str]:
        return [
            name for name in ("location_capture", "document_ocr", "secure_verification", "form")
            if getattr(self, name)
        ]


class WorkflowConfiguration(BaseModel):
    config_id: str
    name: str
    steps: WorkflowSteps
    form_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None
    is_active: bool = True


# =============================================================================
# STAGE RECORDS
# =============================================================================

class ConsentData(BaseModel):
    video_recording: bool = False
    location_tracking: bool = False
    document_use: bool = False
    timestamp: datetime = Field(default_factory=utc_now)
    ip_address: Optional[str] = None


class GPSLocation(BaseModel):
    latitude: float
    longitude: float
    accuracy: float
    timestamp: datetime = Field(default_factory=utc_now)


class IPLocation(BaseModel):
    address: str
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)


class LocationVerificationResult(BaseModel):
    """Outcome of comparing the applicant's location with the document address."""
    verified: bool
    verification_type: Optional[Literal["radius", "country"]] = None
    distance_km: Optional[float] = None
    allowed_radius_km: Optional[float] = None
    user_country: Optional[str] = None
    document_country: Optional[str] = None
    location_source: Optional[Literal["gps", "request"]] = None
    message: str = ""


class LocationData(BaseModel):
    gps: Optional[GPSLocation] = None
    ip: Optional[IPLocation] = None
    captured_at: datetime = Field(default_factory=utc_now)
    comparison: Optional[LocationVerificationResult] = None


class DocumentData(BaseModel):
    """Result handed over by the document-intelligence collaborator."""
    document_id: str
    document_type: str = "other"
    extracted_fields: Dict[str, str] = Field(default_factory=dict)
    confidence: float = 0.0
    is_valid: bool = False
    validation_errors: List[str] = Field(default_factory=list)
    uploaded_at: datetime = Field(default_factory=utc_now)


class QuestionAnswer(BaseModel):
    question: str
    user_answer: str
    expected_answer: Optional[str] = None
    is_correct: bool = False


class QuestionnaireData(BaseModel):
    """Scored questionnaire / form, produced by the questionnaire collaborator."""
    form_id: Optional[str] = None
    answers: List[QuestionAnswer] = Field(default_factory=list)
    score: float = 0.0
    passed: bool = False
    completed_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# SECURE VERIFICATION
# =============================================================================

class LivenessCheck(BaseModel):
    type: LivenessCheckType
    result: bool
    confidence: float = Field(..., ge=0.0, le=1.0)
    timestamp: datetime = Field(default_factory=utc_now)
    details: Optional[str] = None


class LivenessCheckData(BaseModel):
    overall_result: bool
    checks: List[LivenessCheck] = Field(default_factory=list)
    confidence_score: float = 0.0
    frame_count: int = 0
    frames_with_face: int = 0
    skipped: bool = Field(False, description="True only when liveness was explicitly bypassed")
    message: Optional[str] = None
    error: Optional[str] = None
    completed_at: datetime = Field(default_factory=utc_now)


class FaceMatchResult(BaseModel):
    is_match: bool
    match_score: float = 0.0
    confidence: float = 0.0
    distance: Optional[float] = None
    threshold: float
    error: Optional[str] = None


class FaceConsistencyResult(BaseModel):
    is_consistent: bool
    consistency_score: float = 0.0
    frames_compared: int = 0
    message: str = ""
    error: Optional[str] = None


class SecureVerificationRecord(BaseModel):
    face_match: FaceMatchResult
    liveness: LivenessCheckData
    face_consistency: FaceConsistencyResult
    overall_result: bool
    message: str = ""
    verified_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# SESSION
# =============================================================================

class VerificationResults(BaseModel):
    location_verified: bool = False
    document_verified: bool = False
    secure_verified: bool = False
    questionnaire_verified: bool = False
    overall_verified: bool = False


class TimelineDecision(BaseModel):
    decision_type: str
    result: bool
    score: Optional[float] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)


class KYCSession(BaseModel):
    session_id: str
    user_id: str
    email: Optional[str] = None
    mobile_number: Optional[str] = None
    status: KYCStatus = KYCStatus.INITIATED
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None

    workflow_config_id: Optional[str] = None
    workflow_steps: WorkflowSteps = Field(default_factory=WorkflowSteps)

    consent: Optional[ConsentData] = None
    location: Optional[LocationData] = None
    document: Optional[DocumentData] = None
    secure_verification: Optional[SecureVerificationRecord] = None
    questionnaire: Optional[QuestionnaireData] = None

    verification_results: VerificationResults = Field(default_factory=VerificationResults)
    overall_score: Optional[float] = None


class CompletionResult(BaseModel):
    """Outcome of one completion evaluation."""
    success: bool
    message: str
    status: KYCStatus
    required_steps: WorkflowSteps
    verification_results: VerificationResults
    score: int
    total_checks: int
    overall_score: float
    completed_at: datetime
