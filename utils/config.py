"""Configuration settings for the e-KYC session backend."""
import os
from pathlib import Path

# Base directories
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.environ.get("DATA_DIR", str(BASE_DIR / "data")))

# Artifact directories owned by collaborators (recordings, documents, reports).
# Session deletion cascades into these.
RECORDINGS_DIR = DATA_DIR / "recordings"
VIDEOS_DIR = DATA_DIR / "videos"
UPLOADS_DIR = DATA_DIR / "uploads"
REPORTS_DIR = DATA_DIR / "reports"

# Models directory for offline deployment
# Set MODELS_DIR environment variable to override
MODELS_DIR = Path(os.environ.get("MODELS_DIR", str(BASE_DIR / "models")))
INSIGHTFACE_MODEL_DIR = MODELS_DIR / "insightface"

# API Security (API Key Authentication)
# Comma-separated list of valid API keys. If empty, auth is disabled.
API_KEYS = [k.strip() for k in os.environ.get("API_KEYS", "").split(",") if k.strip()]

# Logging configuration
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
LOG_JSON_FORMAT = os.environ.get("LOG_JSON_FORMAT", "true").lower() == "true"

# Public base URL used when generating applicant links for a workflow
KYC_LINK_BASE_URL = os.environ.get("KYC_LINK_BASE_URL", "http://localhost:3000")


# Session lifecycle
SESSION_EXPIRY_MS = int(os.environ.get("SESSION_EXPIRY_MS", str(30 * 60 * 1000)))  # 30 minutes
SESSION_SWEEP_INTERVAL_MS = int(os.environ.get("SESSION_SWEEP_INTERVAL_MS", str(5 * 60 * 1000)))  # 5 minutes

# Workflow defaults when a session has no workflow configuration
DEFAULT_WORKFLOW_STEPS = {
    "location_capture": True,
    "document_ocr": True,
    "secure_verification": True,
    "form": False,
}

# Image Processing Settings
MAX_IMAGE_SIZE = (2000, 2000)  # Maximum dimensions for processing
MAX_UPLOAD_BYTES = 10 * 1024 * 1024  # 10MB per uploaded image

# Face Recognition Settings
FACE_DETECTION_MODEL = "buffalo_l"  # InsightFace model
FACE_DETECTION_CTX = -1  # GPU context, -1 for CPU
FACE_DETECTION_SIZE = (640, 640)

# Euclidean distance thresholds between face embeddings.
# Conservative default to minimise false accepts.
FACE_MATCH_THRESHOLD = float(os.environ.get("FACE_MATCH_THRESHOLD", "0.45"))
FACE_CONSISTENCY_THRESHOLD = float(os.environ.get("FACE_CONSISTENCY_THRESHOLD", str(FACE_MATCH_THRESHOLD)))

# Liveness Detection Settings
LIVENESS_MAX_WORKERS = int(os.environ.get("LIVENESS_MAX_WORKERS", "4"))
LIVENESS_MAX_FRAMES = int(os.environ.get("LIVENESS_MAX_FRAMES", "30"))
LIVENESS_PASS_RATIO = 0.6  # Fraction of executed checks that must pass (inclusive)
# When true, an empty frame list yields an explicit "skipped" result instead of a failure.
LIVENESS_ALLOW_NO_FRAMES = os.environ.get("LIVENESS_ALLOW_NO_FRAMES", "false").lower() == "true"

# Blink (eye aspect ratio)
BLINK_EAR_THRESHOLD = 0.21
BLINK_EAR_VARIATION = 0.10
BLINK_CONFIDENCE_SCALE = 0.15
BLINK_MIN_PASS_CONFIDENCE = 0.75

# Head turn (yaw in degrees, negative = left)
HEAD_TURN_YAW_THRESHOLD = 15.0
HEAD_TURN_CONFIDENCE_SCALE = 30.0
HEAD_TURN_FAIL_CONFIDENCE = 0.3

# Smile (provider "happy" expression probability)
SMILE_THRESHOLD = 0.5

# Passive texture / anti-spoofing
TEXTURE_MIN_STD_DEV = 30.0
TEXTURE_MIN_LAPLACIAN_VARIANCE = 100.0
MOIRE_CORRELATION_THRESHOLD = 0.95
MOIRE_MIN_LAG = 3
MOIRE_MAX_LAG = 50
TEXTURE_CONFIDENCE_WEIGHTS = {
    "std_dev": 0.3,
    "laplacian": 0.4,
    "periodicity": 0.3,
}

# Location
EARTH_RADIUS_KM = 6371.0

# Ensure directories exist
for dir_path in [RECORDINGS_DIR, VIDEOS_DIR, UPLOADS_DIR, REPORTS_DIR]:
    dir_path.mkdir(parents=True, exist_ok=True)
