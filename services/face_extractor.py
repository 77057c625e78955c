"""
Face Landmark / Embedding Provider using InsightFace.

Given an image, returns zero-or-one detected face with 68 2-D landmark
points, a fixed-length embedding and an expression-probability map.
Supports offline model loading via INSIGHTFACE_MODEL_DIR config.

The rest of the system only depends on the ``LandmarkProvider`` protocol,
so any model producing the same observation can be swapped in.
"""
import os
import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol

import numpy as np

from utils.config import (
    FACE_DETECTION_MODEL,
    FACE_DETECTION_CTX,
    FACE_DETECTION_SIZE,
    INSIGHTFACE_MODEL_DIR,
)
from utils.exceptions import ModelLoadError
from utils.logging_config import log_execution_time

logger = logging.getLogger(__name__)

# Mouth / jaw landmark indices (68-point layout) used for the smile estimate
MOUTH_LEFT = 48
MOUTH_RIGHT = 54
UPPER_LIP_TOP = 51
LOWER_LIP_BOTTOM = 57
JAW_LEFT = 0
JAW_RIGHT = 16

# Mouth width / jaw width of a neutral face, and the span to full smile
SMILE_NEUTRAL_WIDTH_RATIO = 0.36
SMILE_WIDTH_RANGE = 0.14


@dataclass
class FaceObservation:
    """One detected face."""
    landmarks: np.ndarray  # (68, 2)
    embedding: np.ndarray  # (N,)
    expressions: Dict[str, float] = field(default_factory=dict)
    detection_score: float = 1.0


class LandmarkProvider(Protocol):
    """Anything that can turn an image into a single face observation."""

    def analyze(self, image: np.ndarray) -> Optional[FaceObservation]:
        """Return the primary face in ``image`` or None when no face is found."""
        ...


def estimate_happy(landmarks: np.ndarray) -> float:
    """
    Estimate a "happy" expression probability from mouth geometry.

    A smile widens the mouth relative to the jaw and lifts the mouth corners
    above the lip midline.
    """
    pts = np.asarray(landmarks, dtype=np.float64)
    jaw_width = np.linalg.norm(pts[JAW_RIGHT] - pts[JAW_LEFT])
    if jaw_width == 0:
        return 0.0

    mouth_width = np.linalg.norm(pts[MOUTH_RIGHT] - pts[MOUTH_LEFT])
    width_score = (mouth_width / jaw_width - SMILE_NEUTRAL_WIDTH_RATIO) / SMILE_WIDTH_RANGE

    lip_mid_y = (pts[UPPER_LIP_TOP][1] + pts[LOWER_LIP_BOTTOM][1]) / 2.0
    corner_y = (pts[MOUTH_LEFT][1] + pts[MOUTH_RIGHT][1]) / 2.0
    # Image y grows downward: corners above the midline give a positive lift
    lift_score = (lip_mid_y - corner_y) / (0.05 * jaw_width)

    score = 0.7 * width_score + 0.3 * lift_score
    return float(max(0.0, min(1.0, score)))


class InsightFaceProvider:
    """
    Landmark provider backed by InsightFace ``FaceAnalysis``.

    The model is loaded once per process on first use and shared by all
    instances.
    """

    _app = None
    _load_lock = threading.Lock()

    def __init__(self, model_name: str = FACE_DETECTION_MODEL):
        self.model_name = model_name

    def _get_app(self):
        if InsightFaceProvider._app is not None:
            return InsightFaceProvider._app

        with InsightFaceProvider._load_lock:
            if InsightFaceProvider._app is None:
                InsightFaceProvider._app = self._load_model()
        return InsightFaceProvider._app

    def _load_model(self):
        try:
            from insightface.app import FaceAnalysis
        except ImportError as e:
            raise ModelLoadError(
                self.model_name,
                reason="InsightFace is not installed. Install it with: pip install insightface onnxruntime"
            ) from e

        # Check for local models directory (offline mode)
        kwargs = {}
        if INSIGHTFACE_MODEL_DIR.exists():
            root = str(INSIGHTFACE_MODEL_DIR)
            os.environ["INSIGHTFACE_HOME"] = root
            kwargs["root"] = root

        try:
            app = FaceAnalysis(
                name=self.model_name,
                allowed_modules=["detection", "landmark_3d_68", "recognition"],
                providers=["CPUExecutionProvider"],
                **kwargs
            )
            app.prepare(ctx_id=FACE_DETECTION_CTX, det_size=FACE_DETECTION_SIZE)
        except Exception as e:
            raise ModelLoadError(self.model_name, reason=str(e)) from e

        logger.info(f"InsightFace model '{self.model_name}' loaded successfully")
        return app

    def warm_up(self) -> None:
        """Load the model eagerly (used at application startup)."""
        self._get_app()

    def detect_faces(self, image: np.ndarray) -> List:
        """Detect all faces in an image (BGR format)."""
        return self._get_app().get(image)

    @log_execution_time
    def analyze(self, image: np.ndarray) -> Optional[FaceObservation]:
        """
        Analyze the largest face in an image.

        Args:
            image: Input image (BGR format)

        Returns:
            FaceObservation, or None if no face detected
        """
        faces = self.detect_faces(image)
        if not faces:
            logger.debug("No faces detected in image")
            return None

        def face_area(face):
            bbox = face.bbox
            return (bbox[2] - bbox[0]) * (bbox[3] - bbox[1])

        face = max(faces, key=face_area)

        landmarks_3d = getattr(face, "landmark_3d_68", None)
        if landmarks_3d is None:
            logger.warning("Face detected without 68-point landmarks; treating as no face")
            return None
        landmarks = np.asarray(landmarks_3d, dtype=np.float64)[:, :2]

        embedding = getattr(face, "normed_embedding", None)
        if embedding is None:
            logger.warning("Face detected without embedding; treating as no face")
            return None

        return FaceObservation(
            landmarks=landmarks,
            embedding=np.asarray(embedding, dtype=np.float64),
            expressions={"happy": estimate_happy(landmarks)},
            detection_score=float(getattr(face, "det_score", 1.0)),
        )

    def is_ready(self) -> bool:
        """Check whether the model is loaded."""
        return InsightFaceProvider._app is not None
