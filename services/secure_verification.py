"""
Secure Verification Orchestrator.

Combines three checks into one trust decision:
1. Face match - live face capture vs. document photo
2. Liveness - blink / head turn / smile / passive texture over video frames
3. Face consistency - the match capture and the liveness frames show the
   same person

All three must pass. Nothing raises past this boundary: a broken step
produces a failed sub-record with its error populated, so the session can
record a failed stage distinctly from a broken call.
"""
import logging
from typing import Optional, Sequence

from models.kyc_models import (
    FaceMatchResult,
    FaceConsistencyResult,
    LivenessCheckData,
    SecureVerificationRecord,
)
from services.face_extractor import FaceObservation, LandmarkProvider
from services.face_recognition import match_observations, check_face_consistency
from services.liveness_service import LivenessService
from utils.config import FACE_MATCH_THRESHOLD, FACE_CONSISTENCY_THRESHOLD
from utils.image_manager import load_image

logger = logging.getLogger(__name__)


def combine(
    face_match: Optional[FaceMatchResult],
    liveness: Optional[LivenessCheckData],
    face_consistency: Optional[FaceConsistencyResult],
    match_threshold: float = FACE_MATCH_THRESHOLD
) -> SecureVerificationRecord:
    """
    Build the combined record; overall = match AND liveness AND consistency.

    Missing inputs are replaced by failed sub-records carrying a diagnostic.
    """
    if face_match is None:
        face_match = FaceMatchResult(
            is_match=False, threshold=match_threshold, error="Face match result missing"
        )
    if liveness is None:
        liveness = LivenessCheckData(
            overall_result=False, error="Liveness result missing", message="Liveness result missing"
        )
    if face_consistency is None:
        face_consistency = FaceConsistencyResult(
            is_consistent=False,
            error="Face consistency result missing",
            message="Face consistency result missing",
        )

    overall = bool(
        face_match.is_match and liveness.overall_result and face_consistency.is_consistent
    )

    if not face_match.is_match:
        message = "Face does not match document photo"
    elif not liveness.overall_result:
        message = "Liveness check failed"
    elif not face_consistency.is_consistent:
        message = "Face inconsistency detected between face capture and liveness check"
    else:
        message = "Face verification and liveness check passed successfully"

    return SecureVerificationRecord(
        face_match=face_match,
        liveness=liveness,
        face_consistency=face_consistency,
        overall_result=overall,
        message=message,
    )


class SecureVerificationService:
    """Runs face match, liveness and face consistency for one submission."""

    def __init__(
        self,
        provider: LandmarkProvider,
        liveness_service: Optional[LivenessService] = None,
        match_threshold: float = FACE_MATCH_THRESHOLD,
        consistency_threshold: float = FACE_CONSISTENCY_THRESHOLD,
    ):
        self.provider = provider
        self.liveness_service = liveness_service or LivenessService(provider)
        self.match_threshold = match_threshold
        self.consistency_threshold = consistency_threshold

    def verify(
        self,
        face_image: bytes,
        document_image: bytes,
        frames: Sequence[bytes]
    ) -> SecureVerificationRecord:
        """
        Verify one applicant submission.

        Args:
            face_image: Encoded live face capture
            document_image: Encoded document image with the holder photo
            frames: Encoded liveness video frames

        Returns:
            SecureVerificationRecord (never raises)
        """
        live_face: Optional[FaceObservation] = None

        # Step 1: face match
        try:
            live_face = self.provider.analyze(load_image(face_image))
            document_face = self.provider.analyze(load_image(document_image))
            face_match = match_observations(live_face, document_face, self.match_threshold)
        except Exception as e:
            logger.exception("Face match step failed")
            face_match = FaceMatchResult(
                is_match=False, threshold=self.match_threshold, error=f"Face match error: {e}"
            )

        # Step 2: liveness
        frame_embeddings = []
        try:
            liveness, signals = self.liveness_service.evaluate_with_signals(frames)
            frame_embeddings = [s.embedding for s in signals if s.face_detected]
        except Exception as e:
            logger.exception("Liveness step failed")
            liveness = LivenessCheckData(
                overall_result=False,
                frame_count=len(frames),
                error=f"Liveness error: {e}",
                message="Liveness check could not be completed",
            )

        # Step 3: face consistency (match capture vs liveness frames)
        try:
            face_consistency = check_face_consistency(
                live_face.embedding if live_face is not None else None,
                frame_embeddings,
                self.consistency_threshold,
            )
        except Exception as e:
            logger.exception("Face consistency step failed")
            face_consistency = FaceConsistencyResult(
                is_consistent=False,
                error=f"Face consistency error: {e}",
                message="Face consistency check could not be completed",
            )

        record = combine(face_match, liveness, face_consistency, self.match_threshold)
        logger.info(
            f"Secure verification: match={face_match.is_match}, liveness={liveness.overall_result}, "
            f"consistent={face_consistency.is_consistent}, overall={record.overall_result}"
        )
        return record
