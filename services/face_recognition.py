"""
Face Recognition Service for comparing faces.

Uses provider embeddings with Euclidean distance for face matching, and the
same distance/threshold mechanism to check that the face captured for the
match step is the face seen during liveness.
"""
import logging
from typing import List, Optional, Sequence

import numpy as np

from models.kyc_models import FaceMatchResult, FaceConsistencyResult
from services.biometric_signals import face_distance, match_from_distance
from services.face_extractor import FaceObservation, LandmarkProvider
from utils.config import FACE_MATCH_THRESHOLD, FACE_CONSISTENCY_THRESHOLD

logger = logging.getLogger(__name__)


def compare_embeddings(
    embedding1: np.ndarray,
    embedding2: np.ndarray,
    threshold: float = FACE_MATCH_THRESHOLD
) -> FaceMatchResult:
    """
    Compare two face embeddings.

    Args:
        embedding1: First face embedding
        embedding2: Second face embedding
        threshold: Maximum distance still considered the same person

    Returns:
        FaceMatchResult with distance, match score (1 - distance, floored at 0)
        and confidence (equal to the match score)
    """
    distance = face_distance(embedding1, embedding2)
    is_match, score = match_from_distance(distance, threshold)
    return FaceMatchResult(
        is_match=is_match,
        match_score=score,
        confidence=score,
        distance=distance,
        threshold=threshold,
    )


def match_faces(
    face_image: np.ndarray,
    document_image: np.ndarray,
    provider: LandmarkProvider,
    threshold: float = FACE_MATCH_THRESHOLD
) -> FaceMatchResult:
    """
    Match the live face capture against the document photo.

    A missing face on either side is an expected negative outcome and is
    returned as a failed result, not raised.

    Args:
        face_image: Live face capture (BGR format)
        document_image: Document image containing the holder photo (BGR format)
        provider: Landmark / embedding provider
        threshold: Maximum embedding distance for a match

    Returns:
        FaceMatchResult
    """
    return match_observations(
        provider.analyze(face_image),
        provider.analyze(document_image),
        threshold,
    )


def match_observations(
    live_face: Optional[FaceObservation],
    document_face: Optional[FaceObservation],
    threshold: float = FACE_MATCH_THRESHOLD
) -> FaceMatchResult:
    """Match two already-analyzed faces; None means no face was detected."""
    if live_face is None:
        return FaceMatchResult(
            is_match=False, threshold=threshold, error="No face detected in live capture"
        )

    if document_face is None:
        return FaceMatchResult(
            is_match=False, threshold=threshold, error="No face detected in document image"
        )

    result = compare_embeddings(live_face.embedding, document_face.embedding, threshold)
    logger.info(f"Face match: distance={result.distance:.3f}, is_match={result.is_match}")
    return result


def _representative_indices(count: int) -> List[int]:
    """First, middle and last positions, deduplicated, in order."""
    if count <= 0:
        return []
    return sorted({0, count // 2, count - 1})


def check_face_consistency(
    reference_embedding: Optional[np.ndarray],
    frame_embeddings: Sequence[Optional[np.ndarray]],
    threshold: float = FACE_CONSISTENCY_THRESHOLD
) -> FaceConsistencyResult:
    """
    Verify that the liveness frames show the same face as the match capture.

    Compares the reference embedding with representative frames (first,
    middle, last among frames with a detected face). The mean distance must
    stay below the threshold.

    Prevents showing a photo for the match step and a live face for the
    liveness step, or vice versa.
    """
    if reference_embedding is None:
        return FaceConsistencyResult(
            is_consistent=False,
            message="No face in the match capture to compare with liveness frames",
        )

    usable = [e for e in frame_embeddings if e is not None]
    if not usable:
        return FaceConsistencyResult(
            is_consistent=False,
            message="No face detected in liveness frames",
        )

    distances = [
        face_distance(reference_embedding, usable[i])
        for i in _representative_indices(len(usable))
    ]
    mean_distance = float(np.mean(distances))
    is_consistent, score = match_from_distance(mean_distance, threshold)

    logger.info(
        f"Face consistency: mean distance={mean_distance:.3f} over {len(distances)} frames, "
        f"consistent={is_consistent}"
    )

    return FaceConsistencyResult(
        is_consistent=is_consistent,
        consistency_score=score,
        frames_compared=len(distances),
        message=(
            "Face consistency verified - same person in face capture and liveness"
            if is_consistent
            else "Face inconsistency detected - different faces in face capture vs liveness"
        ),
    )
