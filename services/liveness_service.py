"""
Liveness Check Aggregator.

Runs the biometric signal extractors across a set of video frames, applies
per-check thresholds and aggregates them into one liveness verdict.

Checks:
- Blink detection (eye aspect ratio dip or variation)
- Head turn left / right (coarse yaw estimate)
- Smile detection (provider "happy" expression score)
- Passive texture analysis (sharpness, intensity spread, moire periodicity)

Frames are analyzed concurrently; the reduction is min/max/mean over value
sets, so the order in which frames finish does not affect the result.

Security policy: every check fails closed. No frames, no detectable face or
a processing error produce a failed check, never an implicit pass.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from models.kyc_models import LivenessCheck, LivenessCheckData, LivenessCheckType
from services.biometric_signals import (
    average_eye_aspect_ratio,
    estimate_head_pose,
    smile_probability,
    texture_metrics,
)
from services.face_extractor import LandmarkProvider
from utils.config import (
    BLINK_EAR_THRESHOLD,
    BLINK_EAR_VARIATION,
    BLINK_CONFIDENCE_SCALE,
    BLINK_MIN_PASS_CONFIDENCE,
    HEAD_TURN_YAW_THRESHOLD,
    HEAD_TURN_CONFIDENCE_SCALE,
    HEAD_TURN_FAIL_CONFIDENCE,
    SMILE_THRESHOLD,
    TEXTURE_MIN_STD_DEV,
    TEXTURE_MIN_LAPLACIAN_VARIANCE,
    TEXTURE_CONFIDENCE_WEIGHTS,
    LIVENESS_PASS_RATIO,
    LIVENESS_MAX_WORKERS,
    LIVENESS_ALLOW_NO_FRAMES,
)
from utils.image_manager import load_image
from utils.logging_config import log_execution_time

logger = logging.getLogger(__name__)

NO_FACE_MESSAGE = "No face detected in any frame"


@dataclass
class FrameSignals:
    """Per-frame liveness signals. Frames without a face carry no measurements."""
    index: int
    face_detected: bool
    ear: float = 0.0
    yaw: float = 0.0
    pitch: float = 0.0
    happy: float = 0.0
    embedding: Optional[np.ndarray] = None
    error: Optional[str] = None


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return float(max(low, min(high, value)))


# =============================================================================
# PER-CHECK EVALUATION
# =============================================================================

def evaluate_blink(ears: Sequence[float]) -> LivenessCheck:
    """
    Blink check over an EAR series.

    Passes when the eye closes at least once (min EAR below threshold) or the
    EAR varies enough between frames.
    """
    if not ears:
        return LivenessCheck(
            type=LivenessCheckType.BLINK, result=False, confidence=0.0, details=NO_FACE_MESSAGE
        )

    min_ear, max_ear = min(ears), max(ears)
    variation = max_ear - min_ear
    result = min_ear < BLINK_EAR_THRESHOLD or variation > BLINK_EAR_VARIATION

    confidence = _clamp(variation / BLINK_CONFIDENCE_SCALE)
    if result:
        confidence = max(BLINK_MIN_PASS_CONFIDENCE, confidence)

    return LivenessCheck(
        type=LivenessCheckType.BLINK,
        result=result,
        confidence=confidence,
        details=f"EAR min={min_ear:.3f} max={max_ear:.3f} variation={variation:.3f}",
    )


def evaluate_head_turns(yaws: Sequence[float]) -> Tuple[LivenessCheck, LivenessCheck]:
    """
    Head turn left and right checks over a yaw series (degrees, negative = left).

    The two directions are evaluated independently.
    """
    if not yaws:
        return (
            LivenessCheck(type=LivenessCheckType.HEAD_TURN_LEFT, result=False,
                          confidence=0.0, details=NO_FACE_MESSAGE),
            LivenessCheck(type=LivenessCheckType.HEAD_TURN_RIGHT, result=False,
                          confidence=0.0, details=NO_FACE_MESSAGE),
        )

    min_yaw, max_yaw = min(yaws), max(yaws)

    left_result = min_yaw < -HEAD_TURN_YAW_THRESHOLD
    left = LivenessCheck(
        type=LivenessCheckType.HEAD_TURN_LEFT,
        result=left_result,
        confidence=_clamp(abs(min_yaw) / HEAD_TURN_CONFIDENCE_SCALE) if left_result else HEAD_TURN_FAIL_CONFIDENCE,
        details=f"min yaw={min_yaw:.1f} deg",
    )

    right_result = max_yaw > HEAD_TURN_YAW_THRESHOLD
    right = LivenessCheck(
        type=LivenessCheckType.HEAD_TURN_RIGHT,
        result=right_result,
        confidence=_clamp(abs(max_yaw) / HEAD_TURN_CONFIDENCE_SCALE) if right_result else HEAD_TURN_FAIL_CONFIDENCE,
        details=f"max yaw={max_yaw:.1f} deg",
    )
    return left, right


def evaluate_smile(happy_scores: Sequence[float]) -> LivenessCheck:
    """Smile check: the strongest "happy" score across frames must exceed 0.5."""
    if not happy_scores:
        return LivenessCheck(
            type=LivenessCheckType.SMILE, result=False, confidence=0.0, details=NO_FACE_MESSAGE
        )

    best = max(happy_scores)
    result = best > SMILE_THRESHOLD
    return LivenessCheck(
        type=LivenessCheckType.SMILE,
        result=result,
        confidence=_clamp(best if result else best / 2.0),
        details=f"max happy={best:.3f}",
    )


def evaluate_texture(image: Optional[np.ndarray]) -> LivenessCheck:
    """
    Passive anti-spoofing check on a single frame.

    Passes when intensity spread and Laplacian variance are high enough and
    no scanline periodicity (screen recapture) is found. Any processing error
    fails the check.
    """
    try:
        if image is None:
            raise ValueError("first frame could not be decoded")

        metrics = texture_metrics(image)
    except Exception as e:
        logger.warning(f"Passive texture analysis failed: {e}")
        return LivenessCheck(
            type=LivenessCheckType.PASSIVE_TEXTURE,
            result=False,
            confidence=0.0,
            details=f"Texture analysis error: {e}",
        )

    result = (
        metrics.std_dev > TEXTURE_MIN_STD_DEV
        and metrics.laplacian_variance > TEXTURE_MIN_LAPLACIAN_VARIANCE
        and not metrics.is_periodic
    )

    std_score = _clamp(metrics.std_dev / (2 * TEXTURE_MIN_STD_DEV))
    lap_score = _clamp(metrics.laplacian_variance / (2 * TEXTURE_MIN_LAPLACIAN_VARIANCE))
    periodic_score = 1.0 - _clamp(metrics.periodicity)
    confidence = (
        TEXTURE_CONFIDENCE_WEIGHTS["std_dev"] * std_score
        + TEXTURE_CONFIDENCE_WEIGHTS["laplacian"] * lap_score
        + TEXTURE_CONFIDENCE_WEIGHTS["periodicity"] * periodic_score
    )

    return LivenessCheck(
        type=LivenessCheckType.PASSIVE_TEXTURE,
        result=result,
        confidence=_clamp(confidence),
        details=(
            f"std={metrics.std_dev:.1f} laplacian_var={metrics.laplacian_variance:.1f} "
            f"periodicity={metrics.periodicity:.3f}{' (periodic)' if metrics.is_periodic else ''}"
        ),
    )


def aggregate_checks(checks: Sequence[LivenessCheck]) -> Tuple[bool, float]:
    """
    Overall verdict: at least 60% of executed checks passed (inclusive).

    Returns:
        (overall_result, mean confidence)
    """
    if not checks:
        return False, 0.0

    passed = sum(1 for c in checks if c.result)
    overall = passed / len(checks) >= LIVENESS_PASS_RATIO
    confidence = sum(c.confidence for c in checks) / len(checks)
    return bool(overall), float(confidence)


# =============================================================================
# SERVICE
# =============================================================================

class LivenessService:
    """Evaluates liveness over a list of encoded video frames."""

    def __init__(
        self,
        provider: LandmarkProvider,
        max_workers: int = LIVENESS_MAX_WORKERS,
        allow_no_frames: bool = LIVENESS_ALLOW_NO_FRAMES,
    ):
        self.provider = provider
        self.max_workers = max(1, max_workers)
        self.allow_no_frames = allow_no_frames

    def evaluate(self, frames: Sequence[bytes]) -> LivenessCheckData:
        """Run all liveness checks over the supplied frames."""
        data, _ = self.evaluate_with_signals(frames)
        return data

    @log_execution_time
    def evaluate_with_signals(
        self,
        frames: Sequence[bytes]
    ) -> Tuple[LivenessCheckData, List[FrameSignals]]:
        """
        Run all liveness checks and also return the per-frame signals.

        The signals carry frame embeddings so callers can check identity
        consistency without re-running face analysis.
        """
        if not frames:
            return self._no_frames_result(), []

        analyzed = self._analyze_frames(frames)
        signals = [s for s, _ in analyzed]
        first_image = analyzed[0][1]

        detected = [s for s in signals if s.face_detected]
        missing = len(signals) - len(detected)

        checks: List[LivenessCheck] = [evaluate_blink([s.ear for s in detected])]
        checks.extend(evaluate_head_turns([s.yaw for s in detected]))
        checks.append(evaluate_smile([s.happy for s in detected]))
        checks.append(evaluate_texture(first_image))

        if missing and detected:
            note = f"{missing} of {len(signals)} frames had no detectable face"
            for check in checks[:4]:
                check.details = f"{check.details}; {note}"

        overall, confidence = aggregate_checks(checks)
        passed = sum(1 for c in checks if c.result)

        logger.info(
            f"Liveness evaluated: {passed}/{len(checks)} checks passed, "
            f"overall={'PASS' if overall else 'FAIL'}, confidence={confidence:.2f}, "
            f"frames={len(signals)}, faces={len(detected)}"
        )

        data = LivenessCheckData(
            overall_result=overall,
            checks=checks,
            confidence_score=confidence,
            frame_count=len(signals),
            frames_with_face=len(detected),
            message=f"{passed} of {len(checks)} liveness checks passed",
        )
        return data, signals

    def _no_frames_result(self) -> LivenessCheckData:
        if self.allow_no_frames:
            logger.warning("Liveness skipped: no frames supplied and LIVENESS_ALLOW_NO_FRAMES is enabled")
            return LivenessCheckData(
                overall_result=True,
                skipped=True,
                confidence_score=0.0,
                message="Liveness skipped: no frames supplied (LIVENESS_ALLOW_NO_FRAMES)",
            )

        logger.warning("Liveness failed: no frames supplied")
        return LivenessCheckData(
            overall_result=False,
            confidence_score=0.0,
            message="No frames supplied",
            error="no frames supplied",
        )

    def _analyze_frames(
        self,
        frames: Sequence[bytes]
    ) -> List[Tuple[FrameSignals, Optional[np.ndarray]]]:
        """Decode and analyze frames concurrently, preserving frame order."""
        workers = min(self.max_workers, len(frames))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="liveness") as executor:
            return list(executor.map(self._analyze_frame, range(len(frames)), frames))

    def _analyze_frame(
        self,
        index: int,
        frame: bytes
    ) -> Tuple[FrameSignals, Optional[np.ndarray]]:
        """
        Analyze one frame. Never raises: a frame that cannot be decoded or
        analyzed is reported as a frame without a face.
        """
        try:
            image = load_image(frame)
        except Exception as e:
            logger.warning(f"Frame {index} could not be decoded: {e}")
            return FrameSignals(index=index, face_detected=False, error=str(e)), None

        try:
            observation = self.provider.analyze(image)
        except Exception as e:
            logger.warning(f"Face analysis failed on frame {index}: {e}")
            return FrameSignals(index=index, face_detected=False, error=str(e)), image

        if observation is None:
            return FrameSignals(index=index, face_detected=False), image

        pose = estimate_head_pose(observation.landmarks)
        return FrameSignals(
            index=index,
            face_detected=True,
            ear=average_eye_aspect_ratio(observation.landmarks),
            yaw=pose.yaw,
            pitch=pose.pitch,
            happy=smile_probability(observation.expressions),
            embedding=observation.embedding,
        ), image


def get_liveness_instructions() -> List[dict]:
    """User-facing prompts for each liveness check, in capture order."""
    return [
        {"check_type": LivenessCheckType.BLINK.value,
         "instruction": "Please blink your eyes naturally"},
        {"check_type": LivenessCheckType.HEAD_TURN_LEFT.value,
         "instruction": "Please turn your head slowly to the left"},
        {"check_type": LivenessCheckType.HEAD_TURN_RIGHT.value,
         "instruction": "Please turn your head slowly to the right"},
        {"check_type": LivenessCheckType.SMILE.value,
         "instruction": "Please smile"},
        {"check_type": LivenessCheckType.PASSIVE_TEXTURE.value,
         "instruction": "Please look at the camera naturally"},
    ]
