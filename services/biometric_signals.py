"""
Biometric Signal Extractors.

Pure functions turning landmark, embedding and pixel data into scalar
liveness signals. No I/O, no model calls, no shared state - safe to call
from any worker thread.

Landmark indices follow the 68-point (iBUG 300-W) layout:
- 0-16 jaw line (8 = chin)
- 30 nose tip
- 36-41 left eye, 42-47 right eye (corner, upper, upper, corner, lower, lower)
- 48-67 mouth
"""
from typing import Dict, NamedTuple, Sequence, Tuple

import cv2
import numpy as np

from utils.config import (
    FACE_MATCH_THRESHOLD,
    MOIRE_CORRELATION_THRESHOLD,
    MOIRE_MIN_LAG,
    MOIRE_MAX_LAG,
)

LEFT_EYE = slice(36, 42)
RIGHT_EYE = slice(42, 48)
NOSE_TIP = 30
CHIN = 8
LEFT_EYE_OUTER = 36
RIGHT_EYE_OUTER = 45

# Neutral ratio of (nose - eyes) to (chin - nose) vertical distances
PITCH_NEUTRAL_RATIO = 0.7
PITCH_SCALE_DEG = 60.0
YAW_SCALE_DEG = 90.0


class HeadPose(NamedTuple):
    yaw: float
    pitch: float


class TextureMetrics(NamedTuple):
    std_dev: float
    laplacian_variance: float
    periodicity: float
    is_periodic: bool


def eye_aspect_ratio(eye: Sequence[Sequence[float]]) -> float:
    """
    Compute the Eye Aspect Ratio (EAR) for one eye.

    EAR = (|p2 - p6| + |p3 - p5|) / (2 * |p1 - p4|)

    An open eye sits around 0.25-0.35, a closed eye at or below ~0.1.

    Args:
        eye: 6 ordered (x, y) points: corner, two upper-lid points,
            corner, two lower-lid points

    Returns:
        EAR, or 0.0 when the horizontal distance is zero
    """
    p = np.asarray(eye, dtype=np.float64)
    if p.shape != (6, 2):
        raise ValueError(f"Expected 6 eye landmarks, got shape {p.shape}")

    horizontal = np.linalg.norm(p[0] - p[3])
    if horizontal == 0:
        return 0.0

    vertical = np.linalg.norm(p[1] - p[5]) + np.linalg.norm(p[2] - p[4])
    return float(vertical / (2.0 * horizontal))


def average_eye_aspect_ratio(landmarks: np.ndarray) -> float:
    """Mean EAR of both eyes from a 68-point landmark set."""
    pts = np.asarray(landmarks, dtype=np.float64)
    return (eye_aspect_ratio(pts[LEFT_EYE]) + eye_aspect_ratio(pts[RIGHT_EYE])) / 2.0


def estimate_head_pose(landmarks: np.ndarray) -> HeadPose:
    """
    Coarse head yaw / pitch from 2-D landmarks.

    This is a geometric approximation, not a 3-D pose solve:

        yaw   = (nose.x - eye_center.x) / eye_corner_span * 90
        pitch = ((nose.y - eye_center.y) / (chin.y - nose.y) - 0.7) * 60

    Negative yaw means a left turn.

    Args:
        landmarks: (68, 2) landmark array

    Returns:
        HeadPose in degrees; a component is 0.0 when its denominator is zero
    """
    pts = np.asarray(landmarks, dtype=np.float64)
    nose = pts[NOSE_TIP]
    chin = pts[CHIN]
    eye_center = np.vstack([pts[LEFT_EYE], pts[RIGHT_EYE]]).mean(axis=0)

    span = abs(pts[RIGHT_EYE_OUTER][0] - pts[LEFT_EYE_OUTER][0])
    yaw = 0.0
    if span > 0:
        yaw = (nose[0] - eye_center[0]) / span * YAW_SCALE_DEG

    lower = chin[1] - nose[1]
    pitch = 0.0
    if lower != 0:
        pitch = ((nose[1] - eye_center[1]) / lower - PITCH_NEUTRAL_RATIO) * PITCH_SCALE_DEG

    return HeadPose(float(yaw), float(pitch))


def smile_probability(expressions: Dict[str, float]) -> float:
    """Pass-through of the provider's "happy" expression score."""
    if not expressions:
        return 0.0
    happy = float(expressions.get("happy", 0.0))
    return max(0.0, min(1.0, happy))


def face_distance(embedding1: np.ndarray, embedding2: np.ndarray) -> float:
    """
    Euclidean distance between two face embeddings.

    Raises:
        ValueError: If the embeddings have different shapes
    """
    a = np.asarray(embedding1, dtype=np.float64).ravel()
    b = np.asarray(embedding2, dtype=np.float64).ravel()
    if a.shape != b.shape:
        raise ValueError(f"Embedding size mismatch: {a.shape} vs {b.shape}")
    return float(np.linalg.norm(a - b))


def match_from_distance(
    distance: float,
    threshold: float = FACE_MATCH_THRESHOLD
) -> Tuple[bool, float]:
    """
    Turn an embedding distance into (is_match, match_score).

    match_score = max(0, 1 - distance); is_match = distance < threshold.
    """
    return bool(distance < threshold), float(max(0.0, 1.0 - distance))


# =============================================================================
# PIXEL STATISTICS
# =============================================================================

def to_greyscale(image: np.ndarray) -> np.ndarray:
    """Convert a BGR / BGRA / grey image to a float64 greyscale array."""
    if image is None or image.size == 0:
        raise ValueError("Empty image")

    if image.ndim == 2:
        grey = image
    elif image.shape[2] == 4:
        grey = cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    else:
        grey = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    return grey.astype(np.float64)


def intensity_std(grey: np.ndarray) -> float:
    """Global standard deviation of pixel intensity."""
    return float(np.std(grey))


def laplacian_variance(grey: np.ndarray) -> float:
    """
    Variance of the discrete Laplacian over interior pixels.

    Kernel: 4*center - up - down - left - right. Higher means sharper,
    more natural texture; printed or re-photographed faces score lower.
    """
    g = np.asarray(grey, dtype=np.float64)
    if g.ndim != 2 or g.shape[0] < 3 or g.shape[1] < 3:
        return 0.0

    center = g[1:-1, 1:-1]
    lap = 4.0 * center - g[:-2, 1:-1] - g[2:, 1:-1] - g[1:-1, :-2] - g[1:-1, 2:]
    return float(lap.var())


def scanline_periodicity(grey: np.ndarray) -> Tuple[float, bool]:
    """
    Moire / screen-recapture detector on the middle horizontal scanline.

    Computes the normalized autocorrelation r(k) / r(0) of the mean-removed
    row at lags 3..min(50, width // 4).

    Returns:
        (peak correlation, is_periodic) where is_periodic = peak > 0.95
    """
    g = np.asarray(grey, dtype=np.float64)
    if g.ndim == 1:
        row = g
    else:
        row = g[g.shape[0] // 2]

    max_lag = min(MOIRE_MAX_LAG, row.shape[0] // 4)
    if max_lag < MOIRE_MIN_LAG:
        return 0.0, False

    x = row - row.mean()
    energy = float(np.dot(x, x))
    if energy == 0:
        return 0.0, False

    peak = max(
        float(np.dot(x[:-lag], x[lag:])) / energy
        for lag in range(MOIRE_MIN_LAG, max_lag + 1)
    )
    return peak, bool(peak > MOIRE_CORRELATION_THRESHOLD)


def texture_metrics(image: np.ndarray) -> TextureMetrics:
    """Compute all passive anti-spoofing pixel statistics for one image."""
    grey = to_greyscale(image)
    peak, periodic = scanline_periodicity(grey)
    return TextureMetrics(
        std_dev=intensity_std(grey),
        laplacian_variance=laplacian_variance(grey),
        periodicity=peak,
        is_periodic=periodic,
    )
