"""
Pytest Configuration and Fixtures

Shared fixtures for the e-KYC session test suite.
Run with: pytest -v

Face analysis is replaced by ``FakeProvider``: test images are flat PNGs
whose pixel value selects a prepared ``FaceObservation`` (or no face).
"""
import pytest
import sys
from pathlib import Path
from typing import Dict, Optional

import cv2
import numpy as np

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from services.face_extractor import FaceObservation


EMBEDDING_SIZE = 128


def make_landmarks(ear: float = 0.3, yaw: float = 0.0) -> np.ndarray:
    """
    Synthetic 68-point landmarks with a given eye aspect ratio and yaw.

    Eyes are 20px wide at y=50 (left x=30..50, right x=70..90), so
    EAR = lid_offset / 10 and the eye corner span is 60px.
    """
    pts = np.zeros((68, 2), dtype=np.float64)
    h = ear * 10.0

    for start, x0 in ((36, 30.0), (42, 70.0)):
        pts[start:start + 6] = [
            (x0, 50.0),
            (x0 + 6, 50.0 - h),
            (x0 + 14, 50.0 - h),
            (x0 + 20, 50.0),
            (x0 + 14, 50.0 + h),
            (x0 + 6, 50.0 + h),
        ]

    # Eye centre x is 60; yaw = (nose.x - 60) / 60 * 90
    pts[30] = (60.0 + yaw * 60.0 / 90.0, 80.0)
    pts[8] = (60.0, 120.0)
    pts[0] = (10.0, 60.0)
    pts[16] = (110.0, 60.0)
    return pts


def make_embedding(person: int, noise: float = 0.0, seed: int = 0) -> np.ndarray:
    """Unit vector for ``person``; distinct persons are sqrt(2) apart."""
    emb = np.zeros(EMBEDDING_SIZE, dtype=np.float64)
    emb[person] = 1.0
    if noise:
        emb += np.random.default_rng(seed).normal(0, noise, EMBEDDING_SIZE)
    return emb


def make_observation(
    person: int = 0,
    ear: float = 0.3,
    yaw: float = 0.0,
    happy: float = 0.0,
) -> FaceObservation:
    return FaceObservation(
        landmarks=make_landmarks(ear=ear, yaw=yaw),
        embedding=make_embedding(person),
        expressions={"happy": happy},
    )


def encode_marker(value: int) -> bytes:
    """Flat 32x32 PNG whose pixels all equal ``value``."""
    image = np.full((32, 32, 3), value, dtype=np.uint8)
    ok, buf = cv2.imencode(".png", image)
    assert ok
    return buf.tobytes()


class FakeProvider:
    """Landmark provider returning prepared observations keyed by pixel value."""

    def __init__(self, observations: Optional[Dict[int, Optional[FaceObservation]]] = None):
        self.observations = observations or {}
        self.calls = 0
        self.fail_on = set()

    def analyze(self, image: np.ndarray) -> Optional[FaceObservation]:
        self.calls += 1
        marker = int(image[0, 0, 0])
        if marker in self.fail_on:
            raise RuntimeError(f"provider failure on marker {marker}")
        return self.observations.get(marker)

    def is_ready(self) -> bool:
        return True


# Markers used by the scenario fixtures
LIVE_FACE = 1
DOCUMENT_FACE = 2
DOCUMENT_OTHER_PERSON = 3
NO_FACE = 4
FRAME_BASE = 10
OTHER_PERSON_FRAME_BASE = 30

# A genuine capture: one blink, a left and a right turn, one smile
GENUINE_EARS = [0.30, 0.28, 0.15, 0.27, 0.29]
GENUINE_YAWS = [-20.0, -5.0, 10.0, 18.0, 3.0]
GENUINE_HAPPY = [0.1, 0.2, 0.8, 0.3, 0.2]


@pytest.fixture
def fake_provider() -> FakeProvider:
    observations = {
        LIVE_FACE: make_observation(person=0),
        DOCUMENT_FACE: make_observation(person=0),
        DOCUMENT_OTHER_PERSON: make_observation(person=1),
        NO_FACE: None,
    }
    for i, (ear, yaw, happy) in enumerate(zip(GENUINE_EARS, GENUINE_YAWS, GENUINE_HAPPY)):
        observations[FRAME_BASE + i] = make_observation(person=0, ear=ear, yaw=yaw, happy=happy)
        observations[OTHER_PERSON_FRAME_BASE + i] = make_observation(
            person=1, ear=ear, yaw=yaw, happy=happy
        )
    return FakeProvider(observations)


@pytest.fixture
def genuine_frames():
    return [encode_marker(FRAME_BASE + i) for i in range(len(GENUINE_EARS))]


@pytest.fixture
def other_person_frames():
    return [encode_marker(OTHER_PERSON_FRAME_BASE + i) for i in range(len(GENUINE_EARS))]


@pytest.fixture
def artifact_dirs(tmp_path):
    """Isolated recordings / videos / uploads / reports directories."""
    dirs = {}
    for name in ("recordings", "videos", "uploads", "reports"):
        path = tmp_path / name
        path.mkdir()
        dirs[f"{name}_dir"] = path
    return dirs


class ManualClock:
    """Epoch-millisecond clock advanced by hand."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def session_store(artifact_dirs, clock):
    from services.session_manager import SessionStore
    return SessionStore(expiry_ms=1000, clock=clock, **artifact_dirs)


@pytest.fixture
def client(fake_provider):
    """TestClient running the app lifespan with the fake face provider."""
    from fastapi.testclient import TestClient
    from main import app

    app.state.provider = fake_provider
    with TestClient(app) as test_client:
        yield test_client
