"""
Liveness Check Aggregator Tests

Run with: pytest tests/test_liveness_service.py -v
"""
import threading
import time

import numpy as np
import pytest

from conftest import (
    FakeProvider,
    GENUINE_EARS,
    NO_FACE,
    FRAME_BASE,
    encode_marker,
    make_observation,
)
from models.kyc_models import LivenessCheck, LivenessCheckType
from services.liveness_service import (
    LivenessService,
    aggregate_checks,
    evaluate_blink,
    evaluate_head_turns,
    evaluate_smile,
    evaluate_texture,
    get_liveness_instructions,
)


def _check(result: bool, confidence: float = 0.5) -> LivenessCheck:
    return LivenessCheck(type=LivenessCheckType.BLINK, result=result, confidence=confidence)


class TestBlinkCheck:

    def test_blink_series_passes_with_high_confidence(self):
        check = evaluate_blink([0.30, 0.28, 0.15, 0.27, 0.29])
        assert check.result is True
        assert check.confidence >= 0.75

    def test_steady_open_eyes_fail(self):
        check = evaluate_blink([0.30, 0.29, 0.31, 0.30])
        assert check.result is False
        assert check.confidence == pytest.approx(0.02 / 0.15)

    def test_variation_alone_passes(self):
        check = evaluate_blink([0.40, 0.25])
        assert check.result is True

    def test_empty_series_fails_closed(self):
        check = evaluate_blink([])
        assert check.result is False
        assert check.confidence == 0.0


class TestHeadTurnChecks:

    def test_both_directions_detected(self):
        left, right = evaluate_head_turns([-20, -5, 10, 18, 3])
        assert left.result is True
        assert left.confidence == pytest.approx(0.667, abs=1e-3)
        assert right.result is True
        assert right.confidence == pytest.approx(0.6)

    def test_small_turns_fail_with_flat_confidence(self):
        left, right = evaluate_head_turns([-10, 0, 5, 8, 3])
        assert left.result is False
        assert right.result is False
        assert left.confidence == pytest.approx(0.3)
        assert right.confidence == pytest.approx(0.3)

    def test_confidence_is_clamped(self):
        left, _ = evaluate_head_turns([-45])
        assert left.confidence == 1.0


class TestSmileCheck:

    def test_smile_uses_peak_score(self):
        check = evaluate_smile([0.1, 0.8, 0.3])
        assert check.result is True
        assert check.confidence == pytest.approx(0.8)

    def test_no_smile_halves_confidence(self):
        check = evaluate_smile([0.2, 0.4])
        assert check.result is False
        assert check.confidence == pytest.approx(0.2)


class TestTextureCheck:

    def test_natural_texture_passes(self):
        rng = np.random.default_rng(3)
        image = rng.integers(0, 256, size=(64, 64, 3), dtype=np.uint8)
        check = evaluate_texture(image)
        assert check.result is True
        assert 0.0 < check.confidence <= 1.0

    def test_flat_image_fails(self):
        check = evaluate_texture(np.full((64, 64, 3), 120, dtype=np.uint8))
        assert check.result is False

    def test_processing_error_fails_closed(self):
        check = evaluate_texture(None)
        assert check.result is False
        assert check.confidence == 0.0
        assert "error" in check.details.lower()


class TestAggregation:

    def test_exactly_sixty_percent_passes(self):
        checks = [_check(True), _check(True), _check(True), _check(False), _check(False)]
        overall, _ = aggregate_checks(checks)
        assert overall is True

    def test_below_sixty_percent_fails(self):
        checks = [_check(True), _check(True), _check(False), _check(False), _check(False)]
        overall, _ = aggregate_checks(checks)
        assert overall is False

    def test_confidence_is_mean(self):
        _, confidence = aggregate_checks([_check(True, 1.0), _check(False, 0.0)])
        assert confidence == pytest.approx(0.5)

    def test_no_checks_fail(self):
        assert aggregate_checks([]) == (False, 0.0)


class TestLivenessService:
    """End-to-end evaluation over encoded frames."""

    def test_genuine_frames_pass(self, fake_provider, genuine_frames):
        data = LivenessService(fake_provider, max_workers=3).evaluate(genuine_frames)

        assert data.overall_result is True
        assert data.frame_count == len(GENUINE_EARS)
        assert data.frames_with_face == len(GENUINE_EARS)
        types = [c.type for c in data.checks]
        assert types == [
            LivenessCheckType.BLINK,
            LivenessCheckType.HEAD_TURN_LEFT,
            LivenessCheckType.HEAD_TURN_RIGHT,
            LivenessCheckType.SMILE,
            LivenessCheckType.PASSIVE_TEXTURE,
        ]
        # Flat test frames carry no texture
        assert data.checks[-1].result is False

    def test_no_frames_fails_closed(self, fake_provider):
        data = LivenessService(fake_provider, allow_no_frames=False).evaluate([])
        assert data.overall_result is False
        assert data.skipped is False
        assert data.confidence_score == 0.0
        assert data.error == "no frames supplied"

    def test_no_frames_skip_is_explicit(self, fake_provider):
        data = LivenessService(fake_provider, allow_no_frames=True).evaluate([])
        assert data.overall_result is True
        assert data.skipped is True
        assert data.confidence_score == 0.0
        assert "skipped" in data.message.lower()

    def test_frames_without_face_fail(self, fake_provider):
        frames = [encode_marker(NO_FACE)] * 4
        data = LivenessService(fake_provider).evaluate(frames)
        assert data.overall_result is False
        assert data.frames_with_face == 0
        assert all(not c.result for c in data.checks)

    def test_missing_face_frames_are_excluded(self):
        # Open eyes only; frames without a face must not read as a blink
        provider = FakeProvider({
            FRAME_BASE: make_observation(ear=0.30),
            FRAME_BASE + 1: make_observation(ear=0.31),
            NO_FACE: None,
        })
        frames = [encode_marker(FRAME_BASE), encode_marker(NO_FACE), encode_marker(FRAME_BASE + 1)]
        data = LivenessService(provider).evaluate(frames)

        blink = data.checks[0]
        assert blink.result is False
        assert data.frames_with_face == 2
        assert "1 of 3 frames" in blink.details

    def test_undecodable_frame_does_not_abort(self, fake_provider, genuine_frames):
        frames = genuine_frames + [b"definitely not an image"]
        data = LivenessService(fake_provider).evaluate(frames)
        assert data.frame_count == len(frames)
        assert data.frames_with_face == len(genuine_frames)
        assert data.overall_result is True

    def test_provider_error_on_frame_is_absorbed(self, fake_provider, genuine_frames):
        fake_provider.fail_on.add(FRAME_BASE + 2)
        data = LivenessService(fake_provider).evaluate(genuine_frames)
        assert data.frames_with_face == len(genuine_frames) - 1

    def test_signals_keep_frame_order(self, fake_provider, genuine_frames):
        _, signals = LivenessService(fake_provider, max_workers=4).evaluate_with_signals(genuine_frames)
        assert [s.index for s in signals] == list(range(len(genuine_frames)))
        assert [round(s.ear, 2) for s in signals] == GENUINE_EARS

    def test_frames_are_analyzed_concurrently(self, fake_provider, genuine_frames):
        latency = 0.2
        barrier = threading.Barrier(len(genuine_frames), timeout=5)

        class SlowProvider:
            def analyze(self, image):
                barrier.wait()
                time.sleep(latency)
                return fake_provider.analyze(image)

        service = LivenessService(SlowProvider(), max_workers=len(genuine_frames))
        started = time.perf_counter()
        data = service.evaluate(genuine_frames)
        elapsed = time.perf_counter() - started

        assert data.frames_with_face == len(genuine_frames)
        assert elapsed < len(genuine_frames) * latency


class TestInstructions:

    def test_one_instruction_per_check(self):
        types = {i["check_type"] for i in get_liveness_instructions()}
        assert types == {t.value for t in LivenessCheckType}
