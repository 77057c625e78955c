"""
Face Match, Face Consistency and Secure Verification Tests

Run with: pytest tests/test_secure_verification.py -v
"""
import numpy as np
import pytest

from conftest import (
    DOCUMENT_FACE,
    DOCUMENT_OTHER_PERSON,
    LIVE_FACE,
    NO_FACE,
    encode_marker,
    make_embedding,
    make_observation,
)
from models.kyc_models import FaceConsistencyResult, FaceMatchResult, LivenessCheckData
from services.face_recognition import (
    _representative_indices,
    check_face_consistency,
    compare_embeddings,
    match_faces,
    match_observations,
)
from services.liveness_service import LivenessService
from services.secure_verification import SecureVerificationService, combine


class TestFaceMatch:

    def test_same_embedding_matches(self):
        result = compare_embeddings(make_embedding(0), make_embedding(0), threshold=0.45)
        assert result.is_match is True
        assert result.match_score == 1.0
        assert result.confidence == result.match_score

    def test_different_people_do_not_match(self):
        result = compare_embeddings(make_embedding(0), make_embedding(1))
        assert result.is_match is False
        assert result.distance == pytest.approx(np.sqrt(2))
        assert result.match_score == 0.0

    def test_missing_live_face_is_a_result_not_an_error(self):
        result = match_observations(None, make_observation())
        assert result.is_match is False
        assert "live capture" in result.error

    def test_missing_document_face(self):
        result = match_observations(make_observation(), None)
        assert result.is_match is False
        assert "document" in result.error

    def test_match_faces_uses_provider(self, fake_provider):
        live = np.full((32, 32, 3), LIVE_FACE, dtype=np.uint8)
        document = np.full((32, 32, 3), DOCUMENT_FACE, dtype=np.uint8)
        assert match_faces(live, document, fake_provider).is_match is True


class TestFaceConsistency:

    def test_representative_frames(self):
        assert _representative_indices(0) == []
        assert _representative_indices(1) == [0]
        assert _representative_indices(2) == [0, 1]
        assert _representative_indices(5) == [0, 2, 4]

    def test_same_person_is_consistent(self):
        frames = [make_embedding(0)] * 5
        result = check_face_consistency(make_embedding(0), frames, threshold=0.45)
        assert result.is_consistent is True
        assert result.frames_compared == 3

    def test_different_person_is_inconsistent(self):
        frames = [make_embedding(1)] * 5
        result = check_face_consistency(make_embedding(0), frames, threshold=0.45)
        assert result.is_consistent is False

    def test_frames_without_face_are_ignored(self):
        result = check_face_consistency(make_embedding(0), [None, make_embedding(0), None])
        assert result.is_consistent is True
        assert result.frames_compared == 1

    def test_no_reference_fails_closed(self):
        result = check_face_consistency(None, [make_embedding(0)])
        assert result.is_consistent is False

    def test_no_usable_frames_fails_closed(self):
        result = check_face_consistency(make_embedding(0), [None, None])
        assert result.is_consistent is False


class TestCombine:
    """Combined decision and message order."""

    def _match(self, ok):
        return FaceMatchResult(is_match=ok, match_score=1.0 if ok else 0.0, threshold=0.45)

    def _liveness(self, ok):
        return LivenessCheckData(overall_result=ok)

    def _consistency(self, ok):
        return FaceConsistencyResult(is_consistent=ok)

    def test_all_pass(self):
        record = combine(self._match(True), self._liveness(True), self._consistency(True))
        assert record.overall_result is True
        assert "passed" in record.message

    @pytest.mark.parametrize("match,live,consistent,expected", [
        (False, False, False, "does not match"),
        (True, False, False, "Liveness check failed"),
        (True, True, False, "inconsistency"),
    ])
    def test_first_failure_wins_message(self, match, live, consistent, expected):
        record = combine(self._match(match), self._liveness(live), self._consistency(consistent))
        assert record.overall_result is False
        assert expected in record.message

    def test_missing_inputs_produce_failed_record(self):
        record = combine(None, None, None)
        assert record.overall_result is False
        assert record.face_match.error
        assert record.liveness.error
        assert record.face_consistency.error


class TestSecureVerificationService:

    @pytest.fixture
    def verifier(self, fake_provider):
        return SecureVerificationService(
            fake_provider,
            liveness_service=LivenessService(fake_provider, max_workers=2, allow_no_frames=False),
        )

    def test_genuine_submission_passes(self, verifier, genuine_frames):
        record = verifier.verify(encode_marker(LIVE_FACE), encode_marker(DOCUMENT_FACE), genuine_frames)
        assert record.face_match.is_match is True
        assert record.liveness.overall_result is True
        assert record.face_consistency.is_consistent is True
        assert record.overall_result is True

    def test_document_of_other_person_fails_match(self, verifier, genuine_frames):
        record = verifier.verify(
            encode_marker(LIVE_FACE), encode_marker(DOCUMENT_OTHER_PERSON), genuine_frames
        )
        assert record.face_match.is_match is False
        assert record.overall_result is False
        assert record.message == "Face does not match document photo"

    def test_swapped_person_during_liveness_is_caught(self, verifier, other_person_frames):
        record = verifier.verify(
            encode_marker(LIVE_FACE), encode_marker(DOCUMENT_FACE), other_person_frames
        )
        assert record.face_match.is_match is True
        assert record.liveness.overall_result is True
        assert record.face_consistency.is_consistent is False
        assert record.overall_result is False

    def test_no_frames_fails(self, verifier):
        record = verifier.verify(encode_marker(LIVE_FACE), encode_marker(DOCUMENT_FACE), [])
        assert record.liveness.overall_result is False
        assert record.overall_result is False

    def test_no_face_in_capture_never_raises(self, verifier, genuine_frames):
        record = verifier.verify(encode_marker(NO_FACE), encode_marker(DOCUMENT_FACE), genuine_frames)
        assert record.overall_result is False
        assert record.face_match.error
        assert record.face_consistency.is_consistent is False

    def test_broken_image_never_raises(self, verifier, genuine_frames):
        record = verifier.verify(b"garbage", encode_marker(DOCUMENT_FACE), genuine_frames)
        assert record.overall_result is False
        assert "Face match error" in record.face_match.error

    def test_provider_failure_never_raises(self, verifier, fake_provider, genuine_frames):
        fake_provider.fail_on.add(DOCUMENT_FACE)
        record = verifier.verify(encode_marker(LIVE_FACE), encode_marker(DOCUMENT_FACE), genuine_frames)
        assert record.overall_result is False
        assert record.face_match.error
