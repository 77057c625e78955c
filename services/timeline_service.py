"""
Session decision timeline.

Append-only log of backend decisions per session (location check, document,
face match, liveness, consistency, completion) for audit and replay.
Lives in memory and is removed together with its session.
"""
import logging
import threading
from typing import Any, Dict, List, Optional

from models.kyc_models import TimelineDecision, SecureVerificationRecord

logger = logging.getLogger(__name__)


class TimelineService:

    def __init__(self):
        self._decisions: Dict[str, List[TimelineDecision]] = {}
        self._lock = threading.Lock()

    def record_decision(
        self,
        session_id: str,
        decision_type: str,
        result: bool,
        score: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> TimelineDecision:
        decision = TimelineDecision(
            decision_type=decision_type,
            result=result,
            score=score,
            details=details or {},
        )
        with self._lock:
            self._decisions.setdefault(session_id, []).append(decision)

        logger.debug(
            f"Decision {decision_type}={result}",
            extra={"session_id": session_id}
        )
        return decision

    def record_secure_verification(self, session_id: str, record: SecureVerificationRecord) -> None:
        """Log the three sub-decisions and the combined one."""
        self.record_decision(
            session_id, "face_match", record.face_match.is_match,
            score=record.face_match.match_score,
            details={"distance": record.face_match.distance, "error": record.face_match.error},
        )
        self.record_decision(
            session_id, "liveness_check", record.liveness.overall_result,
            score=record.liveness.confidence_score,
            details={
                "checks": {c.type.value: c.result for c in record.liveness.checks},
                "skipped": record.liveness.skipped,
                "error": record.liveness.error,
            },
        )
        self.record_decision(
            session_id, "face_consistency", record.face_consistency.is_consistent,
            score=record.face_consistency.consistency_score,
            details={"message": record.face_consistency.message},
        )
        self.record_decision(
            session_id, "secure_verification", record.overall_result,
            details={"message": record.message},
        )

    def get_timeline(self, session_id: str) -> List[TimelineDecision]:
        with self._lock:
            return [d.model_copy(deep=True) for d in self._decisions.get(session_id, [])]

    def delete_timeline(self, session_id: str) -> None:
        with self._lock:
            self._decisions.pop(session_id, None)
