"""
KYC Session State Machine.

Owns the in-memory session table and drives every session through

    initiated -> consent_given -> location_captured -> document_uploaded
    -> document_verified -> secure_verification_pending | secure_verified
    -> questionnaire_pending | questionnaire_completed -> completed | failed

with a time-driven ``expired`` applied by the expiry sweep.

Each stage submission writes the stage payload, recomputes that stage's
verified flag and moves the status pointer forward. A resubmission
overwrites only its own stage. Completion is re-evaluated from current
stage data on every call.

Concurrency: each session carries its own ``threading.RLock``. Calls for the
same session are serialized; calls for different sessions never share a
lock beyond the short table lookup.

Usage
-----
    store = SessionStore()
    store.start()                       # background expiry sweep
    session = store.create_session("user-1")
    store.update_consent(session.session_id, ConsentData(...))
    result = store.complete_session(session.session_id)
    store.stop()
"""
import logging
import shutil
import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

from models.kyc_models import (
    CompletionResult,
    ConsentData,
    DocumentData,
    KYCSession,
    KYCStatus,
    LocationData,
    LocationVerificationResult,
    QuestionnaireData,
    SecureVerificationRecord,
    STATUS_RANK,
    TERMINAL_STATUSES,
    WorkflowConfiguration,
    WorkflowSteps,
    utc_now,
)
from services.timeline_service import TimelineService
from utils.config import (
    DEFAULT_WORKFLOW_STEPS,
    RECORDINGS_DIR,
    REPORTS_DIR,
    SESSION_EXPIRY_MS,
    SESSION_SWEEP_INTERVAL_MS,
    UPLOADS_DIR,
    VIDEOS_DIR,
)
from utils.exceptions import ResourceNotFoundError, ValidationError

logger = logging.getLogger(__name__)


def _epoch_ms() -> float:
    return time.time() * 1000


def _validate_document_id(document_id: str) -> None:
    if not document_id or document_id in (".", "..") or "/" in document_id or "\\" in document_id:
        raise ValidationError("Invalid document id", field="document_id")


def _is_document_upload(name: str, document_id: str) -> bool:
    """Uploads belong to a document when named after it exactly or as ``{id}-<suffix>``."""
    return (
        name == document_id
        or name.split(".", 1)[0] == document_id
        or name.startswith(f"{document_id}-")
    )


# Statuses a stage submission may land on; a session sitting on any of these
# may resubmit that stage even if it moves the pointer "sideways".
CONSENT_STATUSES = {KYCStatus.CONSENT_GIVEN}
LOCATION_STATUSES = {KYCStatus.LOCATION_CAPTURED}
DOCUMENT_STATUSES = {KYCStatus.DOCUMENT_UPLOADED, KYCStatus.DOCUMENT_VERIFIED}
SECURE_STATUSES = {KYCStatus.SECURE_VERIFICATION_PENDING, KYCStatus.SECURE_VERIFIED}
QUESTIONNAIRE_STATUSES = {KYCStatus.QUESTIONNAIRE_PENDING, KYCStatus.QUESTIONNAIRE_COMPLETED}


@dataclass
class _SessionEntry:
    session: KYCSession
    created_ms: float
    lock: threading.RLock = field(default_factory=threading.RLock)


def advance_status(current: KYCStatus, target: KYCStatus, stage_statuses: Set[KYCStatus]) -> KYCStatus:
    """
    Resolve the status after a stage submission.

    The pointer moves to ``target`` when it is not behind ``current`` or when
    ``current`` belongs to the same stage. Terminal sessions keep their
    status until the next completion evaluation.
    """
    if current in TERMINAL_STATUSES:
        return current
    if STATUS_RANK[target] >= STATUS_RANK[current] or current in stage_statuses:
        return target
    return current


class SessionStore:
    """
    In-memory session table with a periodic expiry sweep.

    Args:
        expiry_ms: Session lifetime measured from creation
        sweep_interval_ms: Period of the background sweep
        clock: Returns the current time in epoch milliseconds
        timeline: Decision timeline the store reports to
        recordings_dir, videos_dir, uploads_dir, reports_dir: Artifact
            locations cleaned up when a session is removed
    """

    def __init__(
        self,
        expiry_ms: int = SESSION_EXPIRY_MS,
        sweep_interval_ms: int = SESSION_SWEEP_INTERVAL_MS,
        clock: Callable[[], float] = _epoch_ms,
        timeline: Optional[TimelineService] = None,
        recordings_dir: Path = RECORDINGS_DIR,
        videos_dir: Path = VIDEOS_DIR,
        uploads_dir: Path = UPLOADS_DIR,
        reports_dir: Path = REPORTS_DIR,
    ):
        self.expiry_ms = expiry_ms
        self.sweep_interval_ms = sweep_interval_ms
        self.clock = clock
        self.timeline = timeline or TimelineService()
        self.recordings_dir = Path(recordings_dir)
        self.videos_dir = Path(videos_dir)
        self.uploads_dir = Path(uploads_dir)
        self.reports_dir = Path(reports_dir)

        self._sessions: Dict[str, _SessionEntry] = {}
        self._table_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        """Start the background expiry sweep."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop_event.clear()
        self._sweeper = threading.Thread(target=self._sweep_loop, name="session-sweeper", daemon=True)
        self._sweeper.start()
        logger.info(
            f"Session sweep started (expiry={self.expiry_ms}ms, interval={self.sweep_interval_ms}ms)"
        )

    def stop(self) -> None:
        self._stop_event.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5)
            self._sweeper = None
        logger.info("Session sweep stopped")

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(self.sweep_interval_ms / 1000):
            try:
                self.cleanup_expired_sessions()
            except Exception:
                logger.exception("Session sweep failed")

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------
    def _is_expired(self, entry: _SessionEntry, now: float) -> bool:
        return now - entry.created_ms > self.expiry_ms

    def _entry(self, session_id: str) -> _SessionEntry:
        with self._table_lock:
            entry = self._sessions.get(session_id)
        if entry is None or self._is_expired(entry, self.clock()):
            raise ResourceNotFoundError("Session", session_id)
        return entry

    def create_session(
        self,
        user_id: str,
        email: Optional[str] = None,
        mobile_number: Optional[str] = None,
        workflow_config: Optional[WorkflowConfiguration] = None,
    ) -> KYCSession:
        """
        Start a new session.

        The workflow steps are snapshotted here; later admin edits to the
        configuration do not reach this session.
        """
        if workflow_config is not None:
            steps = workflow_config.steps.model_copy(deep=True)
            config_id = workflow_config.config_id
        else:
            steps = WorkflowSteps(**DEFAULT_WORKFLOW_STEPS)
            config_id = None

        session = KYCSession(
            session_id=str(uuid.uuid4()),
            user_id=user_id,
            email=email,
            mobile_number=mobile_number,
            workflow_config_id=config_id,
            workflow_steps=steps,
        )
        with self._table_lock:
            self._sessions[session.session_id] = _SessionEntry(session=session, created_ms=self.clock())

        logger.info(
            f"Session created for user {user_id} (workflow={config_id or 'default'})",
            extra={"session_id": session.session_id}
        )
        return session.model_copy(deep=True)

    def get_session(self, session_id: str) -> KYCSession:
        entry = self._entry(session_id)
        with entry.lock:
            return entry.session.model_copy(deep=True)

    def list_sessions(self, user_id: Optional[str] = None) -> List[KYCSession]:
        now = self.clock()
        with self._table_lock:
            entries = list(self._sessions.values())

        sessions = []
        for entry in entries:
            if self._is_expired(entry, now):
                continue
            with entry.lock:
                if user_id is None or entry.session.user_id == user_id:
                    sessions.append(entry.session.model_copy(deep=True))
        return sessions

    def get_statistics(self) -> Dict[str, object]:
        sessions = self.list_sessions()
        by_status: Dict[str, int] = {}
        for s in sessions:
            by_status[s.status.value] = by_status.get(s.status.value, 0) + 1

        completed = by_status.get(KYCStatus.COMPLETED.value, 0)
        failed = by_status.get(KYCStatus.FAILED.value, 0)
        return {
            "total": len(sessions),
            "by_status": by_status,
            "completed": completed,
            "failed": failed,
            "in_progress": len(sessions) - completed - failed,
        }

    # ------------------------------------------------------------------
    # Stage submissions
    # ------------------------------------------------------------------
    def _touch(self, session: KYCSession, target: KYCStatus, stage_statuses: Set[KYCStatus]) -> None:
        previous = session.status
        session.status = advance_status(previous, target, stage_statuses)
        session.updated_at = utc_now()
        if session.status != previous:
            logger.info(
                f"Status {previous.value} -> {session.status.value}",
                extra={"session_id": session.session_id}
            )

    def update_consent(self, session_id: str, consent: ConsentData) -> KYCSession:
        entry = self._entry(session_id)
        with entry.lock:
            session = entry.session
            session.consent = consent.model_copy(deep=True)
            self._touch(session, KYCStatus.CONSENT_GIVEN, CONSENT_STATUSES)
            self.timeline.record_decision(
                session_id, "consent",
                consent.video_recording and consent.location_tracking and consent.document_use,
                details=consent.model_dump(mode="json", exclude={"timestamp"}),
            )
            return session.model_copy(deep=True)

    def update_location(self, session_id: str, location: LocationData) -> KYCSession:
        """Store captured location. Does not mark the location as verified."""
        entry = self._entry(session_id)
        with entry.lock:
            session = entry.session
            session.location = location.model_copy(deep=True)
            self._touch(session, KYCStatus.LOCATION_CAPTURED, LOCATION_STATUSES)
            return session.model_copy(deep=True)

    def update_location_verified(
        self,
        session_id: str,
        verified: bool,
        comparison: Optional[LocationVerificationResult] = None,
    ) -> KYCSession:
        entry = self._entry(session_id)
        with entry.lock:
            session = entry.session
            session.verification_results.location_verified = verified
            if comparison is not None:
                if session.location is None:
                    session.location = LocationData()
                session.location.comparison = comparison.model_copy(deep=True)
            session.updated_at = utc_now()

            self.timeline.record_decision(
                session_id, "location_check", verified,
                score=comparison.distance_km if comparison else None,
                details=comparison.model_dump(mode="json") if comparison else {},
            )
            logger.info(f"Location verified={verified}", extra={"session_id": session_id})
            return session.model_copy(deep=True)

    def update_document(self, session_id: str, document: DocumentData) -> KYCSession:
        _validate_document_id(document.document_id)
        entry = self._entry(session_id)
        with entry.lock:
            session = entry.session
            session.document = document.model_copy(deep=True)
            session.verification_results.document_verified = document.is_valid
            target = KYCStatus.DOCUMENT_VERIFIED if document.is_valid else KYCStatus.DOCUMENT_UPLOADED
            self._touch(session, target, DOCUMENT_STATUSES)

            self.timeline.record_decision(
                session_id, "document_check", document.is_valid,
                score=document.confidence,
                details={"document_id": document.document_id, "errors": document.validation_errors},
            )
            return session.model_copy(deep=True)

    def update_secure_verification(self, session_id: str, record: SecureVerificationRecord) -> KYCSession:
        entry = self._entry(session_id)
        with entry.lock:
            session = entry.session
            session.secure_verification = record.model_copy(deep=True)
            session.verification_results.secure_verified = record.overall_result
            target = (
                KYCStatus.SECURE_VERIFIED if record.overall_result
                else KYCStatus.SECURE_VERIFICATION_PENDING
            )
            self._touch(session, target, SECURE_STATUSES)
            self.timeline.record_secure_verification(session_id, record)
            return session.model_copy(deep=True)

    def update_questionnaire(self, session_id: str, questionnaire: QuestionnaireData) -> KYCSession:
        entry = self._entry(session_id)
        with entry.lock:
            session = entry.session
            session.questionnaire = questionnaire.model_copy(deep=True)
            session.verification_results.questionnaire_verified = questionnaire.passed
            target = (
                KYCStatus.QUESTIONNAIRE_COMPLETED if questionnaire.passed
                else KYCStatus.QUESTIONNAIRE_PENDING
            )
            self._touch(session, target, QUESTIONNAIRE_STATUSES)

            self.timeline.record_decision(
                session_id, "questionnaire", questionnaire.passed, score=questionnaire.score,
            )
            return session.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------
    def complete_session(self, session_id: str) -> CompletionResult:
        """
        Evaluate the session against its required steps.

        Always recomputed from current stage data, so repeated calls on
        unchanged data give the same score and status. ``completed_at`` is
        stamped on every call.
        """
        entry = self._entry(session_id)
        with entry.lock:
            session = entry.session
            results = session.verification_results
            required = session.workflow_steps

            checks = [
                (required.location_capture, results.location_verified),
                (required.document_ocr, results.document_verified),
                (required.secure_verification, results.secure_verified),
                (required.form, results.questionnaire_verified),
            ]
            total_checks = sum(1 for is_required, _ in checks if is_required)
            score = sum(1 for is_required, verified in checks if is_required and verified)
            all_verified = score == total_checks

            results.overall_verified = all_verified
            session.overall_score = score / total_checks if total_checks > 0 else 1.0
            session.status = KYCStatus.COMPLETED if all_verified else KYCStatus.FAILED
            session.completed_at = utc_now()
            session.updated_at = session.completed_at

            self.timeline.record_decision(
                session_id, "session_complete", all_verified,
                score=session.overall_score,
                details={"score": score, "total_checks": total_checks},
            )
            logger.info(
                f"Session {session.status.value}: {score}/{total_checks} required checks verified",
                extra={"session_id": session_id}
            )

            return CompletionResult(
                success=all_verified,
                message=(
                    "KYC verification completed successfully" if all_verified
                    else "KYC verification incomplete or failed"
                ),
                status=session.status,
                required_steps=required.model_copy(deep=True),
                verification_results=results.model_copy(deep=True),
                score=score,
                total_checks=total_checks,
                overall_score=session.overall_score,
                completed_at=session.completed_at,
            )

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------
    def delete_session(self, session_id: str) -> None:
        with self._table_lock:
            entry = self._sessions.get(session_id)
            if entry is None or self._is_expired(entry, self.clock()):
                raise ResourceNotFoundError("Session", session_id)
            del self._sessions[session_id]

        with entry.lock:
            self._cleanup_session_files(entry.session)
        self.timeline.delete_timeline(session_id)
        logger.info("Session deleted", extra={"session_id": session_id})

    def cleanup_expired_sessions(self, now: Optional[float] = None) -> int:
        """
        Remove every session older than ``expiry_ms``.

        Args:
            now: Current time in epoch milliseconds (defaults to the store clock)

        Returns:
            Number of sessions removed
        """
        now = self.clock() if now is None else now
        with self._table_lock:
            expired = [
                sid for sid, entry in self._sessions.items() if self._is_expired(entry, now)
            ]
            entries = [self._sessions.pop(sid) for sid in expired]

        for entry in entries:
            with entry.lock:
                entry.session.status = KYCStatus.EXPIRED
                self._cleanup_session_files(entry.session)
            self.timeline.delete_timeline(entry.session.session_id)
            logger.info("Session expired", extra={"session_id": entry.session.session_id})

        if entries:
            logger.info(f"Expiry sweep removed {len(entries)} session(s)")
        return len(entries)

    def _cleanup_session_files(self, session: KYCSession) -> int:
        """Remove recordings, merged video, uploaded documents and reports of a session."""
        session_id = session.session_id
        removed = 0

        recordings = self.recordings_dir / session_id
        if recordings.is_dir():
            shutil.rmtree(recordings, ignore_errors=True)
            removed += 1

        merged_video = self.videos_dir / f"{session_id}.mp4"
        candidates: List[Path] = [merged_video] if merged_video.exists() else []

        if session.document is not None and self.uploads_dir.is_dir():
            document_id = session.document.document_id
            candidates.extend(
                p for p in self.uploads_dir.iterdir()
                if p.is_file() and _is_document_upload(p.name, document_id)
            )

        if self.reports_dir.is_dir():
            candidates.extend(
                p for p in self.reports_dir.iterdir() if p.is_file() and session_id in p.name
            )

        for path in candidates:
            try:
                path.unlink()
                removed += 1
            except OSError as e:
                logger.warning(f"Failed to delete {path}: {e}", extra={"session_id": session_id})

        if removed:
            logger.info(f"Removed {removed} artifact(s)", extra={"session_id": session_id})
        return removed
