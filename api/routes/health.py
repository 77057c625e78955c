"""Health check endpoints."""
from fastapi import APIRouter, Depends, Request

from api.dependencies import get_session_store
from models.schemas import HealthResponse
from services.session_manager import SessionStore
from utils.config import LIVENESS_ALLOW_NO_FRAMES

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request, store: SessionStore = Depends(get_session_store)):
    """
    Check if the service is healthy and the face analysis model is loaded.
    """
    provider = request.app.state.provider
    is_ready = getattr(provider, "is_ready", None)
    face_analysis_ready = bool(is_ready()) if callable(is_ready) else True

    return HealthResponse(
        status="ok",
        face_analysis_ready=face_analysis_ready,
        active_sessions=len(store.list_sessions()),
        liveness_allow_no_frames=LIVENESS_ALLOW_NO_FRAMES,
        details={"provider": type(provider).__name__},
    )
