"""
Request-scoped accessors for the per-process services.

The services are built once in the application lifespan and stored on
``app.state``; routes receive them through ``Depends``.
"""
from fastapi import Request

from services.session_manager import SessionStore
from services.workflow_config_service import WorkflowConfigStore
from services.secure_verification import SecureVerificationService
from services.timeline_service import TimelineService


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def get_workflow_store(request: Request) -> WorkflowConfigStore:
    return request.app.state.workflow_store


def get_timeline(request: Request) -> TimelineService:
    return request.app.state.timeline


def get_secure_verifier(request: Request) -> SecureVerificationService:
    return request.app.state.secure_verifier
