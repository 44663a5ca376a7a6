from __future__ import annotations

from fastapi import Depends, Request

from autoevaluacion.application.flow import AssessmentFlow
from autoevaluacion.application.history import LocalHistory, SessionStore
from autoevaluacion.infrastructure.backend import FORWARDED_REQUEST_HEADERS, BackendClient
from autoevaluacion.infrastructure.config import Settings, get_settings
from autoevaluacion.infrastructure.exceptions import AssessmentNotFoundError
from autoevaluacion.infrastructure.storage import KeyValueStore, build_store


def get_app_settings(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    if settings is None:
        settings = get_settings()
        request.app.state.settings = settings
    return settings


def get_store(request: Request) -> KeyValueStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        store = build_store(get_app_settings(request))
        request.app.state.store = store
    return store


def get_session_store(store: KeyValueStore = Depends(get_store)) -> SessionStore:
    return SessionStore(store)


def get_local_history(store: KeyValueStore = Depends(get_store)) -> LocalHistory:
    return LocalHistory(store)


def forwarded_headers(request: Request, session: SessionStore) -> dict[str, str]:
    """Cookie and Authorization from the caller; the stored token fills a missing bearer."""
    headers = {
        name: request.headers[name] for name in FORWARDED_REQUEST_HEADERS if name in request.headers
    }
    if "authorization" not in headers and session.token:
        headers["authorization"] = f"Bearer {session.token}"
    return headers


def get_backend_client(
    request: Request, session: SessionStore = Depends(get_session_store)
) -> BackendClient:
    base = getattr(request.app.state, "backend_client", None)
    if base is None:
        base = BackendClient(get_app_settings(request).backend)
        request.app.state.backend_client = base
    return base.with_headers(forwarded_headers(request, session))


def get_flows(request: Request) -> dict[int, AssessmentFlow]:
    flows = getattr(request.app.state, "flows", None)
    if flows is None:
        flows = {}
        request.app.state.flows = flows
    return flows


def get_flow(
    assessment_id: int,
    flows: dict[int, AssessmentFlow] = Depends(get_flows),
    client: BackendClient = Depends(get_backend_client),
) -> AssessmentFlow:
    flow = flows.get(assessment_id)
    if flow is None:
        raise AssessmentNotFoundError(assessment_id)
    # calls made for this request carry this request's credentials
    flow.backend = client
    return flow
