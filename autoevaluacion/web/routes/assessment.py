"""
Server-side assessment flow.

One ``AssessmentFlow`` per active assessment lives in ``app.state.flows``;
every route answers with the flow's snapshot so the client can render the
current chapter, progress and gating without recomputing anything.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from autoevaluacion.application.flow import AssessmentFlow
from autoevaluacion.application.history import SessionStore
from autoevaluacion.infrastructure.backend import BackendClient
from autoevaluacion.infrastructure.config import Settings
from autoevaluacion.infrastructure.exceptions import ValidationError
from autoevaluacion.infrastructure.logging import get_logger
from autoevaluacion.infrastructure.storage import KeyValueStore
from autoevaluacion.web.dependencies import (
    get_app_settings,
    get_backend_client,
    get_flow,
    get_flows,
    get_session_store,
    get_store,
)
from autoevaluacion.web.schemas import (
    FlowSnapshot,
    ResponseSelection,
    SegmentSelection,
    StartRequest,
)

router = APIRouter(prefix="/api/evaluacion")
logger = get_logger(__name__)


def snapshot_of(flow: AssessmentFlow) -> FlowSnapshot:
    return FlowSnapshot.model_validate(flow.snapshot())


@router.post("/iniciar", response_model=FlowSnapshot)
async def start_assessment(
    payload: StartRequest,
    settings: Settings = Depends(get_app_settings),
    store: KeyValueStore = Depends(get_store),
    session: SessionStore = Depends(get_session_store),
    client: BackendClient = Depends(get_backend_client),
    flows: dict[int, AssessmentFlow] = Depends(get_flows),
) -> FlowSnapshot:
    business_id = payload.id_bodega or session.business_id
    if business_id is None:
        raise ValidationError("id_bodega", "no hay una bodega asociada a la sesión")

    flow = AssessmentFlow(client, store, business_id, scoring=settings.scoring)
    await flow.start()
    if flow.assessment_id is not None:
        flows[flow.assessment_id] = flow
        logger.info(f"Flow registered for assessment {flow.assessment_id} ({flow.state.value})")
    return snapshot_of(flow)


@router.get("/{assessment_id}", response_model=FlowSnapshot)
async def get_assessment(flow: AssessmentFlow = Depends(get_flow)) -> FlowSnapshot:
    await flow.wait_for_saves()
    return snapshot_of(flow)


@router.put("/{assessment_id}/segmento", response_model=FlowSnapshot)
async def select_segment(
    payload: SegmentSelection, flow: AssessmentFlow = Depends(get_flow)
) -> FlowSnapshot:
    await flow.select_segment(payload.id_segmento)
    return snapshot_of(flow)


@router.post("/{assessment_id}/respuestas", response_model=FlowSnapshot)
async def record_response(
    payload: ResponseSelection, flow: AssessmentFlow = Depends(get_flow)
) -> FlowSnapshot:
    await flow.record_response(payload.id_indicador, payload.id_nivel_respuesta)
    # the save task belongs to this request's event loop
    await flow.wait_for_saves()
    return snapshot_of(flow)


@router.post("/{assessment_id}/siguiente", response_model=FlowSnapshot)
async def next_chapter(flow: AssessmentFlow = Depends(get_flow)) -> FlowSnapshot:
    flow.next_chapter()
    return snapshot_of(flow)


@router.post("/{assessment_id}/anterior", response_model=FlowSnapshot)
async def previous_chapter(flow: AssessmentFlow = Depends(get_flow)) -> FlowSnapshot:
    flow.previous_chapter()
    return snapshot_of(flow)


@router.post("/{assessment_id}/capitulo/{index}", response_model=FlowSnapshot)
async def go_to_chapter(index: int, flow: AssessmentFlow = Depends(get_flow)) -> FlowSnapshot:
    try:
        flow.go_to_chapter(index)
    except IndexError as e:
        raise ValidationError("index", str(e), index) from e
    return snapshot_of(flow)


@router.post("/{assessment_id}/finalizar", response_model=FlowSnapshot)
async def finalize_assessment(
    assessment_id: int,
    flow: AssessmentFlow = Depends(get_flow),
    flows: dict[int, AssessmentFlow] = Depends(get_flows),
) -> FlowSnapshot:
    await flow.wait_for_saves()
    await flow.finalize()
    flows.pop(assessment_id, None)
    return snapshot_of(flow)


@router.post("/{assessment_id}/cancelar", response_model=FlowSnapshot)
async def cancel_assessment(
    assessment_id: int,
    flow: AssessmentFlow = Depends(get_flow),
    flows: dict[int, AssessmentFlow] = Depends(get_flows),
) -> FlowSnapshot:
    await flow.cancel_pending()
    flows.pop(assessment_id, None)
    if flow.assessment_id is not None:
        flows[flow.assessment_id] = flow
    return snapshot_of(flow)


@router.post("/{assessment_id}/reintentar", response_model=FlowSnapshot)
async def retry_assessment(flow: AssessmentFlow = Depends(get_flow)) -> FlowSnapshot:
    await flow.retry()
    return snapshot_of(flow)
