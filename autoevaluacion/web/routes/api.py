from __future__ import annotations

import io
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from autoevaluacion.application.history import LocalHistory, SessionStore
from autoevaluacion.application.results import load_results
from autoevaluacion.domain.levels import (
    SUSTAINABILITY_BANDS,
    Tier,
    classify_by_segment,
    classify_percentage,
    reference_table,
    segment_key_from_name,
    sustainability_band,
)
from autoevaluacion.domain.responses import ResponseMap
from autoevaluacion.domain.schemas import AssessmentSummary, ResultRecord
from autoevaluacion.domain.services import (
    chapter_scores,
    chapters_progress,
    is_structure_complete,
    max_score,
    percentage,
    total_score,
)
from autoevaluacion.infrastructure.backend import BackendClient
from autoevaluacion.infrastructure.config import ScoringConfig, Settings
from autoevaluacion.utils.charts import (
    figure_to_dict,
    make_chapter_bar_chart,
    make_chapter_dot_plot,
    make_history_trend,
)
from autoevaluacion.utils.exports import (
    PDF_MEDIA_TYPE,
    XLSX_MEDIA_TYPE,
    make_history_csv,
    make_history_pdf_bytes,
    make_history_xlsx_bytes,
    make_result_csv,
    make_result_pdf_bytes,
    make_result_xlsx_bytes,
)
from autoevaluacion.web.dependencies import (
    get_app_settings,
    get_backend_client,
    get_local_history,
    get_session_store,
)
from autoevaluacion.web.schemas import (
    BandView,
    ChapterScore,
    ComparisonView,
    LevelsResponse,
    ProgressView,
    ResultFiguresResponse,
    ResultsResponse,
    ScoreRequest,
    ScoreResponse,
    TierView,
    UserResponse,
)

router = APIRouter(prefix="/api")
logger = logging.getLogger(__name__)

CSV_MEDIA_TYPE = "text/csv; charset=utf-8"
HISTORY_FILENAME = "historial_autoevaluaciones"


def tier_view(tier: Tier) -> TierView:
    info = tier.info
    return TierView(clave=tier.key, nombre=info.nombre, color=info.color, descripcion=info.descripcion)


def summary_tier(summary: AssessmentSummary, scoring: ScoringConfig) -> Tier | None:
    """Stored tier when present, else classified from score/segment or percentage."""
    if summary.nivel_sostenibilidad:
        try:
            return Tier[summary.nivel_sostenibilidad.upper()]
        except KeyError:
            logger.warning(f"Unknown stored tier {summary.nivel_sostenibilidad!r}; reclassifying")
    if summary.puntaje_final is not None and summary.nombre_segmento:
        return classify_by_segment(summary.puntaje_final, summary.nombre_segmento)
    if summary.porcentaje is not None:
        return classify_percentage(
            summary.porcentaje, high=scoring.high_threshold, medium=scoring.medium_threshold
        )
    return None


def download(content: bytes, filename: str, media_type: str) -> StreamingResponse:
    stream = io.BytesIO(content)
    stream.seek(0)
    headers = {"Content-Disposition": f"attachment; filename={filename}"}
    return StreamingResponse(stream, media_type=media_type, headers=headers)


async def find_result(
    assessment_id: int, history: LocalHistory, client: BackendClient
) -> ResultRecord:
    for record in history.all():
        if record.autoevaluacion.id_autoevaluacion == assessment_id:
            return record
    return await client.get_results(assessment_id)


@router.get("/health")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


# ---------- Levels and scoring ----------


@router.get("/niveles", response_model=LevelsResponse)
def get_levels(
    segmento: Optional[str] = Query(default=None),
    puntaje: Optional[int] = Query(default=None, ge=0),
) -> LevelsResponse:
    key = segment_key_from_name(segmento) if segmento else None
    tier = None
    if segmento and puntaje is not None:
        tier = tier_view(classify_by_segment(puntaje, segmento))
    return LevelsResponse(
        segmento=key,
        puntaje=puntaje,
        nivel=tier,
        rangos=reference_table(key, puntaje),
        bandas=[BandView.model_validate(b) for b in SUSTAINABILITY_BANDS],
    )


@router.post("/puntajes", response_model=ScoreResponse)
def score_responses(
    payload: ScoreRequest, settings: Settings = Depends(get_app_settings)
) -> ScoreResponse:
    """Score a structure and a response set without any assessment state."""
    structure = [chapter.to_domain() for chapter in payload.capitulos]
    pairs = [(p.id_indicador, p.id_nivel_respuesta) for p in payload.respuestas]
    points = ResponseMap.from_level_pairs(pairs, structure, logger).points()

    obtained = total_score(points, structure)
    pct = percentage(points, structure)
    if payload.segmento:
        tier = classify_by_segment(obtained, payload.segmento)
    else:
        tier = classify_percentage(
            pct,
            high=settings.scoring.high_threshold,
            medium=settings.scoring.medium_threshold,
        )
    progress = chapters_progress(points, structure)
    return ScoreResponse(
        puntaje_obtenido=obtained,
        puntaje_maximo=max_score(structure),
        porcentaje=pct,
        completo=is_structure_complete(points, structure),
        nivel=tier_view(tier),
        banda=BandView.model_validate(sustainability_band(pct)),
        progreso=ProgressView(
            completados=progress.completados, total=progress.total, porcentaje=progress.porcentaje
        ),
        capitulos=[ChapterScore.model_validate(c) for c in chapter_scores(points, structure)],
    )


# ---------- User ----------


@router.get("/usuario", response_model=UserResponse)
def get_user(session: SessionStore = Depends(get_session_store)) -> UserResponse:
    user = session.user
    return UserResponse(usuario=user, autenticado=user is not None, id_bodega=session.business_id)


@router.post("/logout", response_model=UserResponse)
def logout(session: SessionStore = Depends(get_session_store)) -> UserResponse:
    session.logout()
    return UserResponse(usuario=None, autenticado=False)


# ---------- Results ----------


@router.get("/resultados/ultimo", response_model=ResultsResponse)
async def get_latest_results(
    settings: Settings = Depends(get_app_settings),
    history: LocalHistory = Depends(get_local_history),
    session: SessionStore = Depends(get_session_store),
    client: BackendClient = Depends(get_backend_client),
) -> ResultsResponse:
    overview = await load_results(history, client, session.business_id)
    tier = None
    if overview.ultimo is not None:
        tier = summary_tier(overview.ultimo.autoevaluacion, settings.scoring)
    return ResultsResponse(
        ultimo=overview.ultimo,
        historial=overview.historial,
        comparacion=(
            ComparisonView.model_validate(overview.comparacion) if overview.comparacion else None
        ),
        fuente=overview.fuente,
        nivel=tier_view(tier) if tier is not None else None,
    )


@router.get("/resultados/historial", response_model=list[AssessmentSummary])
async def get_history(
    history: LocalHistory = Depends(get_local_history),
    session: SessionStore = Depends(get_session_store),
    client: BackendClient = Depends(get_backend_client),
) -> list[AssessmentSummary]:
    overview = await load_results(history, client, session.business_id)
    return overview.historial


@router.get("/resultados/figuras", response_model=ResultFiguresResponse)
async def get_result_figures(
    history: LocalHistory = Depends(get_local_history),
    session: SessionStore = Depends(get_session_store),
    client: BackendClient = Depends(get_backend_client),
) -> ResultFiguresResponse:
    overview = await load_results(history, client, session.business_id)
    response = ResultFiguresResponse()
    if overview.ultimo is not None and overview.ultimo.capitulos:
        chapters = overview.ultimo.capitulos
        response.capitulos_barras = figure_to_dict(make_chapter_bar_chart(chapters))
        response.capitulos_puntos = figure_to_dict(make_chapter_dot_plot(chapters))
    if overview.historial:
        response.tendencia = figure_to_dict(make_history_trend(overview.historial))
    return response


@router.get("/resultados/historial/exportar/csv")
async def export_history_csv(
    history: LocalHistory = Depends(get_local_history),
    session: SessionStore = Depends(get_session_store),
    client: BackendClient = Depends(get_backend_client),
) -> StreamingResponse:
    overview = await load_results(history, client, session.business_id)
    content = make_history_csv(overview.historial).encode("utf-8")
    return download(content, f"{HISTORY_FILENAME}.csv", CSV_MEDIA_TYPE)


@router.get("/resultados/historial/exportar/xlsx")
async def export_history_xlsx(
    history: LocalHistory = Depends(get_local_history),
    session: SessionStore = Depends(get_session_store),
    client: BackendClient = Depends(get_backend_client),
) -> StreamingResponse:
    overview = await load_results(history, client, session.business_id)
    content = make_history_xlsx_bytes(overview.historial)
    return download(content, f"{HISTORY_FILENAME}.xlsx", XLSX_MEDIA_TYPE)


@router.get("/resultados/historial/exportar/pdf")
async def export_history_pdf(
    history: LocalHistory = Depends(get_local_history),
    session: SessionStore = Depends(get_session_store),
    client: BackendClient = Depends(get_backend_client),
) -> StreamingResponse:
    overview = await load_results(history, client, session.business_id)
    content = make_history_pdf_bytes(overview.historial)
    return download(content, f"{HISTORY_FILENAME}.pdf", PDF_MEDIA_TYPE)


@router.get("/resultados/{assessment_id}/exportar/csv")
async def export_result_csv(
    assessment_id: int,
    history: LocalHistory = Depends(get_local_history),
    client: BackendClient = Depends(get_backend_client),
) -> StreamingResponse:
    result = await find_result(assessment_id, history, client)
    content = make_result_csv(result).encode("utf-8")
    return download(content, f"autoevaluacion_{assessment_id}.csv", CSV_MEDIA_TYPE)


@router.get("/resultados/{assessment_id}/exportar/xlsx")
async def export_result_xlsx(
    assessment_id: int,
    history: LocalHistory = Depends(get_local_history),
    client: BackendClient = Depends(get_backend_client),
) -> StreamingResponse:
    result = await find_result(assessment_id, history, client)
    content = make_result_xlsx_bytes(result)
    return download(content, f"autoevaluacion_{assessment_id}.xlsx", XLSX_MEDIA_TYPE)


@router.get("/resultados/{assessment_id}/exportar/pdf")
async def export_result_pdf(
    assessment_id: int,
    history: LocalHistory = Depends(get_local_history),
    client: BackendClient = Depends(get_backend_client),
) -> StreamingResponse:
    result = await find_result(assessment_id, history, client)
    content = make_result_pdf_bytes(result)
    return download(content, f"autoevaluacion_{assessment_id}.pdf", PDF_MEDIA_TYPE)
