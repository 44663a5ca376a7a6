"""
Results view logic: latest completed evaluation, history and comparison.

Local history wins when it has anything; otherwise the backend history is
consulted for the business. Backend failures here only degrade the view.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Protocol

from ..domain.schemas import AssessmentSummary, ResultRecord
from ..domain.services import Comparison, compare_results
from ..infrastructure.exceptions import AutoevaluacionError, log_error_details
from ..infrastructure.logging import get_logger
from .history import LocalHistory, parse_started_at

logger = get_logger(__name__)

COMPLETED = "completada"


class ResultsBackend(Protocol):
    async def list_history(self, business_id: int) -> list[AssessmentSummary]: ...

    async def get_results(self, assessment_id: int) -> ResultRecord: ...


@dataclass
class ResultsOverview:
    ultimo: ResultRecord | None = None
    historial: list[AssessmentSummary] = field(default_factory=list)
    comparacion: Comparison | None = None
    fuente: Literal["local", "backend", "none"] = "none"


def compare_summaries(current: AssessmentSummary, previous: AssessmentSummary) -> Comparison | None:
    values = (
        current.puntaje_final,
        previous.puntaje_final,
        current.puntaje_maximo,
        previous.puntaje_maximo,
    )
    if any(v is None for v in values):
        return None
    return compare_results(*values)


def _newest_first(items: list[AssessmentSummary]) -> list[AssessmentSummary]:
    return sorted(items, key=lambda s: parse_started_at(s.fecha_inicio), reverse=True)


async def load_results(
    history: LocalHistory,
    backend: ResultsBackend | None = None,
    business_id: int | None = None,
) -> ResultsOverview:
    local = history.all()
    if local:
        comparison = None
        if len(local) > 1:
            comparison = compare_summaries(local[0].autoevaluacion, local[1].autoevaluacion)
        return ResultsOverview(
            ultimo=local[0],
            historial=[r.autoevaluacion for r in local],
            comparacion=comparison,
            fuente="local",
        )

    if backend is None or business_id is None:
        return ResultsOverview()

    try:
        summaries = _newest_first(await backend.list_history(business_id))
    except AutoevaluacionError as e:
        logger.warning("Backend history unavailable", extra=log_error_details(e))
        return ResultsOverview()

    overview = ResultsOverview(historial=summaries, fuente="backend")
    completed = [s for s in summaries if s.estado == COMPLETED]
    if not completed:
        return overview

    try:
        overview.ultimo = await backend.get_results(completed[0].id_autoevaluacion)
    except AutoevaluacionError as e:
        logger.warning(
            f"Results for assessment {completed[0].id_autoevaluacion} unavailable",
            extra=log_error_details(e),
        )
    if len(completed) > 1:
        overview.comparacion = compare_summaries(completed[0], completed[1])
    return overview
