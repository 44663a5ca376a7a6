"""
Assessment flow controller.

Drives one self-assessment from segment selection through chapter answering
to finalization. Backend calls are the only suspension points; scoring and
classification run synchronously on the in-memory state.

Response saves are fire-and-forget from the caller's point of view. Each one
carries a snapshot version and the sends run one at a time behind a lock, so
a save that is overtaken by a newer snapshot is skipped instead of landing
after it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping, Sequence
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from ..domain.levels import Tier, classify_by_segment, classify_percentage
from ..domain.models import Answer, Chapter, PendingAssessment, Segment
from ..domain.responses import ResponseMap
from ..domain.schemas import AssessmentSummary, ChapterResultPayload, ResultRecord
from ..domain.services import (
    chapter_scores,
    chapters_progress,
    is_structure_complete,
    max_score,
    percentage,
    total_score,
    unanswered_indicators,
)
from ..infrastructure.config import ScoringConfig, get_settings
from ..infrastructure.exceptions import (
    AutoevaluacionError,
    FinalizeNotAllowedError,
    IncompleteChapterError,
    InvalidResponseError,
    InvalidStateError,
    ValidationError,
    log_error_details,
)
from ..infrastructure.logging import get_logger, log_operation, set_context
from ..infrastructure.storage import ASSESSMENT_ID_KEY, LAST_RESULT_KEY, KeyValueStore
from .history import LocalHistory

logger = get_logger(__name__)

NO_ENABLED_INDICATORS = "El segmento seleccionado no tiene indicadores habilitados."


class FlowState(str, Enum):
    IDLE = "idle"
    SELECTING_SEGMENT = "selecting_segment"
    ANSWERING_CHAPTER = "answering_chapter"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    ERROR = "error"


class BackendPort(Protocol):
    async def create_or_resume(self, business_id: int) -> PendingAssessment: ...

    async def get_structure(self, assessment_id: int) -> list[Chapter]: ...

    async def get_segments(self, assessment_id: int) -> list[Segment]: ...

    async def select_segment(self, assessment_id: int, segment_id: int) -> None: ...

    async def save_responses(
        self, assessment_id: int, responses: Sequence[Mapping[str, int]]
    ) -> None: ...

    async def complete(self, assessment_id: int) -> Any: ...

    async def cancel(self, assessment_id: int) -> None: ...


def answerable_chapters(structure: Sequence[Chapter]) -> list[Chapter]:
    """Chapters with at least one enabled indicator, in backend order."""
    return [chapter for chapter in structure if chapter.has_enabled_indicators]


class AssessmentFlow:
    def __init__(
        self,
        backend: BackendPort,
        store: KeyValueStore,
        business_id: int,
        scoring: ScoringConfig | None = None,
    ):
        self.backend = backend
        self.store = store
        self.business_id = business_id
        self.scoring = scoring or get_settings().scoring
        self.history = LocalHistory(store)

        self._save_lock: asyncio.Lock | None = None
        self._lock_loop: asyncio.AbstractEventLoop | None = None
        self._save_tasks: set[asyncio.Task[None]] = set()
        self._reset()

    def _reset(self) -> None:
        self.state = FlowState.IDLE
        self.assessment_id: int | None = None
        self.fecha_inicio: str | None = None
        self.segments: list[Segment] = []
        self.segment: Segment | None = None
        self.segment_id: int | None = None
        self.chapters: list[Chapter] = []
        self.chapter_index = 0
        self.responses = ResponseMap()
        self.error: str | None = None
        self.last_save_error: str | None = None
        self.result: ResultRecord | None = None
        self._retry: Callable[[], Awaitable[FlowState]] | None = None
        self._in_flight = 0
        self._version = 0

    # ---------- Derived state ----------

    @property
    def current_chapter(self) -> Chapter | None:
        if self.state != FlowState.ANSWERING_CHAPTER or not self.chapters:
            return None
        return self.chapters[self.chapter_index]

    @property
    def is_last_chapter(self) -> bool:
        return bool(self.chapters) and self.chapter_index == len(self.chapters) - 1

    @property
    def is_saving(self) -> bool:
        return self._in_flight > 0

    @property
    def is_complete(self) -> bool:
        return is_structure_complete(self.responses.points(), self.chapters)

    @property
    def can_finalize(self) -> bool:
        return (
            self.state == FlowState.ANSWERING_CHAPTER
            and self.is_last_chapter
            and self.is_complete
            and not self.is_saving
        )

    def tier_for(self, score: int, pct: int) -> Tier:
        if self.segment is not None:
            return classify_by_segment(score, self.segment.nombre)
        return classify_percentage(
            pct, high=self.scoring.high_threshold, medium=self.scoring.medium_threshold
        )

    # ---------- Loading ----------

    def _fail(
        self, error: AutoevaluacionError, retry: Callable[[], Awaitable[FlowState]]
    ) -> FlowState:
        logger.error(
            "Assessment load failed",
            extra=log_error_details(error, {"state": self.state.value}),
        )
        self.state = FlowState.ERROR
        self.error = error.user_message
        self._retry = retry
        return self.state

    @log_operation("start_assessment")
    async def start(self) -> FlowState:
        """Create a new assessment or resume the pending one for this business."""
        await self.wait_for_saves()
        self._reset()
        try:
            pending = await self.backend.create_or_resume(self.business_id)
        except AutoevaluacionError as e:
            return self._fail(e, self.start)

        self.assessment_id = pending.id_autoevaluacion
        self.fecha_inicio = pending.fecha_inicio or datetime.now().isoformat(timespec="seconds")
        self.store.save(ASSESSMENT_ID_KEY, self.assessment_id)
        set_context(assessment_id=self.assessment_id, business_id=self.business_id)

        if pending.created or pending.id_segmento is None:
            logger.info(f"Assessment {self.assessment_id} needs a segment")
            return await self._load_segments()
        return await self._resume(pending)

    async def _load_segments(self) -> FlowState:
        try:
            self.segments = await self.backend.get_segments(self.assessment_id)
        except AutoevaluacionError as e:
            return self._fail(e, self._load_segments)
        self.error = None
        self.state = FlowState.SELECTING_SEGMENT
        return self.state

    async def _resume(self, pending: PendingAssessment) -> FlowState:
        try:
            self.segments = await self.backend.get_segments(self.assessment_id)
            structure = await self.backend.get_structure(self.assessment_id)
        except AutoevaluacionError as e:
            return self._fail(e, lambda: self._resume(pending))

        self._use_segment(pending.id_segmento)
        self.responses = ResponseMap.from_level_pairs(pending.respuestas, structure, logger)
        self.chapters = answerable_chapters(structure)
        self._drop_disabled_responses()
        if not self.chapters:
            self.state = FlowState.ERROR
            self.error = NO_ENABLED_INDICATORS
            self._retry = lambda: self._resume(pending)
            return self.state

        points = self.responses.points()
        self.chapter_index = next(
            (i for i, ch in enumerate(self.chapters) if unanswered_indicators(points, ch)),
            len(self.chapters) - 1,
        )
        logger.info(
            f"Resumed assessment {self.assessment_id} with {len(self.responses)} responses "
            f"at chapter {self.chapter_index + 1}/{len(self.chapters)}"
        )
        self.error = None
        self.state = FlowState.ANSWERING_CHAPTER
        return self.state

    def _drop_disabled_responses(self) -> None:
        enabled = {ind.id_indicador for ch in self.chapters for ind in ch.enabled_indicators}
        dropped = self.responses.retain(enabled)
        if dropped:
            logger.info(f"Dropped responses to indicators not enabled for this segment: {dropped}")

    def _use_segment(self, segment_id: int | None) -> None:
        self.segment_id = segment_id
        self.segment = next((s for s in self.segments if s.id_segmento == segment_id), None)

    @log_operation("select_segment")
    async def select_segment(self, segment_id: int) -> FlowState:
        """Choose (or change) the segment and load the structure it enables."""
        if self.state not in (FlowState.SELECTING_SEGMENT, FlowState.ANSWERING_CHAPTER):
            raise InvalidStateError("select a segment", self.state.value)
        if self.segments and not any(s.id_segmento == segment_id for s in self.segments):
            raise ValidationError("id_segmento", "segmento desconocido", segment_id)

        try:
            await self.backend.select_segment(self.assessment_id, segment_id)
            structure = await self.backend.get_structure(self.assessment_id)
        except AutoevaluacionError as e:
            return self._fail(e, lambda: self._retry_segment(segment_id))

        self._use_segment(segment_id)
        self.chapters = answerable_chapters(structure)
        self._drop_disabled_responses()

        if not self.chapters:
            self.state = FlowState.ERROR
            self.error = NO_ENABLED_INDICATORS
            self._retry = self._load_segments
            return self.state

        self.chapter_index = 0
        self.error = None
        self.state = FlowState.ANSWERING_CHAPTER
        return self.state

    async def _retry_segment(self, segment_id: int) -> FlowState:
        self.state = FlowState.SELECTING_SEGMENT
        return await self.select_segment(segment_id)

    async def retry(self) -> FlowState:
        """Re-run the load that put the flow into the error state."""
        if self.state != FlowState.ERROR or self._retry is None:
            raise InvalidStateError("retry", self.state.value)
        retry, self._retry = self._retry, None
        return await retry()

    # ---------- Answering ----------

    def _locate(self, indicator_id: int) -> tuple[Chapter, Any]:
        for chapter in self.chapters:
            for ind in chapter.indicadores:
                if ind.id_indicador == indicator_id:
                    return chapter, ind
        raise InvalidResponseError(indicator_id, reason="unknown indicator")

    async def record_response(self, indicator_id: int, level_id: int) -> Answer:
        """
        Record a response and schedule a save of the full snapshot.

        Returns as soon as the local map is updated; the save runs in the
        background and ``is_saving`` stays true until it settles.
        """
        if self.state != FlowState.ANSWERING_CHAPTER:
            raise InvalidStateError("record a response", self.state.value)

        chapter, indicator = self._locate(indicator_id)
        if not indicator.habilitado:
            raise InvalidResponseError(indicator_id, level_id, reason="indicator disabled")
        level = indicator.level(level_id)
        if level is None:
            raise InvalidResponseError(indicator_id, level_id, reason="unknown level")

        answer = Answer(chapter.id_capitulo, indicator_id, level_id, level.puntos)
        self.responses.record(answer)

        self._version += 1
        self._in_flight += 1
        task = asyncio.get_running_loop().create_task(
            self._save(self.backend, self.assessment_id, self._version)
        )
        self._save_tasks.add(task)
        task.add_done_callback(self._save_tasks.discard)
        return answer

    def _lock(self) -> asyncio.Lock:
        # asyncio.run and the test client each run their own event loop
        loop = asyncio.get_running_loop()
        if self._save_lock is None or self._lock_loop is not loop:
            self._save_lock = asyncio.Lock()
            self._lock_loop = loop
        return self._save_lock

    async def _save(self, backend: BackendPort, assessment_id: int, version: int) -> None:
        # backend is bound when the save is scheduled; the flow may be handed
        # another request's client before this runs
        try:
            async with self._lock():
                if version < self._version:
                    logger.debug(f"Snapshot {version} superseded by {self._version}; not sent")
                    return
                await backend.save_responses(assessment_id, self.responses.level_pairs())
                self.last_save_error = None
        except Exception as e:
            logger.error(
                f"Saving responses (snapshot {version}) failed",
                extra=log_error_details(e, {"assessment_id": assessment_id}),
                exc_info=True,
            )
            self.last_save_error = getattr(e, "user_message", str(e))
        finally:
            self._in_flight -= 1

    async def wait_for_saves(self) -> None:
        """Block until every scheduled save has settled."""
        while self._save_tasks:
            await asyncio.gather(*list(self._save_tasks))

    def next_chapter(self) -> Chapter:
        chapter = self.current_chapter
        if chapter is None:
            raise InvalidStateError("advance", self.state.value)
        missing = unanswered_indicators(self.responses.points(), chapter)
        if missing:
            raise IncompleteChapterError(chapter.id_capitulo, missing)
        if not self.is_last_chapter:
            self.chapter_index += 1
        return self.chapters[self.chapter_index]

    def previous_chapter(self) -> Chapter:
        if self.current_chapter is None:
            raise InvalidStateError("go back", self.state.value)
        if self.chapter_index > 0:
            self.chapter_index -= 1
        return self.chapters[self.chapter_index]

    def go_to_chapter(self, index: int) -> Chapter:
        """Jump backwards freely; forward only across complete chapters."""
        if self.current_chapter is None:
            raise InvalidStateError("change chapter", self.state.value)
        if not 0 <= index < len(self.chapters):
            raise IndexError(f"Chapter index {index} out of range")
        points = self.responses.points()
        for chapter in self.chapters[self.chapter_index : index]:
            missing = unanswered_indicators(points, chapter)
            if missing:
                raise IncompleteChapterError(chapter.id_capitulo, missing)
        self.chapter_index = index
        return self.chapters[index]

    # ---------- Finishing ----------

    def build_result(self) -> ResultRecord:
        points = self.responses.points()
        obtained = total_score(points, self.chapters)
        maximum = max_score(self.chapters)
        pct = percentage(points, self.chapters)
        tier = self.tier_for(obtained, pct)
        summary = AssessmentSummary(
            id_autoevaluacion=self.assessment_id,
            fecha_inicio=self.fecha_inicio,
            fecha_fin=datetime.now().isoformat(timespec="seconds"),
            estado="completada",
            id_bodega=self.business_id,
            id_segmento=self.segment_id,
            nombre_segmento=self.segment.nombre if self.segment else None,
            puntaje_final=obtained,
            puntaje_maximo=maximum,
            porcentaje=pct,
            nivel_sostenibilidad=tier.key,
        )
        return ResultRecord(
            autoevaluacion=summary,
            capitulos=[
                ChapterResultPayload.model_validate(cr)
                for cr in chapter_scores(points, self.chapters)
            ],
        )

    @log_operation("finalize_assessment")
    async def finalize(self) -> ResultRecord:
        """
        Complete the assessment.

        The backend ``completar`` call is attempted, but the local score is
        computed and persisted whether or not it succeeds.
        """
        if self.state != FlowState.ANSWERING_CHAPTER:
            raise InvalidStateError("finalize", self.state.value)
        if not self.is_last_chapter:
            raise FinalizeNotAllowedError("not_last_chapter")
        if not self.is_complete:
            raise FinalizeNotAllowedError("incomplete")
        if self.is_saving:
            raise FinalizeNotAllowedError("saving")

        self.state = FlowState.FINALIZING
        try:
            await self.backend.complete(self.assessment_id)
        except AutoevaluacionError as e:
            logger.warning(
                f"Backend completion failed for assessment {self.assessment_id}; "
                "finishing locally",
                extra=log_error_details(e),
            )

        record = self.build_result()
        payload = record.model_dump()
        self.store.save(LAST_RESULT_KEY, payload)
        self.history.save_result(payload)
        self.store.remove(ASSESSMENT_ID_KEY)

        self.result = record
        self.state = FlowState.COMPLETED
        logger.info(
            f"Assessment {self.assessment_id} completed: "
            f"{record.autoevaluacion.puntaje_final}/{record.autoevaluacion.puntaje_maximo} "
            f"({record.autoevaluacion.porcentaje}%)"
        )
        return record

    @log_operation("cancel_pending")
    async def cancel_pending(self) -> FlowState:
        """Discard the current assessment (best effort remotely) and start a fresh one."""
        await self.wait_for_saves()
        if self.assessment_id is not None:
            try:
                await self.backend.cancel(self.assessment_id)
            except AutoevaluacionError as e:
                logger.warning(
                    f"Remote cancel failed for assessment {self.assessment_id}",
                    extra=log_error_details(e),
                )
        self.store.remove(ASSESSMENT_ID_KEY)
        return await self.start()

    # ---------- Views ----------

    def snapshot(self) -> dict[str, Any]:
        points = self.responses.points()
        progress = chapters_progress(points, self.chapters)
        obtained = total_score(points, self.chapters)
        maximum = max_score(self.chapters)
        pct = percentage(points, self.chapters)
        current = self.current_chapter
        return {
            "estado": self.state.value,
            "id_autoevaluacion": self.assessment_id,
            "id_bodega": self.business_id,
            "segmento": _segment_dict(self.segment) if self.segment else None,
            "segmentos": [_segment_dict(s) for s in self.segments],
            "capitulos": [_chapter_dict(ch, self.responses) for ch in self.chapters],
            "capitulo_actual": self.chapter_index if current is not None else None,
            "es_ultimo_capitulo": self.is_last_chapter,
            "progreso": {
                "completados": progress.completados,
                "total": progress.total,
                "porcentaje": progress.porcentaje,
            },
            "puntaje_obtenido": obtained,
            "puntaje_maximo": maximum,
            "porcentaje": pct,
            "indicadores_respondidos": sum(
                1 for ch in self.chapters for i in ch.enabled_indicators if i.id_indicador in points
            ),
            "is_saving": self.is_saving,
            "can_finalize": self.can_finalize,
            "error": self.error,
            "error_guardado": self.last_save_error,
            "resultado": self.result.model_dump() if self.result else None,
        }


def _segment_dict(segment: Segment) -> dict[str, Any]:
    return {
        "id_segmento": segment.id_segmento,
        "nombre": segment.nombre,
        "min_turistas": segment.min_turistas,
        "max_turistas": segment.max_turistas,
        "rango_turistas": segment.visitor_band(),
    }


def _chapter_dict(chapter: Chapter, responses: ResponseMap) -> dict[str, Any]:
    indicators = []
    for ind in chapter.indicadores:
        answer = responses.get(ind.id_indicador)
        indicators.append(
            {
                "id_indicador": ind.id_indicador,
                "nombre": ind.nombre,
                "descripcion": ind.descripcion,
                "habilitado": ind.habilitado,
                "niveles_respuesta": [
                    {
                        "id_nivel_respuesta": lvl.id_nivel_respuesta,
                        "nombre": lvl.nombre,
                        "descripcion": lvl.descripcion,
                        "puntos": lvl.puntos,
                    }
                    for lvl in ind.niveles_respuesta
                ],
                "id_nivel_respuesta": answer.id_nivel_respuesta if answer else None,
            }
        )
    return {
        "id_capitulo": chapter.id_capitulo,
        "nombre": chapter.nombre,
        "descripcion": chapter.descripcion,
        "indicadores": indicators,
    }
