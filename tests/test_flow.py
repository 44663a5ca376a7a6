from __future__ import annotations

import asyncio

import pytest
from conftest import FakeBackend, chapter, indicator, level_id

from autoevaluacion.application.flow import NO_ENABLED_INDICATORS, AssessmentFlow, FlowState
from autoevaluacion.domain.levels import Tier
from autoevaluacion.domain.models import PendingAssessment
from autoevaluacion.domain.responses import ResponseMap
from autoevaluacion.infrastructure.exceptions import (
    FinalizeNotAllowedError,
    IncompleteChapterError,
    InvalidResponseError,
    InvalidStateError,
    ValidationError,
)
from autoevaluacion.infrastructure.storage import (
    ASSESSMENT_ID_KEY,
    HISTORY_KEY,
    LAST_RESULT_KEY,
)

BEST = 2  # position of the 10-point level built by indicator()


async def answering(flow: AssessmentFlow, segment_id: int = 1) -> AssessmentFlow:
    await flow.start()
    await flow.select_segment(segment_id)
    return flow


async def answer_all(flow: AssessmentFlow, position: int = BEST) -> None:
    """Answer every enabled indicator, moving forward chapter by chapter."""
    while True:
        for ind in flow.current_chapter.enabled_indicators:
            await flow.record_response(ind.id_indicador, level_id(ind.id_indicador, position))
        if flow.is_last_chapter:
            return
        flow.next_chapter()


def test_new_assessment_asks_for_a_segment(store, two_chapter_structure):
    backend = FakeBackend(two_chapter_structure)
    flow = AssessmentFlow(backend, store, business_id=3)

    state = asyncio.run(flow.start())

    assert state == FlowState.SELECTING_SEGMENT
    assert flow.assessment_id == 7
    assert [s.id_segmento for s in flow.segments] == [1, 4]
    assert store.load(ASSESSMENT_ID_KEY) == 7


def test_selecting_a_segment_loads_answerable_chapters(store, two_chapter_structure):
    structure = two_chapter_structure + [chapter(3, indicator(5, habilitado=False))]
    backend = FakeBackend(structure)
    flow = asyncio.run(answering(AssessmentFlow(backend, store, business_id=3), segment_id=4))

    assert flow.state == FlowState.ANSWERING_CHAPTER
    assert backend.selected == [4]
    assert [ch.id_capitulo for ch in flow.chapters] == [1, 2]
    assert flow.current_chapter.id_capitulo == 1
    assert flow.segment.nombre == "Bodega Turística"


def test_unknown_segment_is_rejected(store, two_chapter_structure):
    flow = AssessmentFlow(FakeBackend(two_chapter_structure), store, business_id=3)
    asyncio.run(flow.start())
    with pytest.raises(ValidationError):
        asyncio.run(flow.select_segment(99))


def test_responses_require_the_answering_state(store, two_chapter_structure):
    flow = AssessmentFlow(FakeBackend(two_chapter_structure), store, business_id=3)
    asyncio.run(flow.start())
    with pytest.raises(InvalidStateError):
        asyncio.run(flow.record_response(1, level_id(1, 0)))


@pytest.mark.parametrize(
    "indicator_id, level",
    [(99, 1), (4, level_id(4, 0)), (1, 12345)],
    ids=["unknown-indicator", "disabled-indicator", "unknown-level"],
)
def test_invalid_responses_are_refused(store, two_chapter_structure, indicator_id, level):
    async def scenario():
        flow = await answering(AssessmentFlow(FakeBackend(two_chapter_structure), store, 3))
        with pytest.raises(InvalidResponseError):
            await flow.record_response(indicator_id, level)
        assert len(flow.responses) == 0

    asyncio.run(scenario())


def test_next_chapter_is_gated_on_completeness(store, two_chapter_structure):
    async def scenario():
        flow = await answering(AssessmentFlow(FakeBackend(two_chapter_structure), store, 3))
        await flow.record_response(1, level_id(1, 1))
        with pytest.raises(IncompleteChapterError) as info:
            flow.next_chapter()
        assert info.value.missing == [2]

        await flow.record_response(2, level_id(2, 0))
        assert flow.next_chapter().id_capitulo == 2
        assert flow.is_last_chapter
        assert flow.previous_chapter().id_capitulo == 1
        assert flow.previous_chapter().id_capitulo == 1
        await flow.wait_for_saves()

    asyncio.run(scenario())


def test_go_to_chapter_only_jumps_over_complete_chapters(store, two_chapter_structure):
    async def scenario():
        flow = await answering(AssessmentFlow(FakeBackend(two_chapter_structure), store, 3))
        with pytest.raises(IncompleteChapterError):
            flow.go_to_chapter(1)
        await flow.record_response(1, level_id(1, 0))
        await flow.record_response(2, level_id(2, 0))
        assert flow.go_to_chapter(1).id_capitulo == 2
        assert flow.go_to_chapter(0).id_capitulo == 1
        with pytest.raises(IndexError):
            flow.go_to_chapter(5)
        await flow.wait_for_saves()

    asyncio.run(scenario())


def test_finalize_waits_for_in_flight_saves(store, two_chapter_structure):
    async def scenario():
        backend = FakeBackend(two_chapter_structure)
        flow = await answering(AssessmentFlow(backend, store, 3))
        backend.save_gate = asyncio.Event()

        await answer_all(flow)
        assert flow.is_complete
        assert flow.is_saving
        assert not flow.can_finalize
        with pytest.raises(FinalizeNotAllowedError) as info:
            await flow.finalize()
        assert info.value.reason == "saving"
        assert flow.state == FlowState.ANSWERING_CHAPTER

        backend.save_gate.set()
        await flow.wait_for_saves()
        assert not flow.is_saving
        assert flow.can_finalize
        return backend

    backend = asyncio.run(scenario())
    # superseded snapshots are never sent; the backend ends with the full state
    assert backend.saved == [
        [
            {"id_indicador": 1, "id_nivel_respuesta": level_id(1, BEST)},
            {"id_indicador": 2, "id_nivel_respuesta": level_id(2, BEST)},
            {"id_indicador": 3, "id_nivel_respuesta": level_id(3, BEST)},
        ]
    ]


def test_each_settled_response_sends_the_full_snapshot(store, two_chapter_structure):
    async def scenario():
        backend = FakeBackend(two_chapter_structure)
        flow = await answering(AssessmentFlow(backend, store, 3))
        await flow.record_response(1, level_id(1, 0))
        await flow.wait_for_saves()
        await flow.record_response(1, level_id(1, 1))
        await flow.wait_for_saves()
        await flow.record_response(2, level_id(2, 2))
        await flow.wait_for_saves()
        return backend

    backend = asyncio.run(scenario())
    assert [len(snapshot) for snapshot in backend.saved] == [1, 1, 2]
    assert backend.saved[1] == [{"id_indicador": 1, "id_nivel_respuesta": level_id(1, 1)}]


def test_queued_save_uses_the_client_it_was_scheduled_with(store, two_chapter_structure):
    first = FakeBackend(two_chapter_structure)
    second = FakeBackend(two_chapter_structure)

    async def scenario():
        flow = await answering(AssessmentFlow(first, store, 3))
        await flow.record_response(1, level_id(1, 0))
        flow.backend = second
        await flow.wait_for_saves()

    asyncio.run(scenario())
    assert first.saved == [[{"id_indicador": 1, "id_nivel_respuesta": level_id(1, 0)}]]
    assert second.saved == []


def test_finalize_gates(store, two_chapter_structure):
    async def scenario():
        flow = await answering(AssessmentFlow(FakeBackend(two_chapter_structure), store, 3))
        await flow.record_response(1, level_id(1, 0))
        await flow.record_response(2, level_id(2, 0))
        await flow.wait_for_saves()
        with pytest.raises(FinalizeNotAllowedError) as info:
            await flow.finalize()
        assert info.value.reason == "not_last_chapter"

        flow.next_chapter()
        with pytest.raises(FinalizeNotAllowedError) as info:
            await flow.finalize()
        assert info.value.reason == "incomplete"

    asyncio.run(scenario())


def test_finalize_persists_the_result(store, two_chapter_structure):
    async def scenario():
        backend = FakeBackend(two_chapter_structure)
        flow = await answering(AssessmentFlow(backend, store, 3))
        await answer_all(flow)
        await flow.wait_for_saves()
        record = await flow.finalize()
        return flow, backend, record

    flow, backend, record = asyncio.run(scenario())

    assert flow.state == FlowState.COMPLETED
    assert backend.completed == [7]
    summary = record.autoevaluacion
    assert (summary.puntaje_final, summary.puntaje_maximo, summary.porcentaje) == (30, 30, 100)
    assert summary.estado == "completada"
    assert summary.nivel_sostenibilidad == "minimo"
    assert [c.indicadores_total for c in record.capitulos] == [2, 1]

    assert store.load(LAST_RESULT_KEY)["autoevaluacion"]["id_autoevaluacion"] == 7
    assert store.load(HISTORY_KEY)[0]["autoevaluacion"]["puntaje_final"] == 30
    assert store.load(ASSESSMENT_ID_KEY) is None
    assert flow.snapshot()["resultado"]["autoevaluacion"]["porcentaje"] == 100


def test_backend_completion_failure_does_not_block_finalize(store, two_chapter_structure):
    async def scenario():
        backend = FakeBackend(two_chapter_structure)
        flow = await answering(AssessmentFlow(backend, store, 3))
        await answer_all(flow, position=0)
        await flow.wait_for_saves()
        backend.fail.add("complete")
        return flow, await flow.finalize()

    flow, record = asyncio.run(scenario())
    assert flow.state == FlowState.COMPLETED
    assert record.autoevaluacion.porcentaje == 0
    assert store.load(HISTORY_KEY)


def test_resume_enters_first_incomplete_chapter(store, two_chapter_structure):
    pending = PendingAssessment(
        id_autoevaluacion=8,
        created=False,
        id_segmento=4,
        respuestas=[(1, level_id(1, 0)), (2, level_id(2, 0)), (1, level_id(1, 2))],
    )
    backend = FakeBackend(two_chapter_structure, pending=pending)
    flow = AssessmentFlow(backend, store, business_id=3)

    assert asyncio.run(flow.start()) == FlowState.ANSWERING_CHAPTER
    assert flow.chapter_index == 1
    assert flow.responses.points() == {1: 10, 2: 0}
    assert flow.segment.id_segmento == 4
    assert backend.selected == []


def test_resume_with_everything_answered_lands_on_last_chapter(store, two_chapter_structure):
    pending = PendingAssessment(
        id_autoevaluacion=8,
        created=False,
        id_segmento=1,
        respuestas=[(1, level_id(1, 0)), (2, level_id(2, 0)), (3, level_id(3, 1))],
    )
    flow = AssessmentFlow(FakeBackend(two_chapter_structure, pending=pending), store, 3)
    asyncio.run(flow.start())
    assert flow.is_last_chapter
    assert flow.can_finalize


def test_resume_drops_answers_to_disabled_indicators(store, two_chapter_structure):
    pending = PendingAssessment(
        id_autoevaluacion=8,
        created=False,
        id_segmento=1,
        respuestas=[(1, level_id(1, 2)), (4, level_id(4, 2))],
    )
    backend = FakeBackend(two_chapter_structure, pending=pending)

    async def scenario():
        flow = AssessmentFlow(backend, store, business_id=3)
        await flow.start()
        await flow.record_response(2, level_id(2, 1))
        await flow.wait_for_saves()
        return flow

    flow = asyncio.run(scenario())
    assert 4 not in flow.responses
    assert backend.saved[-1] == [
        {"id_indicador": 1, "id_nivel_respuesta": level_id(1, 2)},
        {"id_indicador": 2, "id_nivel_respuesta": level_id(2, 1)},
    ]


def test_response_map_retain_reports_dropped_ids(two_chapter_structure):
    responses = ResponseMap.from_level_pairs(
        [(1, level_id(1, 0)), (3, level_id(3, 0)), (4, level_id(4, 0))], two_chapter_structure
    )
    assert responses.retain({1, 3}) == [4]
    assert [a.id_indicador for a in responses] == [1, 3]
    assert responses.retain({1, 3}) == []


def test_pending_without_segment_asks_for_one(store, two_chapter_structure):
    pending = PendingAssessment(id_autoevaluacion=8, created=False, id_segmento=None)
    flow = AssessmentFlow(FakeBackend(two_chapter_structure, pending=pending), store, 3)
    assert asyncio.run(flow.start()) == FlowState.SELECTING_SEGMENT


def test_structure_without_enabled_indicators_is_an_error(store):
    structure = [chapter(1, indicator(1, habilitado=False))]
    flow = AssessmentFlow(FakeBackend(structure), store, business_id=3)
    state = asyncio.run(answering(flow)).state
    assert state == FlowState.ERROR
    assert flow.error == NO_ENABLED_INDICATORS


def test_load_failure_can_be_retried(store, two_chapter_structure):
    backend = FakeBackend(two_chapter_structure)
    backend.fail.add("get_segments")
    flow = AssessmentFlow(backend, store, business_id=3)

    assert asyncio.run(flow.start()) == FlowState.ERROR
    assert flow.error == "No se pudo conectar con el servidor backend"

    backend.fail.clear()
    assert asyncio.run(flow.retry()) == FlowState.SELECTING_SEGMENT
    assert flow.error is None


def test_structure_failure_retries_the_segment_selection(store, two_chapter_structure):
    async def scenario():
        backend = FakeBackend(two_chapter_structure)
        flow = AssessmentFlow(backend, store, business_id=3)
        await flow.start()
        backend.fail.add("get_structure")
        assert await flow.select_segment(4) == FlowState.ERROR
        backend.fail.clear()
        assert await flow.retry() == FlowState.ANSWERING_CHAPTER
        return backend

    assert asyncio.run(scenario()).selected == [4, 4]


def test_retry_outside_error_state_is_refused(store, two_chapter_structure):
    flow = AssessmentFlow(FakeBackend(two_chapter_structure), store, business_id=3)
    with pytest.raises(InvalidStateError):
        asyncio.run(flow.retry())


def test_save_failure_is_recorded_and_not_retried(store, two_chapter_structure):
    async def scenario():
        backend = FakeBackend(two_chapter_structure)
        flow = await answering(AssessmentFlow(backend, store, 3))
        backend.fail.add("save_responses")
        await flow.record_response(1, level_id(1, 1))
        await flow.wait_for_saves()
        return flow, backend

    flow, backend = asyncio.run(scenario())
    assert flow.last_save_error == "No se pudo conectar con el servidor backend"
    assert flow.state == FlowState.ANSWERING_CHAPTER
    assert flow.responses.points() == {1: 5}
    assert backend.saved == []
    assert not flow.is_saving


def test_cancel_pending_starts_over(store, two_chapter_structure):
    async def scenario():
        backend = FakeBackend(two_chapter_structure)
        flow = await answering(AssessmentFlow(backend, store, 3))
        await flow.record_response(1, level_id(1, 1))
        backend.pending = PendingAssessment(id_autoevaluacion=11, created=True)
        state = await flow.cancel_pending()
        return flow, backend, state

    flow, backend, state = asyncio.run(scenario())
    assert state == FlowState.SELECTING_SEGMENT
    assert backend.cancelled == [7]
    assert flow.assessment_id == 11
    assert len(flow.responses) == 0
    assert store.load(ASSESSMENT_ID_KEY) == 11


def test_remote_cancel_failure_still_starts_over(store, two_chapter_structure):
    backend = FakeBackend(two_chapter_structure)
    backend.fail.add("cancel")
    flow = AssessmentFlow(backend, store, business_id=3)
    asyncio.run(flow.start())
    assert asyncio.run(flow.cancel_pending()) == FlowState.SELECTING_SEGMENT


def test_changing_segment_drops_responses_no_longer_enabled(store, two_chapter_structure):
    async def scenario():
        backend = FakeBackend(two_chapter_structure)
        flow = await answering(AssessmentFlow(backend, store, 3))
        await flow.record_response(1, level_id(1, 1))
        await flow.record_response(2, level_id(2, 1))
        await flow.wait_for_saves()
        backend.structure = [chapter(1, indicator(1), indicator(2, habilitado=False))]
        await flow.select_segment(4)
        return flow

    flow = asyncio.run(scenario())
    assert flow.responses.points() == {1: 5}
    assert flow.chapter_index == 0


def test_tier_uses_segment_ranges_then_percentage(store, two_chapter_structure):
    flow = AssessmentFlow(FakeBackend(two_chapter_structure), store, business_id=3)
    assert flow.tier_for(score=10, pct=80) == Tier.ALTO
    assert flow.tier_for(score=10, pct=60) == Tier.MEDIO

    asyncio.run(answering(flow, segment_id=4))
    assert flow.tier_for(score=94, pct=10) == Tier.MEDIO
    assert flow.tier_for(score=10, pct=99) == Tier.MINIMO


def test_snapshot_marks_selected_levels(store, two_chapter_structure):
    async def scenario():
        flow = await answering(AssessmentFlow(FakeBackend(two_chapter_structure), store, 3))
        await flow.record_response(2, level_id(2, 1))
        await flow.wait_for_saves()
        return flow.snapshot()

    snapshot = asyncio.run(scenario())
    assert snapshot["estado"] == "answering_chapter"
    first = snapshot["capitulos"][0]["indicadores"]
    assert [i["id_nivel_respuesta"] for i in first] == [None, level_id(2, 1)]
    assert snapshot["progreso"] == {"completados": 0, "total": 2, "porcentaje": 0}
    assert (snapshot["puntaje_obtenido"], snapshot["puntaje_maximo"]) == (5, 30)
    assert snapshot["porcentaje"] == 17
    assert snapshot["indicadores_respondidos"] == 1
    assert snapshot["segmento"]["rango_turistas"] == "Menos de 1,000 turistas anuales"
