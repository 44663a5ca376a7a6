from __future__ import annotations

import os

os.environ["APP_ENVIRONMENT"] = "testing"
os.environ["STORAGE_BACKEND"] = "memory"

from collections.abc import Mapping, Sequence
from typing import Any

import pytest

from autoevaluacion.domain.models import Chapter, Indicator, PendingAssessment, ResponseLevel, Segment
from autoevaluacion.infrastructure.config import reset_settings
from autoevaluacion.infrastructure.exceptions import BackendConnectionError
from autoevaluacion.infrastructure.storage import MemoryStore


def levels(*points: int, start_id: int = 1) -> tuple[ResponseLevel, ...]:
    return tuple(
        ResponseLevel(id_nivel_respuesta=start_id + i, nombre=f"Nivel {p}", puntos=p)
        for i, p in enumerate(points)
    )


def indicator(ind_id: int, *points: int, habilitado: bool = True) -> Indicator:
    return Indicator(
        id_indicador=ind_id,
        nombre=f"Indicador {ind_id}",
        niveles_respuesta=levels(*(points or (0, 5, 10)), start_id=ind_id * 10),
        habilitado=habilitado,
    )


def chapter(ch_id: int, *indicators: Indicator) -> Chapter:
    return Chapter(id_capitulo=ch_id, nombre=f"Capítulo {ch_id}", indicadores=tuple(indicators))


def level_id(ind_id: int, position: int) -> int:
    """Level id of the ``position``-th level of an indicator built with ``indicator()``."""
    return ind_id * 10 + position


def structure_payload(structure: Sequence[Chapter]) -> dict[str, Any]:
    """Backend ``/estructura`` body for a domain structure."""
    return {
        "capitulos": [
            {
                "capitulo": {"id_capitulo": ch.id_capitulo, "nombre": ch.nombre},
                "indicadores": [
                    {
                        "indicador": {"id_indicador": ind.id_indicador, "nombre": ind.nombre},
                        "habilitado": ind.habilitado,
                        "niveles_respuesta": [
                            {
                                "id_nivel_respuesta": lvl.id_nivel_respuesta,
                                "nombre": lvl.nombre,
                                "puntos": lvl.puntos,
                            }
                            for lvl in ind.niveles_respuesta
                        ],
                    }
                    for ind in ch.indicadores
                ],
            }
            for ch in structure
        ]
    }


SEGMENTS = [
    Segment(id_segmento=1, nombre="Micro Bodega Turística/ Artesanal", min_turistas=0, max_turistas=999),
    Segment(id_segmento=4, nombre="Bodega Turística", min_turistas=10000, max_turistas=49999),
]


class FakeBackend:
    """In-process stand-in for ``BackendClient`` used by the flow tests."""

    def __init__(
        self,
        structure: Sequence[Chapter],
        pending: PendingAssessment | None = None,
        segments: Sequence[Segment] = SEGMENTS,
    ):
        self.structure = list(structure)
        self.pending = pending or PendingAssessment(id_autoevaluacion=7, created=True)
        self.segments = list(segments)
        self.saved: list[list[dict[str, int]]] = []
        self.selected: list[int] = []
        self.completed: list[int] = []
        self.cancelled: list[int] = []
        self.fail: set[str] = set()
        self.save_gate = None  # asyncio.Event the save calls wait on when set

    def _check(self, operation: str) -> None:
        if operation in self.fail:
            raise BackendConnectionError(f"{operation} unavailable", path=f"/{operation}")

    async def create_or_resume(self, business_id: int) -> PendingAssessment:
        self._check("create_or_resume")
        return self.pending

    async def get_structure(self, assessment_id: int) -> list[Chapter]:
        self._check("get_structure")
        return list(self.structure)

    async def get_segments(self, assessment_id: int) -> list[Segment]:
        self._check("get_segments")
        return list(self.segments)

    async def select_segment(self, assessment_id: int, segment_id: int) -> None:
        self._check("select_segment")
        self.selected.append(segment_id)

    async def save_responses(
        self, assessment_id: int, responses: Sequence[Mapping[str, int]]
    ) -> None:
        if self.save_gate is not None:
            await self.save_gate.wait()
        self._check("save_responses")
        self.saved.append([dict(r) for r in responses])

    async def complete(self, assessment_id: int) -> Any:
        self._check("complete")
        self.completed.append(assessment_id)
        return {"id_autoevaluacion": assessment_id, "estado": "completada"}

    async def cancel(self, assessment_id: int) -> None:
        self._check("cancel")
        self.cancelled.append(assessment_id)


@pytest.fixture(autouse=True)
def _fresh_settings():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def two_chapter_structure() -> list[Chapter]:
    return [
        chapter(1, indicator(1), indicator(2)),
        chapter(2, indicator(3), indicator(4, habilitado=False)),
    ]
