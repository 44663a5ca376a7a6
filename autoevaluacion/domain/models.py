from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True, frozen=True)
class ResponseLevel:
    id_nivel_respuesta: int
    nombre: str
    puntos: int
    descripcion: str | None = None


@dataclass(slots=True, frozen=True)
class Indicator:
    id_indicador: int
    nombre: str
    niveles_respuesta: tuple[ResponseLevel, ...] = ()
    descripcion: str | None = None
    habilitado: bool = True

    @property
    def max_points(self) -> int:
        # never negative, 0 for an indicator without levels
        return max([0, *(lvl.puntos for lvl in self.niveles_respuesta)])

    def level(self, level_id: int) -> ResponseLevel | None:
        for lvl in self.niveles_respuesta:
            if lvl.id_nivel_respuesta == level_id:
                return lvl
        return None


@dataclass(slots=True, frozen=True)
class Chapter:
    id_capitulo: int
    nombre: str
    indicadores: tuple[Indicator, ...] = ()
    descripcion: str | None = None

    @property
    def enabled_indicators(self) -> list[Indicator]:
        return [ind for ind in self.indicadores if ind.habilitado]

    @property
    def has_enabled_indicators(self) -> bool:
        return any(ind.habilitado for ind in self.indicadores)


@dataclass(slots=True, frozen=True)
class Segment:
    id_segmento: int
    nombre: str
    min_turistas: int | None = None
    max_turistas: int | None = None

    def visitor_band(self) -> str:
        if self.min_turistas is None or self.max_turistas is None:
            return "Información no disponible"
        if self.min_turistas == 0 and self.max_turistas == 999:
            return "Menos de 1,000 turistas anuales"
        return f"{self.min_turistas:,} - {self.max_turistas:,} turistas anuales"


@dataclass(slots=True, frozen=True)
class Answer:
    """One recorded response: the level sent to the backend and the points it is worth."""

    id_capitulo: int
    id_indicador: int
    id_nivel_respuesta: int
    puntos: int


@dataclass(slots=True)
class PendingAssessment:
    """Outcome of create-or-resume against the backend."""

    id_autoevaluacion: int
    created: bool
    id_segmento: int | None = None
    fecha_inicio: str | None = None
    respuestas: list[tuple[int, int]] = field(default_factory=list)  # (id_indicador, id_nivel)
