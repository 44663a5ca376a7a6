"""
Sustainability tier classification.

Scores are classified against per-segment range tables; when no segment is
known a coarse percentage fallback is used instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class Tier(IntEnum):
    MINIMO = 1
    MEDIO = 2
    ALTO = 3

    @property
    def key(self) -> str:
        return self.name.lower()

    @property
    def info(self) -> TierInfo:
        return TIER_INFO[self]


@dataclass(frozen=True, slots=True)
class TierInfo:
    nombre: str
    color: str
    descripcion: str


TIER_INFO: dict[Tier, TierInfo] = {
    Tier.ALTO: TierInfo(
        nombre="Nivel Alto de Sostenibilidad",
        color="#15803D",
        descripcion="Cumple con los estándares más exigentes de sostenibilidad.",
    ),
    Tier.MEDIO: TierInfo(
        nombre="Nivel Medio de Sostenibilidad",
        color="#22C55E",
        descripcion="Buen desempeño con oportunidades de mejora para alcanzar la excelencia.",
    ),
    Tier.MINIMO: TierInfo(
        nombre="Nivel Mínimo de Sostenibilidad",
        color="#EAB308",
        descripcion="Cumple con los requisitos básicos, se recomienda implementar mejoras.",
    ),
}


@dataclass(frozen=True, slots=True)
class ScoreRange:
    min: int
    max: int


@dataclass(frozen=True, slots=True)
class RangeTable:
    minimo: ScoreRange
    medio: ScoreRange
    alto: ScoreRange

    def classify(self, score: int) -> Tier:
        """
        Highest tier whose inclusive lower bound the score reaches.

        Scores under ``minimo.min`` still classify as MINIMO; there is no
        below-minimum tier.
        """
        if score >= self.alto.min:
            return Tier.ALTO
        if score >= self.medio.min:
            return Tier.MEDIO
        return Tier.MINIMO

    def highlighted_tier(self, score: int) -> Tier | None:
        """Tier to mark in the reference table; None while under the table's floor."""
        if score < self.minimo.min:
            return None
        return self.classify(score)


SEGMENT_NAMES: dict[str, str] = {
    "micro_bodega": "Micro Bodega Turística/ Artesanal",
    "pequena_bodega": "Pequeña Bodega Turística",
    "mediana_bodega": "Mediana Bodega Turística",
    "bodega": "Bodega Turística",
    "gran_bodega": "Gran Bodega Turística",
}

SEGMENT_RANGES: dict[str, RangeTable] = {
    "micro_bodega": RangeTable(ScoreRange(17, 38), ScoreRange(39, 45), ScoreRange(46, 51)),
    "pequena_bodega": RangeTable(ScoreRange(23, 51), ScoreRange(52, 61), ScoreRange(62, 69)),
    "mediana_bodega": RangeTable(ScoreRange(32, 71), ScoreRange(72, 85), ScoreRange(86, 96)),
    "bodega": RangeTable(ScoreRange(42, 93), ScoreRange(94, 112), ScoreRange(113, 126)),
    "gran_bodega": RangeTable(ScoreRange(42, 93), ScoreRange(94, 112), ScoreRange(113, 126)),
}

DEFAULT_SEGMENT_KEY = "micro_bodega"


def segment_key_from_name(segment_name: str | None) -> str:
    """Map a backend segment name onto a range-table key."""
    if not segment_name:
        return DEFAULT_SEGMENT_KEY

    lower = segment_name.lower()
    if "micro" in lower or "artesanal" in lower:
        return "micro_bodega"
    if "pequeña" in lower or "pequena" in lower:
        return "pequena_bodega"
    if "mediana" in lower:
        return "mediana_bodega"
    if "gran" in lower:
        return "gran_bodega"
    if "bodega" in lower:
        return "bodega"
    return DEFAULT_SEGMENT_KEY


def range_table_for(segment_name: str | None) -> RangeTable:
    return SEGMENT_RANGES[segment_key_from_name(segment_name)]


def classify_by_segment(score: int, segment_name: str | None) -> Tier:
    return range_table_for(segment_name).classify(score)


def classify_percentage(percentage: int, high: int = 75, medium: int = 50) -> Tier:
    if percentage >= high:
        return Tier.ALTO
    if percentage >= medium:
        return Tier.MEDIO
    return Tier.MINIMO


@dataclass(frozen=True, slots=True)
class SustainabilityBand:
    min: int
    max: int
    nombre: str
    color: str
    descripcion: str


SUSTAINABILITY_BANDS: tuple[SustainabilityBand, ...] = (
    SustainabilityBand(0, 25, "Inicial", "#ef4444", "Recién comenzando el camino de sostenibilidad"),
    SustainabilityBand(25, 50, "En Desarrollo", "#f97316", "Avanzando con oportunidades de mejora"),
    SustainabilityBand(50, 75, "Consolidado", "#eab308", "Prácticas sostenibles establecidas"),
    SustainabilityBand(75, 90, "Avanzado", "#22c55e", "Alto nivel de sostenibilidad"),
    SustainabilityBand(90, 100, "Ejemplar", "#10b981", "Referente en sostenibilidad enoturística"),
)


def sustainability_band(percentage: float) -> SustainabilityBand:
    """Five-band descriptor over [min, max); 100% and above land in the last band."""
    for band in SUSTAINABILITY_BANDS:
        if band.min <= percentage < band.max:
            return band
    return SUSTAINABILITY_BANDS[-1]


def reference_table(
    segment_key: str | None = None, score: int | None = None
) -> list[dict[str, object]]:
    """Rows of the segment reference table, marking the current tier for one segment."""
    rows: list[dict[str, object]] = []
    for key, table in SEGMENT_RANGES.items():
        current: Tier | None = None
        if key == segment_key and score is not None:
            current = table.highlighted_tier(score)
        rows.append(
            {
                "segmento": key,
                "nombre": SEGMENT_NAMES[key],
                "minimo": {"min": table.minimo.min, "max": table.minimo.max},
                "medio": {"min": table.medio.min, "max": table.medio.max},
                "alto": {"min": table.alto.min, "max": table.alto.max},
                "nivel_actual": current.key if current is not None else None,
            }
        )
    return rows
