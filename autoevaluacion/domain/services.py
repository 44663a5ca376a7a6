from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from .models import Chapter

# indicator id -> points obtained
Responses = Mapping[int, int]


def round_half_up(value: float) -> int:
    """Round halves upward (2.5 -> 3, -2.5 -> -2); ``round()`` would give 2 for 2.5."""
    return int(math.floor(value + 0.5))


def ratio_percentage(obtained: int, maximum: int) -> int:
    if maximum <= 0:
        return 0
    return round_half_up(obtained / maximum * 100)


@dataclass
class ChapterResult:
    id_capitulo: int
    nombre: str
    puntaje_obtenido: int
    puntaje_maximo: int
    porcentaje: int
    indicadores_completados: int
    indicadores_total: int


@dataclass
class ChaptersProgress:
    completados: int
    total: int
    porcentaje: int


@dataclass
class Comparison:
    diferencia_puntos: int
    diferencia_porcentaje: int
    mejora: bool


def max_score(structure: Sequence[Chapter]) -> int:
    """Sum of each enabled indicator's best level across all chapters."""
    return sum(ind.max_points for chapter in structure for ind in chapter.enabled_indicators)


def total_score(responses: Responses, structure: Sequence[Chapter]) -> int:
    """
    Points obtained over enabled indicators.

    Responses for disabled or unknown indicators are ignored; unanswered
    indicators contribute 0.
    """
    total = 0
    for chapter in structure:
        for ind in chapter.enabled_indicators:
            points = responses.get(ind.id_indicador)
            if points is not None:
                total += points
    return total


def percentage(responses: Responses, structure: Sequence[Chapter]) -> int:
    return ratio_percentage(total_score(responses, structure), max_score(structure))


def chapter_scores(responses: Responses, structure: Sequence[Chapter]) -> list[ChapterResult]:
    results: list[ChapterResult] = []
    for chapter in structure:
        enabled = chapter.enabled_indicators
        obtained = 0
        completed = 0
        maximum = 0
        for ind in enabled:
            maximum += ind.max_points
            points = responses.get(ind.id_indicador)
            if points is not None:
                obtained += points
                completed += 1
        results.append(
            ChapterResult(
                id_capitulo=chapter.id_capitulo,
                nombre=chapter.nombre,
                puntaje_obtenido=obtained,
                puntaje_maximo=maximum,
                porcentaje=ratio_percentage(obtained, maximum),
                indicadores_completados=completed,
                indicadores_total=len(enabled),
            )
        )
    return results


def unanswered_indicators(responses: Responses, chapter: Chapter) -> list[int]:
    return [ind.id_indicador for ind in chapter.enabled_indicators if ind.id_indicador not in responses]


def is_chapter_complete(responses: Responses, chapter: Chapter) -> bool:
    return not unanswered_indicators(responses, chapter)


def is_structure_complete(responses: Responses, structure: Sequence[Chapter]) -> bool:
    """True when every enabled indicator has a response and at least one is enabled."""
    enabled = [ind for chapter in structure for ind in chapter.enabled_indicators]
    return bool(enabled) and all(ind.id_indicador in responses for ind in enabled)


def chapters_progress(responses: Responses, structure: Sequence[Chapter]) -> ChaptersProgress:
    """Chapters whose enabled indicators are all answered; empty chapters never count."""
    completed = sum(
        1
        for chapter in structure
        if chapter.has_enabled_indicators and is_chapter_complete(responses, chapter)
    )
    return ChaptersProgress(
        completados=completed,
        total=len(structure),
        porcentaje=ratio_percentage(completed, len(structure)),
    )


def compare_results(
    current_score: int, previous_score: int, current_max: int, previous_max: int
) -> Comparison:
    current_pct = current_score / current_max * 100 if current_max > 0 else 0.0
    previous_pct = previous_score / previous_max * 100 if previous_max > 0 else 0.0
    return Comparison(
        diferencia_puntos=current_score - previous_score,
        diferencia_porcentaje=round_half_up(current_pct - previous_pct),
        mejora=current_pct > previous_pct,
    )
