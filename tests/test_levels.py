from __future__ import annotations

import pytest

from autoevaluacion.domain.levels import (
    SEGMENT_RANGES,
    SUSTAINABILITY_BANDS,
    Tier,
    classify_by_segment,
    classify_percentage,
    reference_table,
    segment_key_from_name,
    sustainability_band,
)


def test_bodega_segment_tiers():
    assert classify_by_segment(94, "Bodega Turística") == Tier.MEDIO
    assert classify_by_segment(113, "Bodega Turística") == Tier.ALTO
    assert classify_by_segment(10, "Bodega Turística") == Tier.MINIMO


@pytest.mark.parametrize("key", list(SEGMENT_RANGES))
def test_lower_bounds_are_inclusive(key):
    table = SEGMENT_RANGES[key]
    assert table.classify(table.alto.min) == Tier.ALTO
    assert table.classify(table.alto.min - 1) == Tier.MEDIO
    assert table.classify(table.medio.min) == Tier.MEDIO
    assert table.classify(table.medio.min - 1) == Tier.MINIMO
    assert table.classify(table.minimo.min) == Tier.MINIMO


@pytest.mark.parametrize("key", list(SEGMENT_RANGES))
def test_classifier_is_monotonic(key):
    table = SEGMENT_RANGES[key]
    tiers = [table.classify(score) for score in range(0, table.alto.max + 20)]
    assert tiers == sorted(tiers)


@pytest.mark.parametrize(
    "name, key",
    [
        ("Micro Bodega Turística/ Artesanal", "micro_bodega"),
        ("Bodega artesanal", "micro_bodega"),
        ("Pequeña Bodega Turística", "pequena_bodega"),
        ("pequena bodega", "pequena_bodega"),
        ("Mediana Bodega Turística", "mediana_bodega"),
        ("Gran Bodega Turística", "gran_bodega"),
        ("Bodega Turística", "bodega"),
        ("Otro", "micro_bodega"),
        (None, "micro_bodega"),
        ("", "micro_bodega"),
    ],
)
def test_segment_key_from_name(name, key):
    assert segment_key_from_name(name) == key


def test_unknown_segment_uses_micro_ranges():
    assert classify_by_segment(46, "Desconocido") == Tier.ALTO
    assert classify_by_segment(39, None) == Tier.MEDIO


def test_percentage_fallback_thresholds():
    assert classify_percentage(75) == Tier.ALTO
    assert classify_percentage(74) == Tier.MEDIO
    assert classify_percentage(50) == Tier.MEDIO
    assert classify_percentage(49) == Tier.MINIMO
    assert classify_percentage(60, high=60, medium=30) == Tier.ALTO


def test_tier_info_and_key():
    assert Tier.MEDIO.key == "medio"
    assert Tier.ALTO.info.color == "#15803D"
    assert Tier.MINIMO.info.nombre == "Nivel Mínimo de Sostenibilidad"


@pytest.mark.parametrize(
    "pct, nombre",
    [
        (0, "Inicial"),
        (24, "Inicial"),
        (25, "En Desarrollo"),
        (50, "Consolidado"),
        (75, "Avanzado"),
        (89, "Avanzado"),
        (90, "Ejemplar"),
        (100, "Ejemplar"),
        (130, "Ejemplar"),
    ],
)
def test_sustainability_bands(pct, nombre):
    assert sustainability_band(pct).nombre == nombre


def test_bands_cover_zero_to_hundred_without_gaps():
    for previous, current in zip(SUSTAINABILITY_BANDS, SUSTAINABILITY_BANDS[1:]):
        assert previous.max == current.min
    assert SUSTAINABILITY_BANDS[0].min == 0
    assert SUSTAINABILITY_BANDS[-1].max == 100


def test_reference_table_highlights_only_the_current_segment():
    rows = reference_table("bodega", 100)
    assert [row["segmento"] for row in rows] == list(SEGMENT_RANGES)
    by_key = {row["segmento"]: row for row in rows}
    assert by_key["bodega"]["nivel_actual"] == "medio"
    assert by_key["bodega"]["medio"] == {"min": 94, "max": 112}
    assert by_key["gran_bodega"]["nivel_actual"] is None


def test_reference_table_has_no_highlight_below_the_floor():
    by_key = {row["segmento"]: row for row in reference_table("bodega", 10)}
    assert by_key["bodega"]["nivel_actual"] is None
    assert all(row["nivel_actual"] is None for row in reference_table())
