from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

import pandas as pd
import plotly.graph_objects as go

from ..domain.levels import SUSTAINABILITY_BANDS
from ..domain.schemas import AssessmentSummary, ChapterResultPayload
from ..domain.services import round_half_up

BRAND_COLOR = "#880D1E"
DOT_VALUE = 10  # percentage points per dot


def chapter_letter(index: int) -> str:
    return chr(ord("A") + index)


def _chapter_frame(chapters: Sequence[ChapterResultPayload]) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "letra": [chapter_letter(i) for i in range(len(chapters))],
            "nombre": [c.nombre for c in chapters],
            "porcentaje": [c.porcentaje for c in chapters],
            "puntaje": [f"{c.puntaje_obtenido} / {c.puntaje_maximo}" for c in chapters],
        }
    )


def make_chapter_bar_chart(chapters: Sequence[ChapterResultPayload]) -> go.Figure:
    """Percentage per chapter, chapters labelled A, B, C... on a fixed 0-100 axis."""
    df = _chapter_frame(chapters)
    fig = go.Figure(
        go.Bar(
            x=df["letra"],
            y=df["porcentaje"],
            marker_color=BRAND_COLOR,
            customdata=df[["nombre", "puntaje"]].to_numpy(),
            hovertemplate=(
                "<b>%{x}</b> %{customdata[0]}<br>%{y}% (%{customdata[1]})<extra></extra>"
            ),
        )
    )
    fig.update_layout(
        margin=dict(l=40, r=20, t=30, b=40),
        yaxis=dict(range=[0, 100], ticksuffix="%"),
        xaxis=dict(title=None),
        showlegend=False,
        height=360,
    )
    return fig


def make_chapter_dot_plot(chapters: Sequence[ChapterResultPayload]) -> go.Figure:
    """One dot per 10% reached in each chapter, stacked bottom-up."""
    xs: list[str] = []
    ys: list[int] = []
    labels: list[str] = []
    for i, chapter in enumerate(chapters):
        letter = chapter_letter(i)
        for dot in range(round_half_up(chapter.porcentaje / DOT_VALUE)):
            xs.append(letter)
            ys.append((dot + 1) * DOT_VALUE)
            labels.append(f"{chapter.nombre}: aprox. {(dot + 1) * DOT_VALUE}%")

    fig = go.Figure(
        go.Scatter(
            x=xs,
            y=ys,
            mode="markers",
            marker=dict(size=14, color=BRAND_COLOR),
            text=labels,
            hoverinfo="text",
        )
    )
    fig.update_layout(
        margin=dict(l=40, r=20, t=30, b=40),
        xaxis=dict(
            categoryorder="array",
            categoryarray=[chapter_letter(i) for i in range(len(chapters))],
        ),
        yaxis=dict(range=[0, 105], ticksuffix="%", dtick=DOT_VALUE),
        showlegend=False,
        height=360,
    )
    return fig


def make_history_trend(history: Sequence[AssessmentSummary]) -> go.Figure:
    """Percentage over time for evaluations that have one, oldest first."""
    df = pd.DataFrame(
        [
            {"fecha": pd.to_datetime(h.fecha_inicio, errors="coerce"), "porcentaje": h.porcentaje}
            for h in history
            if h.porcentaje is not None
        ],
        columns=["fecha", "porcentaje"],
    )
    df = df.dropna(subset=["fecha"]).sort_values("fecha")

    fig = go.Figure(
        go.Scatter(
            x=df["fecha"],
            y=df["porcentaje"],
            mode="lines+markers",
            line=dict(color=BRAND_COLOR),
            hovertemplate="%{x|%d/%m/%Y}: %{y}%<extra></extra>",
        )
    )
    for band in SUSTAINABILITY_BANDS:
        fig.add_hrect(y0=band.min, y1=band.max, fillcolor=band.color, opacity=0.08, line_width=0)
    fig.update_layout(
        margin=dict(l=40, r=20, t=30, b=40),
        yaxis=dict(range=[0, 100], ticksuffix="%"),
        showlegend=False,
        height=320,
    )
    return fig


def figure_to_dict(fig: go.Figure) -> dict[str, Any]:
    """Plain JSON-compatible dict, as the web layer serves it."""
    return json.loads(fig.to_json())
