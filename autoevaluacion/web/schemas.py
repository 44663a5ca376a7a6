from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from autoevaluacion.domain.schemas import AssessmentSummary, ChapterPayload, LevelPair, ResultRecord

PlotlyFigure = dict[str, Any]


# ---------- Flow ----------


class StartRequest(BaseModel):
    id_bodega: Optional[int] = Field(default=None, gt=0)


class SegmentSelection(BaseModel):
    id_segmento: int = Field(..., gt=0)


class ResponseSelection(BaseModel):
    id_indicador: int = Field(..., gt=0)
    id_nivel_respuesta: int = Field(..., gt=0)


class SegmentView(BaseModel):
    id_segmento: int
    nombre: str
    min_turistas: Optional[int] = None
    max_turistas: Optional[int] = None
    rango_turistas: str


class LevelView(BaseModel):
    id_nivel_respuesta: int
    nombre: str
    descripcion: Optional[str] = None
    puntos: int


class IndicatorView(BaseModel):
    id_indicador: int
    nombre: str
    descripcion: Optional[str] = None
    habilitado: bool
    niveles_respuesta: list[LevelView]
    id_nivel_respuesta: Optional[int] = None


class ChapterView(BaseModel):
    id_capitulo: int
    nombre: str
    descripcion: Optional[str] = None
    indicadores: list[IndicatorView]


class ProgressView(BaseModel):
    completados: int
    total: int
    porcentaje: int


class FlowSnapshot(BaseModel):
    estado: Literal[
        "idle", "selecting_segment", "answering_chapter", "finalizing", "completed", "error"
    ]
    id_autoevaluacion: Optional[int] = None
    id_bodega: int
    segmento: Optional[SegmentView] = None
    segmentos: list[SegmentView]
    capitulos: list[ChapterView]
    capitulo_actual: Optional[int] = None
    es_ultimo_capitulo: bool
    progreso: ProgressView
    puntaje_obtenido: int
    puntaje_maximo: int
    porcentaje: int
    indicadores_respondidos: int
    is_saving: bool
    can_finalize: bool
    error: Optional[str] = None
    error_guardado: Optional[str] = None
    resultado: Optional[ResultRecord] = None


# ---------- Levels and scoring ----------


class TierView(BaseModel):
    clave: Literal["minimo", "medio", "alto"]
    nombre: str
    color: str
    descripcion: str


class RangeView(BaseModel):
    min: int
    max: int


class ReferenceRow(BaseModel):
    segmento: str
    nombre: str
    minimo: RangeView
    medio: RangeView
    alto: RangeView
    nivel_actual: Optional[Literal["minimo", "medio", "alto"]] = None


class BandView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    min: int
    max: int
    nombre: str
    color: str
    descripcion: str


class LevelsResponse(BaseModel):
    segmento: Optional[str] = None
    puntaje: Optional[int] = None
    nivel: Optional[TierView] = None
    rangos: list[ReferenceRow]
    bandas: list[BandView]


class ScoreRequest(BaseModel):
    capitulos: list[ChapterPayload]
    respuestas: list[LevelPair] = Field(default_factory=list)
    segmento: Optional[str] = None


class ChapterScore(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id_capitulo: int
    nombre: str
    puntaje_obtenido: int
    puntaje_maximo: int
    porcentaje: int
    indicadores_completados: int
    indicadores_total: int


class ScoreResponse(BaseModel):
    puntaje_obtenido: int
    puntaje_maximo: int
    porcentaje: int
    completo: bool
    nivel: TierView
    banda: BandView
    progreso: ProgressView
    capitulos: list[ChapterScore]


# ---------- Results ----------


class ComparisonView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    diferencia_puntos: int
    diferencia_porcentaje: int
    mejora: bool


class ResultsResponse(BaseModel):
    ultimo: Optional[ResultRecord] = None
    historial: list[AssessmentSummary]
    comparacion: Optional[ComparisonView] = None
    fuente: Literal["local", "backend", "none"]
    nivel: Optional[TierView] = None


class ResultFiguresResponse(BaseModel):
    capitulos_barras: Optional[PlotlyFigure] = None
    capitulos_puntos: Optional[PlotlyFigure] = None
    tendencia: Optional[PlotlyFigure] = None


class UserResponse(BaseModel):
    usuario: Optional[dict[str, Any]] = None
    autenticado: bool
    id_bodega: Optional[int] = None
