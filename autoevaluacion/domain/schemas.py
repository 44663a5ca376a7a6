"""
Pydantic schemas for backend payloads and user input.

Backend bodies are decoded here, at the boundary, into explicit models with
optional fields spelled out; anything that does not fit raises a typed
decoding error instead of being defaulted ad hoc further in.
"""

from __future__ import annotations

import re
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ..infrastructure.exceptions import ResponseDecodeError
from .models import Chapter, Indicator, PendingAssessment, ResponseLevel, Segment

M = TypeVar("M", bound=BaseModel)
L = TypeVar("L", bound="Place")

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class BackendModel(BaseModel):
    """Lenient about extra keys; strict about the ones we rely on."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# ---------- Structure ----------


class ResponseLevelPayload(BackendModel):
    id_nivel_respuesta: int
    nombre: str = ""
    descripcion: str | None = None
    puntos: int

    def to_domain(self) -> ResponseLevel:
        return ResponseLevel(
            id_nivel_respuesta=self.id_nivel_respuesta,
            nombre=self.nombre,
            puntos=self.puntos,
            descripcion=self.descripcion,
        )


class IndicatorInfo(BackendModel):
    id_indicador: int
    nombre: str = ""
    descripcion: str | None = None


class IndicatorPayload(BackendModel):
    indicador: IndicatorInfo
    niveles_respuesta: list[ResponseLevelPayload] = Field(default_factory=list)
    habilitado: bool = True

    @field_validator("habilitado", mode="before")
    def default_enabled(cls, v):
        return True if v is None else v

    def to_domain(self) -> Indicator:
        return Indicator(
            id_indicador=self.indicador.id_indicador,
            nombre=self.indicador.nombre,
            descripcion=self.indicador.descripcion,
            habilitado=self.habilitado,
            niveles_respuesta=tuple(lvl.to_domain() for lvl in self.niveles_respuesta),
        )


class ChapterInfo(BackendModel):
    id_capitulo: int
    nombre: str = ""
    descripcion: str | None = None


class ChapterPayload(BackendModel):
    capitulo: ChapterInfo
    indicadores: list[IndicatorPayload] = Field(default_factory=list)

    def to_domain(self) -> Chapter:
        return Chapter(
            id_capitulo=self.capitulo.id_capitulo,
            nombre=self.capitulo.nombre,
            descripcion=self.capitulo.descripcion,
            indicadores=tuple(ind.to_domain() for ind in self.indicadores),
        )


class StructurePayload(BackendModel):
    capitulos: list[ChapterPayload]

    def to_domain(self) -> list[Chapter]:
        return [cap.to_domain() for cap in self.capitulos]


# ---------- Segments ----------


class SegmentPayload(BackendModel):
    id_segmento: int
    nombre: str
    min_turistas: int | None = None
    max_turistas: int | None = None

    def to_domain(self) -> Segment:
        return Segment(
            id_segmento=self.id_segmento,
            nombre=self.nombre,
            min_turistas=self.min_turistas,
            max_turistas=self.max_turistas,
        )


# ---------- Locations ----------


class Place(BackendModel):
    nombre: str


class ProvincePayload(Place):
    id_provincia: int


class DepartmentPayload(Place):
    id_departamento: int
    id_provincia: int
    nombre_provincia: str | None = None


class LocalityPayload(Place):
    id_localidad: int
    id_departamento: int | None = None


def by_name(items: list[L]) -> list[L]:
    """Alphabetical by ``nombre``, ignoring case."""
    return sorted(items, key=lambda item: item.nombre.casefold())


# ---------- Create-or-resume ----------


class LevelPair(BackendModel):
    id_indicador: int
    id_nivel_respuesta: int


class PendingPayload(BackendModel):
    """
    Body of ``POST /autoevaluaciones``.

    The backend answers either with the assessment fields at the top level or
    nested under ``autoevaluacion``/``autoevaluacion_pendiente``; responses
    may sit beside the nested object.
    """

    id_autoevaluacion: int
    id_segmento: int | None = None
    fecha_inicio: str | None = None
    respuestas: list[LevelPair] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def unwrap(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        for key in ("autoevaluacion_pendiente", "autoevaluacion"):
            nested = data.get(key)
            if isinstance(nested, dict):
                merged = dict(nested)
                if "respuestas" in data and "respuestas" not in merged:
                    merged["respuestas"] = data["respuestas"]
                return merged
        return data

    @field_validator("respuestas", mode="before")
    def null_responses(cls, v):
        return [] if v is None else v

    def to_domain(self, created: bool) -> PendingAssessment:
        return PendingAssessment(
            id_autoevaluacion=self.id_autoevaluacion,
            created=created,
            id_segmento=self.id_segmento,
            fecha_inicio=self.fecha_inicio,
            respuestas=[(r.id_indicador, r.id_nivel_respuesta) for r in self.respuestas],
        )


# ---------- History and results ----------


class AssessmentSummary(BackendModel):
    """One assessment in the history list, also the header of a result record."""

    id_autoevaluacion: int
    fecha_inicio: str | None = None
    fecha_fin: str | None = None
    estado: str = "pendiente"
    id_bodega: int | None = None
    id_segmento: int | None = None
    nombre_segmento: str | None = None
    puntaje_final: int | None = None
    puntaje_maximo: int | None = None
    porcentaje: int | None = None
    nivel_sostenibilidad: str | None = None


class ChapterResultPayload(BackendModel):
    model_config = ConfigDict(extra="ignore", from_attributes=True)

    id_capitulo: int
    nombre: str
    puntaje_obtenido: int
    puntaje_maximo: int
    porcentaje: int
    indicadores_completados: int
    indicadores_total: int


class ResultRecord(BackendModel):
    autoevaluacion: AssessmentSummary
    capitulos: list[ChapterResultPayload] = Field(default_factory=list)


# ---------- Auth ----------


class AuthPayload(BackendModel):
    """Login/registration body: ``{usuario, token}`` or a bare user object."""

    usuario: dict[str, Any]
    token: str | None = None
    refresh_token: str | None = None

    @model_validator(mode="before")
    @classmethod
    def wrap_bare_user(cls, data: Any) -> Any:
        if isinstance(data, dict) and not isinstance(data.get("usuario"), dict):
            return {
                "usuario": data,
                "token": data.get("token"),
                "refresh_token": data.get("refresh_token"),
            }
        return data


class BaseValidationSchema(BaseModel):
    """Base schema for user-supplied forms."""

    model_config = ConfigDict(str_strip_whitespace=True, validate_assignment=True)


class RegistroBodega(BaseValidationSchema):
    razon_social: str = Field(..., min_length=1, max_length=255)
    nombre_fantasia: str = Field(..., min_length=1, max_length=255)
    cuit: str
    inv_bod: str | None = None
    inv_vin: str | None = None
    calle: str = Field(..., min_length=1)
    numeracion: str | None = None
    id_localidad: int = Field(..., gt=0)
    telefono: str = Field(..., min_length=1)
    email_institucional: str

    @field_validator("cuit")
    def validate_cuit(cls, v):
        digits = re.sub(r"\D", "", v)
        if len(digits) != 11:
            raise ValueError("CUIT must contain 11 digits")
        return digits

    @field_validator("email_institucional")
    def validate_email(cls, v):
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Invalid email address")
        return v.lower()


class RegistroCuenta(BaseValidationSchema):
    email_login: str
    password: str = Field(..., min_length=8)

    @field_validator("email_login")
    def validate_email(cls, v):
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Invalid email address")
        return v.lower()


class RegistroResponsable(BaseValidationSchema):
    nombre: str = Field(..., min_length=1)
    apellido: str = Field(..., min_length=1)
    cargo: str = Field(..., min_length=1)
    dni: str | None = None


class RegistroInput(BaseValidationSchema):
    bodega: RegistroBodega
    cuenta: RegistroCuenta
    responsable: RegistroResponsable


class LoginInput(BaseValidationSchema):
    email: str
    password: str = Field(..., min_length=1)


class ValidationErrorDetail(BaseModel):
    """Schema for validation error details."""

    field: str
    message: str
    value: Any = None


class ValidationResponse(BaseModel):
    """Schema for validation responses."""

    success: bool
    errors: list[ValidationErrorDetail] = []
    data: dict[str, Any] | None = None


def validate_input(schema_class: type[BaseModel], data: dict[str, Any]) -> ValidationResponse:
    """
    Centralized validation function that returns structured validation results.

    Example:
        >>> result = validate_input(LoginInput, {"email": "a@b.com", "password": "x"})
        >>> if not result.success:
        ...     for error in result.errors:
        ...         print(f"Error in {error.field}: {error.message}")
    """
    try:
        validated = schema_class(**data)
        return ValidationResponse(success=True, data=validated.model_dump())
    except ValidationError as e:
        errors = [
            ValidationErrorDetail(
                field=".".join(str(x) for x in error["loc"]),
                message=error["msg"],
                value=error.get("input"),
            )
            for error in e.errors()
        ]
        return ValidationResponse(success=False, errors=errors)


def decode(model: type[M], data: Any, path: str | None = None, status_code: int | None = None) -> M:
    """Validate a backend body, raising ``ResponseDecodeError`` on a shape mismatch."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ResponseDecodeError(
            f"Unexpected {model.__name__} payload: {e.error_count()} validation errors",
            raw=repr(data)[:500],
            status_code=status_code,
            path=path,
        ) from e


def decode_list(model: type[M], data: Any, path: str | None = None) -> list[M]:
    """Decode a JSON array, also accepting ``{"data": [...]}`` envelopes."""
    if isinstance(data, dict) and isinstance(data.get("data"), list):
        data = data["data"]
    if not isinstance(data, list):
        raise ResponseDecodeError(
            f"Expected a list of {model.__name__}", raw=repr(data)[:500], path=path
        )
    return [decode(model, item, path=path) for item in data]

