"""
Same-origin proxy onto the backend REST API.

Paths mirror the backend's. Cookie and Authorization headers travel with the
request; Set-Cookie headers come back with the response. Bodies are always
JSON: non-JSON backend answers are wrapped as ``{"message": ...}``.
"""

from __future__ import annotations

import json
import logging

import httpx
from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import JSONResponse

from autoevaluacion.application.history import SessionStore
from autoevaluacion.domain.schemas import (
    AuthPayload,
    DepartmentPayload,
    LocalityPayload,
    ProvincePayload,
    RegistroInput,
    validate_input,
)
from autoevaluacion.infrastructure.backend import BackendClient, proxy_body
from autoevaluacion.infrastructure.exceptions import (
    GENERIC_CONNECTION_MESSAGE,
    BackendConnectionError,
)
from autoevaluacion.web.dependencies import get_backend_client, get_session_store

router = APIRouter(prefix="/api")
logger = logging.getLogger(__name__)


def relay_response(upstream: httpx.Response) -> Response:
    if upstream.status_code == status.HTTP_204_NO_CONTENT:
        response: Response = Response(status_code=status.HTTP_204_NO_CONTENT)
    else:
        response = JSONResponse(content=proxy_body(upstream), status_code=upstream.status_code)
    for cookie in upstream.headers.get_list("set-cookie"):
        response.headers.append("set-cookie", cookie)
    return response


async def relay(
    request: Request,
    client: BackendClient,
    method: str,
    path: str,
    json_body: object = None,
) -> tuple[Response, httpx.Response | None]:
    content = None
    if json_body is None and method in ("POST", "PUT", "PATCH"):
        content = await request.body() or None
    try:
        upstream = await client.forward(
            method,
            path,
            content=content,
            json_body=json_body,
            params=dict(request.query_params) or None,
        )
    except BackendConnectionError:
        return (
            JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"message": GENERIC_CONNECTION_MESSAGE},
            ),
            None,
        )
    return relay_response(upstream), upstream


def remember_auth(upstream: httpx.Response | None, session: SessionStore) -> None:
    """Persist the user and token of a successful login/registration."""
    if upstream is None or not upstream.is_success:
        return
    try:
        auth = AuthPayload.model_validate(upstream.json())
    except ValueError:
        logger.warning("Auth response did not contain a user; nothing stored")
        return
    session.save_auth(auth)


@router.post("/registro")
async def register(
    request: Request,
    client: BackendClient = Depends(get_backend_client),
    session: SessionStore = Depends(get_session_store),
) -> Response:
    try:
        data = json.loads(await request.body() or b"{}")
    except ValueError:
        data = None
    if not isinstance(data, dict):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"message": "El cuerpo de la solicitud debe ser JSON"},
        )

    validation = validate_input(RegistroInput, data)
    if not validation.success:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "message": "Datos de registro inválidos",
                "errors": [e.model_dump(mode="json", exclude={"value"}) for e in validation.errors],
            },
        )

    response, upstream = await relay(request, client, "POST", "/registro", validation.data)
    remember_auth(upstream, session)
    return response


@router.post("/auth/login")
async def login(
    request: Request,
    client: BackendClient = Depends(get_backend_client),
    session: SessionStore = Depends(get_session_store),
) -> Response:
    response, upstream = await relay(request, client, "POST", "/auth/login")
    remember_auth(upstream, session)
    return response


@router.post("/autoevaluaciones")
async def create_assessment(
    request: Request, client: BackendClient = Depends(get_backend_client)
) -> Response:
    response, _ = await relay(request, client, "POST", "/autoevaluaciones")
    return response


@router.get("/autoevaluaciones")
async def list_assessments(
    request: Request, client: BackendClient = Depends(get_backend_client)
) -> Response:
    response, _ = await relay(request, client, "GET", "/autoevaluaciones")
    return response


@router.get("/autoevaluaciones/{assessment_id}/estructura")
async def get_structure(
    assessment_id: int, request: Request, client: BackendClient = Depends(get_backend_client)
) -> Response:
    path = f"/autoevaluaciones/{assessment_id}/estructura"
    response, _ = await relay(request, client, "GET", path)
    return response


@router.get("/autoevaluaciones/{assessment_id}/segmentos")
async def get_segments(
    assessment_id: int, request: Request, client: BackendClient = Depends(get_backend_client)
) -> Response:
    path = f"/autoevaluaciones/{assessment_id}/segmentos"
    response, _ = await relay(request, client, "GET", path)
    return response


@router.put("/autoevaluaciones/{assessment_id}/segmento")
async def select_segment(
    assessment_id: int, request: Request, client: BackendClient = Depends(get_backend_client)
) -> Response:
    path = f"/autoevaluaciones/{assessment_id}/segmento"
    response, _ = await relay(request, client, "PUT", path)
    return response


@router.post("/autoevaluaciones/{assessment_id}/respuestas")
async def save_responses(
    assessment_id: int, request: Request, client: BackendClient = Depends(get_backend_client)
) -> Response:
    path = f"/autoevaluaciones/{assessment_id}/respuestas"
    response, _ = await relay(request, client, "POST", path)
    return response


@router.post("/autoevaluaciones/{assessment_id}/completar")
async def complete_assessment(
    assessment_id: int, request: Request, client: BackendClient = Depends(get_backend_client)
) -> Response:
    path = f"/autoevaluaciones/{assessment_id}/completar"
    response, _ = await relay(request, client, "POST", path)
    return response


@router.post("/autoevaluaciones/{assessment_id}/cancelar")
async def cancel_assessment(
    assessment_id: int, request: Request, client: BackendClient = Depends(get_backend_client)
) -> Response:
    path = f"/autoevaluaciones/{assessment_id}/cancelar"
    response, _ = await relay(request, client, "POST", path)
    return response


@router.get("/autoevaluaciones/{assessment_id}/resultados")
async def get_results(
    assessment_id: int, request: Request, client: BackendClient = Depends(get_backend_client)
) -> Response:
    path = f"/autoevaluaciones/{assessment_id}/resultados"
    response, _ = await relay(request, client, "GET", path)
    return response


# ---------- Locations ----------
# Decoded and sorted by name for the registration form's cascading selects.


@router.get("/provincias", response_model=list[ProvincePayload])
async def list_provinces(
    client: BackendClient = Depends(get_backend_client),
) -> list[ProvincePayload]:
    return await client.list_provinces()


@router.get("/departamentos", response_model=list[DepartmentPayload])
async def list_departments(
    provincia: int = Query(...), client: BackendClient = Depends(get_backend_client)
) -> list[DepartmentPayload]:
    return await client.list_departments(provincia)


@router.get("/localidades", response_model=list[LocalityPayload])
async def list_localities(
    departamento: int = Query(...), client: BackendClient = Depends(get_backend_client)
) -> list[LocalityPayload]:
    return await client.list_localities(departamento)
