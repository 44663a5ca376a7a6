"""
Async client for the external self-assessment REST backend.

Every call opens a short-lived ``httpx.AsyncClient`` carrying the caller's
cookie and ``Authorization`` headers. Failures are mapped onto the backend
error taxonomy: no response, non-2xx response, or an undecodable body.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import httpx

from ..domain.models import Chapter, PendingAssessment, Segment
from ..domain.schemas import (
    AssessmentSummary,
    AuthPayload,
    DepartmentPayload,
    LocalityPayload,
    PendingPayload,
    ProvincePayload,
    ResultRecord,
    SegmentPayload,
    StructurePayload,
    by_name,
    decode,
    decode_list,
)
from .config import BackendConfig, get_settings
from .exceptions import (
    BackendResponseError,
    ResponseDecodeError,
    handle_backend_error,
)
from .logging import get_logger

logger = get_logger(__name__)

FORWARDED_REQUEST_HEADERS = ("cookie", "authorization")


def error_message(response: httpx.Response) -> str:
    """Message for a non-2xx response: body ``message``/``error`` or ``Error {status}``."""
    fallback = f"Error {response.status_code}"
    if response.reason_phrase:
        fallback = f"{fallback}: {response.reason_phrase}"
    try:
        data = response.json()
    except ValueError:
        return response.text.strip() or fallback
    if isinstance(data, dict):
        return str(data.get("message") or data.get("error") or fallback)
    return fallback


class BackendClient:
    def __init__(
        self,
        config: BackendConfig | None = None,
        headers: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config or get_settings().backend
        self.headers = {k: v for k, v in (headers or {}).items() if v}
        self._transport = transport

    def with_headers(self, headers: Mapping[str, str]) -> BackendClient:
        return BackendClient(self.config, {**self.headers, **headers}, self._transport)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers=self.headers,
            timeout=httpx.Timeout(self.config.timeout_seconds),
            transport=self._transport,
        )

    async def forward(
        self,
        method: str,
        path: str,
        *,
        content: bytes | None = None,
        json_body: Any = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """Send one request and hand back the raw response, whatever its status."""
        url = self.config.url_for(path)
        request_headers = {"Content-Type": "application/json", **(headers or {})}
        try:
            async with self._client() as client:
                response = await client.request(
                    method,
                    url,
                    content=content,
                    json=json_body,
                    params=params,
                    headers=request_headers,
                )
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed: {type(e).__name__}: {e}")
            raise handle_backend_error(e, path) from e

        logger.info(f"{method} {path} -> {response.status_code}")
        return response

    async def _call(
        self,
        method: str,
        path: str,
        json_body: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> tuple[Any, int]:
        response = await self.forward(method, path, json_body=json_body, params=params)
        if not response.is_success:
            raise BackendResponseError(
                error_message(response), status_code=response.status_code, path=path
            )
        if not response.content:
            return None, response.status_code
        try:
            return response.json(), response.status_code
        except ValueError as e:
            raise ResponseDecodeError(
                response.text or f"Error {response.status_code}",
                raw=response.text,
                status_code=response.status_code,
                path=path,
            ) from e

    # ---------- Assessments ----------

    async def create_or_resume(self, business_id: int) -> PendingAssessment:
        """``201`` means a fresh assessment; ``200`` returns the pending one."""
        path = "/autoevaluaciones"
        data, status_code = await self._call("POST", path, json_body={"id_bodega": business_id})
        payload = decode(PendingPayload, data, path=path, status_code=status_code)
        return payload.to_domain(created=status_code == 201)

    async def get_structure(self, assessment_id: int) -> list[Chapter]:
        path = f"/autoevaluaciones/{assessment_id}/estructura"
        data, status_code = await self._call("GET", path)
        return decode(StructurePayload, data, path=path, status_code=status_code).to_domain()

    async def get_segments(self, assessment_id: int) -> list[Segment]:
        path = f"/autoevaluaciones/{assessment_id}/segmentos"
        data, _ = await self._call("GET", path)
        return [seg.to_domain() for seg in decode_list(SegmentPayload, data, path=path)]

    async def select_segment(self, assessment_id: int, segment_id: int) -> None:
        await self._call(
            "PUT",
            f"/autoevaluaciones/{assessment_id}/segmento",
            json_body={"id_segmento": segment_id},
        )

    async def save_responses(
        self, assessment_id: int, responses: Sequence[Mapping[str, int]]
    ) -> None:
        await self._call(
            "POST",
            f"/autoevaluaciones/{assessment_id}/respuestas",
            json_body={"respuestas": list(responses)},
        )

    async def complete(self, assessment_id: int) -> Any:
        data, _ = await self._call("POST", f"/autoevaluaciones/{assessment_id}/completar")
        return data

    async def cancel(self, assessment_id: int) -> None:
        await self._call("POST", f"/autoevaluaciones/{assessment_id}/cancelar")

    async def list_history(self, business_id: int) -> list[AssessmentSummary]:
        path = "/autoevaluaciones"
        data, _ = await self._call("GET", path, params={"id_bodega": business_id})
        return decode_list(AssessmentSummary, data, path=path)

    async def get_results(self, assessment_id: int) -> ResultRecord:
        path = f"/autoevaluaciones/{assessment_id}/resultados"
        data, status_code = await self._call("GET", path)
        return decode(ResultRecord, data, path=path, status_code=status_code)

    # ---------- Locations ----------

    async def list_provinces(self) -> list[ProvincePayload]:
        path = "/provincias"
        data, _ = await self._call("GET", path)
        return by_name(decode_list(ProvincePayload, data, path=path))

    async def list_departments(self, province_id: int) -> list[DepartmentPayload]:
        path = "/departamentos"
        data, _ = await self._call("GET", path, params={"provincia": province_id})
        return by_name(decode_list(DepartmentPayload, data, path=path))

    async def list_localities(self, department_id: int) -> list[LocalityPayload]:
        path = "/localidades"
        data, _ = await self._call("GET", path, params={"departamento": department_id})
        return by_name(decode_list(LocalityPayload, data, path=path))

    # ---------- Auth ----------

    async def login(self, email: str, password: str) -> AuthPayload:
        path = "/auth/login"
        data, status_code = await self._call(
            "POST", path, json_body={"email": email, "password": password}
        )
        return decode(AuthPayload, data, path=path, status_code=status_code)

    async def register(self, registration: Mapping[str, Any]) -> AuthPayload:
        path = "/registro"
        data, status_code = await self._call("POST", path, json_body=dict(registration))
        return decode(AuthPayload, data, path=path, status_code=status_code)


def response_body(response: httpx.Response) -> Any:
    """
    JSON body of a forwarded response.

    Non-JSON bodies are wrapped as ``{"message": text}`` so callers always get
    JSON back; an empty body stays ``None``.
    """
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return {"message": response.text or f"Error {response.status_code}"}


def proxy_body(response: httpx.Response) -> Any:
    """Body to relay for a proxied call; errors are normalised to ``{"message": ...}``."""
    if response.is_success:
        return response_body(response)
    data = response_body(response)
    if isinstance(data, dict) and "message" in data:
        return data
    return {"message": error_message(response)}

