from __future__ import annotations

import json

import httpx
from fastapi.testclient import TestClient

from autoevaluacion.infrastructure.backend import BackendClient
from autoevaluacion.infrastructure.config import BackendConfig
from autoevaluacion.infrastructure.storage import TOKEN_KEY, USER_KEY, MemoryStore
from autoevaluacion.web.main import create_application

CONFIG = BackendConfig(base_url="http://backend.test", api_prefix="/api/v1", timeout_seconds=5)

VALID_REGISTRATION = {
    "bodega": {
        "razon_social": "Bodega Los Andes SA",
        "nombre_fantasia": "Los Andes",
        "cuit": "30-12345678-9",
        "calle": "Ruta 40",
        "id_localidad": 3,
        "telefono": "261 555 0101",
        "email_institucional": "info@losandes.com.ar",
    },
    "cuenta": {"email_login": "Admin@LosAndes.com.ar", "password": "secreta123"},
    "responsable": {"nombre": "Ana", "apellido": "Pérez", "cargo": "Enóloga"},
}


def proxied(handler, store=None):
    seen: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    app = create_application()
    app.state.store = store if store is not None else MemoryStore()
    app.state.backend_client = BackendClient(CONFIG, transport=httpx.MockTransport(record))
    return TestClient(app), app.state.store, seen


def test_login_is_relayed_and_remembered():
    def handler(request):
        return httpx.Response(
            200,
            json={"usuario": {"id": 1, "bodega": {"id": 3}}, "token": "tok"},
            headers={"set-cookie": "session=abc; Path=/; HttpOnly"},
        )

    client, store, seen = proxied(handler)
    response = client.post("/api/auth/login", json={"email": "a@b.com", "password": "x"})

    assert response.status_code == 200
    assert response.json()["token"] == "tok"
    assert "session=abc" in response.headers["set-cookie"]
    assert str(seen[0].url) == "http://backend.test/api/v1/auth/login"
    assert json.loads(seen[0].content) == {"email": "a@b.com", "password": "x"}
    assert store.load(USER_KEY) == {"id": 1, "bodega": {"id": 3}}
    assert store.load(TOKEN_KEY) == "tok"


def test_failed_login_stores_nothing():
    def handler(request):
        return httpx.Response(401, json={"error": "Credenciales inválidas"})

    client, store, _ = proxied(handler)
    response = client.post("/api/auth/login", json={"email": "a@b.com", "password": "x"})

    assert response.status_code == 401
    assert response.json() == {"message": "Credenciales inválidas"}
    assert store.load(USER_KEY) is None


def test_caller_credentials_are_forwarded():
    def handler(request):
        return httpx.Response(200, json=[])

    client, _, seen = proxied(handler)
    client.get(
        "/api/autoevaluaciones",
        params={"id_bodega": 3},
        headers={"Authorization": "Bearer caller", "Cookie": "session=xyz"},
    )

    request = seen[0]
    assert request.url.params["id_bodega"] == "3"
    assert request.headers["authorization"] == "Bearer caller"
    assert "session=xyz" in request.headers["cookie"]


def test_stored_token_fills_missing_authorization():
    store = MemoryStore()
    store.save(TOKEN_KEY, "stored")

    def handler(request):
        return httpx.Response(200, json={"capitulos": []})

    client, _, seen = proxied(handler, store=store)
    client.get("/api/autoevaluaciones/5/estructura")
    assert seen[0].headers["authorization"] == "Bearer stored"


def test_bodies_are_passed_through():
    def handler(request):
        return httpx.Response(201, json={"id_autoevaluacion": 9})

    client, _, seen = proxied(handler)
    response = client.post("/api/autoevaluaciones", json={"id_bodega": 3})
    assert response.status_code == 201
    assert response.json() == {"id_autoevaluacion": 9}
    assert json.loads(seen[0].content) == {"id_bodega": 3}

    client.put("/api/autoevaluaciones/9/segmento", json={"id_segmento": 2})
    assert seen[1].method == "PUT"
    assert json.loads(seen[1].content) == {"id_segmento": 2}


def test_non_json_backend_answers_become_messages():
    def handler(request):
        return httpx.Response(500, text="Internal explosion")

    client, _, _ = proxied(handler)
    response = client.get("/api/autoevaluaciones/5/resultados")
    assert response.status_code == 500
    assert response.json() == {"message": "Internal explosion"}


def test_no_content_is_relayed():
    def handler(request):
        return httpx.Response(204)

    client, _, _ = proxied(handler)
    response = client.post("/api/autoevaluaciones/5/cancelar")
    assert response.status_code == 204
    assert response.content == b""


def test_unreachable_backend_is_503():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client, _, _ = proxied(handler)
    response = client.get("/api/autoevaluaciones/5/segmentos")
    assert response.status_code == 503
    assert response.json() == {"message": "No se pudo conectar con el servidor backend"}


def test_registration_is_validated_before_forwarding():
    def handler(request):
        return httpx.Response(201, json={"usuario": {"id": 2, "id_bodega": 8}, "token": "new"})

    client, store, seen = proxied(handler)

    bad = {**VALID_REGISTRATION, "cuenta": {"email_login": "x", "password": "123"}}
    response = client.post("/api/registro", json=bad)
    assert response.status_code == 422
    fields = {e["field"] for e in response.json()["errors"]}
    assert fields == {"cuenta.email_login", "cuenta.password"}
    assert seen == []

    response = client.post("/api/registro", json=VALID_REGISTRATION)
    assert response.status_code == 201
    forwarded = json.loads(seen[0].content)
    assert forwarded["bodega"]["cuit"] == "30123456789"
    assert forwarded["cuenta"]["email_login"] == "admin@losandes.com.ar"
    assert store.load(TOKEN_KEY) == "new"


def test_registration_requires_a_json_object():
    client, _, seen = proxied(lambda request: httpx.Response(200))
    response = client.post(
        "/api/registro", content=b"not json", headers={"content-type": "application/json"}
    )
    assert response.status_code == 400
    assert seen == []


def test_location_lookups_come_back_sorted():
    def handler(request):
        if request.url.path.endswith("/provincias"):
            return httpx.Response(
                200,
                json=[
                    {"id_provincia": 2, "nombre": "San Juan"},
                    {"id_provincia": 1, "nombre": "Mendoza"},
                ],
            )
        if request.url.path.endswith("/departamentos"):
            return httpx.Response(
                200,
                json=[
                    {"id_departamento": 11, "nombre": "Maipú", "id_provincia": 1},
                    {"id_departamento": 10, "nombre": "Godoy Cruz", "id_provincia": 1},
                ],
            )
        return httpx.Response(200, json=[{"id_localidad": 4, "nombre": "Chacras de Coria"}])

    client, _, seen = proxied(handler)

    provinces = client.get("/api/provincias")
    assert provinces.status_code == 200
    assert provinces.json() == [
        {"nombre": "Mendoza", "id_provincia": 1},
        {"nombre": "San Juan", "id_provincia": 2},
    ]

    departments = client.get("/api/departamentos", params={"provincia": 1})
    assert [d["nombre"] for d in departments.json()] == ["Godoy Cruz", "Maipú"]
    assert departments.json()[0]["nombre_provincia"] is None
    assert seen[1].url.params["provincia"] == "1"

    localities = client.get("/api/localidades", params={"departamento": 10})
    assert localities.json() == [
        {"nombre": "Chacras de Coria", "id_localidad": 4, "id_departamento": None}
    ]
    assert str(seen[2].url) == "http://backend.test/api/v1/localidades?departamento=10"


def test_location_lookups_need_their_parent_id():
    client, _, seen = proxied(lambda request: httpx.Response(200, json=[]))
    assert client.get("/api/departamentos").status_code == 422
    assert client.get("/api/localidades", params={"departamento": "x"}).status_code == 422
    assert seen == []


def test_location_lookup_backend_error_keeps_its_status():
    def handler(request):
        return httpx.Response(404, json={"message": "Provincia no encontrada"})

    client, _, _ = proxied(handler)
    response = client.get("/api/departamentos", params={"provincia": 99})
    assert response.status_code == 404
    assert response.json()["message"] == "Provincia no encontrada"
