"""
Tests del endpoint POST /api/v1/admin/sync-database.

Verifica el orden de las barreras (produccion -> 404 antes que auth),
la validacion previa al stream y el formato NDJSON de la respuesta.
"""
from __future__ import annotations

import json
from datetime import timedelta
from unittest.mock import AsyncMock, Mock

import pytest
from httpx import ASGITransport, AsyncClient

from conftest import seed_source, seed_target
from devsync.api.v1.dependencies.use_case_deps import get_database_sync_use_cases
from devsync.application.use_cases.database_sync_use_cases import DatabaseSyncUseCases
from devsync.core.config import settings
from devsync.core.events import lifespan
from devsync.core.security import security_service
from devsync.infrastructure.external.prod_sync import SourceStore
from devsync.shared.exceptions.sync import SyncAlreadyRunningException, SyncConfigurationException
from devsync.shared.utils.datetime_utils import DateTimeUtils
from main import create_application

URL = "/api/v1/admin/sync-database"


def _token(role: str = "admin", **kwargs) -> str:
    return security_service.create_access_token({"sub": "dev@example.com", "role": role}, **kwargs)


def _auth(role: str = "admin") -> dict:
    return {"Authorization": f"Bearer {_token(role)}"}


async def _fake_lines(lookback):
    yield '{"type":"stages-init","stages":[]}\n'
    yield '{"type":"complete"}\n'


@pytest.fixture
def dev_settings(monkeypatch):
    monkeypatch.setattr(settings, "ENVIRONMENT", "development")
    monkeypatch.setattr(settings, "SOURCE_DATABASE_URL", "postgresql://reader@prod-replica.internal/app")
    monkeypatch.setattr(DatabaseSyncUseCases, "_active", None)
    return settings


@pytest.fixture
def use_cases() -> Mock:
    fake = Mock(spec=DatabaseSyncUseCases)
    fake.start = AsyncMock(side_effect=_fake_lines)
    return fake


@pytest.fixture
def app(use_cases):
    application = create_application()
    application.dependency_overrides[get_database_sync_use_cases] = lambda: use_cases
    return application


def _client(app, base_url: str = "http://testserver") -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url=base_url)


class TestSafetyGate:
    """La barrera responde 404 sin importar la autenticacion."""

    @pytest.mark.asyncio
    async def test_production_environment_returns_404(self, app, use_cases, monkeypatch) -> None:
        monkeypatch.setattr(settings, "ENVIRONMENT", "production")

        async with _client(app) as client:
            response = await client.post(URL, headers=_auth())

        assert response.status_code == 404
        assert response.json() == {"error": "NOT_FOUND", "message": "Not found", "details": {}}
        use_cases.start.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_production_host_returns_404_before_auth(self, app, dev_settings) -> None:
        async with _client(app, base_url="http://liveone.energy") as client:
            response = await client.post(URL)

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_target_equal_to_source_returns_404(self, app, dev_settings, monkeypatch) -> None:
        monkeypatch.setattr(settings, "DATABASE_URL", "postgresql://reader@prod-replica.internal/app")

        async with _client(app) as client:
            response = await client.post(URL, headers=_auth())

        assert response.status_code == 404


class TestAdminAuth:
    """Token Bearer con rol admin."""

    @pytest.mark.asyncio
    async def test_missing_token_returns_401(self, app, dev_settings) -> None:
        async with _client(app) as client:
            response = await client.post(URL)

        assert response.status_code == 401
        assert response.json()["error"] == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_invalid_token_returns_401(self, app, dev_settings) -> None:
        async with _client(app) as client:
            response = await client.post(URL, headers={"Authorization": "Bearer not-a-jwt"})

        assert response.json()["error"] == "INVALID_TOKEN"

    @pytest.mark.asyncio
    async def test_expired_token_returns_401(self, app, dev_settings) -> None:
        token = _token(expires_delta=timedelta(seconds=-5))
        async with _client(app) as client:
            response = await client.post(URL, headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["error"] == "TOKEN_EXPIRED"

    @pytest.mark.asyncio
    async def test_non_admin_returns_403(self, app, dev_settings, use_cases) -> None:
        async with _client(app) as client:
            response = await client.post(URL, headers=_auth(role="viewer"))

        assert response.status_code == 403
        use_cases.start.assert_not_awaited()


class TestPreflight:
    """Errores de configuracion antes de abrir el stream."""

    @pytest.mark.asyncio
    async def test_invalid_lookback_returns_400(self, app, dev_settings, use_cases) -> None:
        async with _client(app) as client:
            response = await client.post(URL, params={"lookback": "semana"}, headers=_auth())

        assert response.status_code == 400
        assert response.json()["details"] == {"field": "lookback"}
        use_cases.start.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_configuration_error_returns_400(self, app, dev_settings, use_cases) -> None:
        use_cases.start.side_effect = SyncConfigurationException(
            "Credenciales de la base de produccion no configuradas (SOURCE_DATABASE_URL)",
            field="SOURCE_DATABASE_URL",
        )

        async with _client(app) as client:
            response = await client.post(URL, headers=_auth())

        assert response.status_code == 400
        assert "SOURCE_DATABASE_URL" in response.json()["message"]

    @pytest.mark.asyncio
    async def test_concurrent_run_returns_409(self, app, dev_settings, use_cases) -> None:
        use_cases.start.side_effect = SyncAlreadyRunningException()

        async with _client(app) as client:
            response = await client.post(URL, headers=_auth())

        assert response.status_code == 409


class TestStream:
    @pytest.mark.asyncio
    async def test_streams_ndjson_lines(self, app, dev_settings, use_cases) -> None:
        async with _client(app) as client:
            response = await client.post(URL, params={"lookback": "12h"}, headers=_auth())

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-ndjson")
        events = [json.loads(line) for line in response.text.splitlines()]
        assert [e["type"] for e in events] == ["stages-init", "complete"]

        [window] = use_cases.start.call_args.args
        assert window.describe() == "12 horas"

    @pytest.mark.asyncio
    async def test_full_run_over_http(self, dev_settings, source_engine, target_engine) -> None:
        await seed_source(source_engine, now_ms=DateTimeUtils.now_ms())
        await seed_target(target_engine)
        application = create_application()
        application.dependency_overrides[get_database_sync_use_cases] = lambda: DatabaseSyncUseCases(
            target_engine, source_factory=lambda: SourceStore(source_engine, owns_engine=False)
        )

        async with _client(application) as client:
            response = await client.post(URL, params={"lookback": "7d"}, headers=_auth())

        events = [json.loads(line) for line in response.text.splitlines()]
        types = [e["type"] for e in events]
        assert types[0] == "stages-init"
        assert "mappings" in types
        assert types[-1] == "complete"
        assert events[-2]["progress"] == 100


class TestLifespan:
    @pytest.mark.asyncio
    async def test_lifespan_initializes_and_closes_database(self, monkeypatch, tmp_path) -> None:
        init_db = AsyncMock()
        close_db = AsyncMock()
        monkeypatch.setattr("devsync.core.events.init_db", init_db)
        monkeypatch.setattr("devsync.core.events.close_db", close_db)
        monkeypatch.setattr(settings, "LOG_FILE", str(tmp_path / "app.log"))
        application = create_application()

        async with application.router.lifespan_context(application):
            init_db.assert_awaited_once()
            close_db.assert_not_awaited()

        close_db.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_shutdown_runs_even_if_app_fails(self, monkeypatch, tmp_path) -> None:
        close_db = AsyncMock()
        monkeypatch.setattr("devsync.core.events.init_db", AsyncMock())
        monkeypatch.setattr("devsync.core.events.close_db", close_db)
        monkeypatch.setattr(settings, "LOG_FILE", str(tmp_path / "app.log"))

        with pytest.raises(RuntimeError):
            async with lifespan(create_application()):
                raise RuntimeError("fallo durante la ejecucion")

        close_db.assert_awaited_once()
