"""
Configuración de fixtures para pytest.

Ambas bases (produccion y local) se simulan con SQLite en memoria; StaticPool
mantiene una sola conexion para que todas las sesiones vean los mismos datos.
"""
from __future__ import annotations

from typing import Any, AsyncGenerator, Dict, List

import pytest
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from devsync.infrastructure.database.models import (
    PointInfoModel,
    PointReadingAgg1dModel,
    PointReadingAgg5mModel,
    PointReadingModel,
    ReadingModel,
    SystemModel,
    UserIdMappingModel,
    UserSystemModel,
)
from devsync.infrastructure.database.session import Base
from devsync.shared.utils.datetime_utils import DateTimeUtils


# URL de base de datos de prueba
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Reloj fijo para los tests del pipeline
NOW_MS = DateTimeUtils.day_to_ms("2025-12-16") + 12 * 3600 * 1000
HOUR_MS = 3600 * 1000

PROD_ALICE = "user_2prodAliceAAAAAAAAAAAAAAAA"
DEV_ALICE = "user_2devAliceBBBBBBBBBBBBBBBBB"
PROD_MALLORY = "user_2prodMalloryCCCCCCCCCCCCC"
PROD_BOB = "user_2prodBobDDDDDDDDDDDDDDDDDD"


async def _memory_engine() -> AsyncEngine:
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine


@pytest.fixture(scope="function")
async def source_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Base "produccion" (origen del sync)."""
    engine = await _memory_engine()
    yield engine
    await engine.dispose()


@pytest.fixture(scope="function")
async def target_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Base local (destino del sync)."""
    engine = await _memory_engine()
    yield engine
    await engine.dispose()


class ListEmitter:
    """Emisor que guarda los eventos serializados en memoria."""

    def __init__(self) -> None:
        self.events: List[Dict[str, Any]] = []

    def send(self, event) -> None:
        self.events.append(event.model_dump(mode="json", by_alias=True, exclude_none=True))

    def of_type(self, event_type: str) -> List[Dict[str, Any]]:
        return [e for e in self.events if e["type"] == event_type]

    def progress_values(self) -> List[int]:
        return [e["progress"] for e in self.of_type("progress")]

    def final_stage_states(self) -> Dict[str, Dict[str, Any]]:
        states: Dict[str, Dict[str, Any]] = {}
        for event in self.of_type("stages-init"):
            states.update({s["id"]: s for s in event["stages"]})
        for event in self.of_type("stage-update"):
            states[event["stage"]["id"]] = event["stage"]
        return states


@pytest.fixture
def emitter() -> ListEmitter:
    return ListEmitter()


async def insert_rows(engine: AsyncEngine, model, rows: List[Dict[str, Any]]) -> None:
    if not rows:
        return
    async with engine.begin() as conn:
        await conn.execute(insert(model.__table__), rows)


async def seed_source(engine: AsyncEngine, now_ms: int = NOW_MS) -> None:
    """
    Produccion:
      - sistema 1 (Alice) ya existe en la base local por llave natural
      - sistema 2 (Mallory) no tiene mapeo de usuario
      - sistema 3 (Alice) es nuevo
    """
    await insert_rows(engine, SystemModel, [
        {"id": 1, "owner_user_id": PROD_ALICE, "vendor_type": "selectronic", "vendor_site_id": "site-1",
         "status": "active", "display_name": "Casa", "model": "SP-PRO", "serial": "S1",
         "timezone_offset_min": 600, "created_at": 1000, "updated_at": 2000},
        {"id": 2, "owner_user_id": PROD_MALLORY, "vendor_type": "enphase", "vendor_site_id": "site-2",
         "status": "active", "display_name": "Ajeno", "model": None, "serial": None,
         "timezone_offset_min": 600, "created_at": 1000, "updated_at": 2000},
        {"id": 3, "owner_user_id": PROD_ALICE, "vendor_type": "fronius", "vendor_site_id": "site-3",
         "status": "active", "display_name": "Galpon", "model": "Gen24", "serial": "S3",
         "timezone_offset_min": 600, "created_at": 1000, "updated_at": 2000},
    ])

    def point(system_id, point_id, origin, metric="power"):
        return {"system_id": system_id, "id": point_id, "origin_id": origin, "origin_sub_id": None,
                "default_name": origin, "display_name": origin.upper(), "subsystem": None,
                "metric_type": metric, "metric_unit": "W", "active": True, "created_at": 1000}

    await insert_rows(engine, PointInfoModel, [
        point(1, 1, "pv"),
        point(1, 2, "load"),
        point(2, 1, "pv"),
        point(3, 1, "grid"),
    ])

    base = now_ms - 2 * HOUR_MS
    readings = []
    for i in range(5):
        ts = base + i * 5 * 60 * 1000
        for system_id, point_id in ((1, 1), (1, 2), (2, 1), (3, 1)):
            readings.append({"system_id": system_id, "point_id": point_id, "measurement_time": ts,
                             "received_time": ts + 500, "value": float(i * 10 + point_id),
                             "error": None, "data_quality": "good"})
    # Fuera de la ventana de 7 dias
    readings.append({"system_id": 1, "point_id": 1, "measurement_time": now_ms - 30 * 24 * HOUR_MS,
                     "received_time": now_ms - 30 * 24 * HOUR_MS, "value": 1.0,
                     "error": None, "data_quality": "good"})
    await insert_rows(engine, PointReadingModel, readings)

    await insert_rows(engine, ReadingModel, [
        {"system_id": system_id, "inverter_time": (base // 1000) + i * 60, "received_time": (base // 1000) + i * 60,
         "solar_w": 1000 + i, "load_w": 500, "battery_w": -200, "grid_w": 0, "battery_soc": 80.5,
         "fault_code": None}
        for system_id in (1, 2)
        for i in range(3)
    ])

    await insert_rows(engine, PointReadingAgg5mModel, [
        {"system_id": system_id, "point_id": point_id, "interval_end": base + i * 5 * 60 * 1000,
         "avg": 1.5, "min": 1.0, "max": 2.0, "last": 1.8, "sample_count": 5, "error_count": 0,
         "created_at": base, "updated_at": base}
        for system_id, point_id in ((1, 1), (2, 1), (3, 1))
        for i in range(3)
    ])

    today = DateTimeUtils.ms_to_day(now_ms)
    yesterday = DateTimeUtils.ms_to_day(now_ms - 24 * HOUR_MS)
    await insert_rows(engine, PointReadingAgg1dModel, [
        {"system_id": system_id, "point_id": point_id, "day": day,
         "avg": 3.0, "min": 0.0, "max": 9.0, "last": 4.0, "sample_count": 288, "error_count": 1,
         "created_at": base, "updated_at": base}
        for day in (yesterday, today)
        for system_id, point_id in ((1, 1), (1, 2), (2, 1))
    ])

    await insert_rows(engine, UserSystemModel, [
        {"id": 1, "user_id": PROD_ALICE, "system_id": 1, "role": "owner", "created_at": 1000, "updated_at": 1000},
        {"id": 2, "user_id": PROD_MALLORY, "system_id": 2, "role": "owner", "created_at": 1000, "updated_at": 1000},
        {"id": 3, "user_id": PROD_BOB, "system_id": 1, "role": "viewer", "created_at": 1000, "updated_at": 1000},
        {"id": 4, "user_id": PROD_ALICE, "system_id": 3, "role": "owner", "created_at": 1000, "updated_at": 1000},
    ])


async def seed_target(engine: AsyncEngine) -> None:
    """
    Base local: el sistema de Alice ya existe con otro id (10) y su punto
    'pv' con id local 5. Solo Alice tiene mapeo de usuario.
    """
    await insert_rows(engine, UserIdMappingModel, [
        {"username": "alice", "prod_user_id": PROD_ALICE, "dev_user_id": DEV_ALICE,
         "created_at": 0, "updated_at": 0},
    ])
    await insert_rows(engine, SystemModel, [
        {"id": 10, "owner_user_id": DEV_ALICE, "vendor_type": "selectronic", "vendor_site_id": "site-1",
         "status": "active", "display_name": "Nombre viejo", "model": None, "serial": None,
         "timezone_offset_min": 600, "created_at": 1, "updated_at": 1},
    ])
    await insert_rows(engine, PointInfoModel, [
        {"system_id": 10, "id": 5, "origin_id": "pv", "origin_sub_id": None, "default_name": "pv",
         "display_name": "Solar local", "subsystem": None, "metric_type": "power", "metric_unit": "W",
         "active": True, "created_at": 1},
    ])


@pytest.fixture
async def seeded(source_engine: AsyncEngine, target_engine: AsyncEngine):
    await seed_source(source_engine)
    await seed_target(target_engine)
    return source_engine, target_engine
