"""
Posicion persistida del sync (tabla sync_status en la base destino).

Una fila por tabla transferida con el ultimo timestamp (ms) o el ultimo dia
('YYYY-MM-DD') copiado. Las corridas automaticas arrancan desde el minimo.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine

from devsync.infrastructure.database.models import SyncStatusModel
from devsync.shared.exceptions.sync import SyncConfigurationException
from devsync.shared.utils.datetime_utils import DateTimeUtils

from .batch_writer import dialect_insert
from .types import LookbackWindow


@dataclass(frozen=True)
class SyncPosition:
    table_name: str
    last_entry_ms: Optional[int] = None
    last_entry_date: Optional[str] = None

    def as_ms(self) -> Optional[int]:
        candidates = []
        if self.last_entry_ms is not None:
            candidates.append(self.last_entry_ms)
        if self.last_entry_date:
            candidates.append(DateTimeUtils.day_to_ms(self.last_entry_date))
        return min(candidates) if candidates else None


async def load_sync_positions(target: AsyncEngine) -> list[SyncPosition]:
    async with target.connect() as conn:
        result = await conn.execute(
            select(
                SyncStatusModel.table_name,
                SyncStatusModel.last_entry_ms,
                SyncStatusModel.last_entry_date,
            ).order_by(SyncStatusModel.table_name)
        )
        return [SyncPosition(r.table_name, r.last_entry_ms, r.last_entry_date) for r in result.all()]


async def record_sync_position(
    target: AsyncEngine,
    table_name: str,
    *,
    last_entry_ms: Optional[int] = None,
    last_entry_date: Optional[str] = None,
    now_ms: Optional[int] = None,
) -> None:
    """UPSERT de la posicion de una tabla."""
    values = {
        "table_name": table_name,
        "last_entry_ms": last_entry_ms,
        "last_entry_date": last_entry_date,
        "updated_at": now_ms if now_ms is not None else DateTimeUtils.now_ms(),
    }
    stmt = dialect_insert(target, SyncStatusModel.__table__).values(values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["table_name"],
        set_={
            "last_entry_ms": stmt.excluded.last_entry_ms,
            "last_entry_date": stmt.excluded.last_entry_date,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    async with target.begin() as conn:
        await conn.execute(stmt)
    logger.debug(f"[sync] Posicion de {table_name}: ms={last_entry_ms} dia={last_entry_date}")


async def resolve_sync_from_ms(target: AsyncEngine, lookback: LookbackWindow, now_ms: int) -> int:
    """
    Calcula el inicio del sync (epoch ms).

    Raises:
        SyncConfigurationException: modo automatico sin posiciones registradas
    """
    if not lookback.automatic:
        return now_ms - int(lookback.delta.total_seconds() * 1000)

    positions = [p.as_ms() for p in await load_sync_positions(target)]
    positions = [p for p in positions if p is not None]
    if not positions:
        raise SyncConfigurationException(
            "No hay posiciones de sync registradas; ejecuta primero un sync manual (p. ej. lookback=7d)",
            field="lookback",
        )
    return min(positions)
