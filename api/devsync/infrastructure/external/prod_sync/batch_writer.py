"""
Escritura por lotes en la base destino.

- El primer chunk de cada writer es de 1 fila: si el esquema o una constraint
  estan mal, el error aparece con una fila concreta y no con miles.
- El tamaño de chunk respeta el limite de parametros del dialecto.
- Cada chunk va en su propia transaccion; una falla no revierte los chunks
  ya confirmados (la re-ejecucion es idempotente).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

from loguru import logger
from sqlalchemy import Table
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from devsync.shared.exceptions.sync import (
    SyncCancelledException,
    SyncConfigurationException,
    SyncWriteException,
)

from .types import ConflictPolicy

# Maximo de parametros enlazados por sentencia
MAX_BIND_PARAMS = {
    "sqlite": 999,
    "postgresql": 65535,
}


def dialect_insert(engine: AsyncEngine, table: Table):
    name = engine.dialect.name
    if name == "postgresql":
        return pg_insert(table)
    if name == "sqlite":
        return sqlite_insert(table)
    raise SyncConfigurationException(f"Dialecto destino no soportado: {name}")


@dataclass(frozen=True)
class TargetTable:
    """
    Descripcion tipada de una tabla destino.

    columns: columnas que se escriben (en orden)
    conflict_keys: columnas del indice unico usado para IGNORE/REPLACE
    """

    table: Table
    columns: tuple[str, ...]
    conflict_keys: tuple[str, ...]

    @classmethod
    def for_model(cls, model, *, exclude: Sequence[str] = ("id",), conflict_keys: Optional[Sequence[str]] = None):
        """conflict_keys=() deja la tabla fuera del BatchWriter (solo construccion de filas)."""
        table: Table = model.__table__
        columns = tuple(c.name for c in table.columns if c.name not in exclude)
        keys = tuple(conflict_keys) if conflict_keys is not None else tuple(c.name for c in table.primary_key.columns)
        missing = [k for k in keys if k not in columns]
        if missing:
            raise ValueError(f"{table.name}: llaves de conflicto fuera de las columnas escritas: {missing}")
        return cls(table=table, columns=columns, conflict_keys=keys)

    @property
    def name(self) -> str:
        return self.table.name

    def row_from(self, source_row: Mapping[str, Any], **overrides: Any) -> dict[str, Any]:
        """
        Construye la fila destino: toma las columnas de la fila de origen y
        aplica los valores traducidos. Columnas ajenas a la tabla se ignoran.
        """
        unknown = set(overrides) - set(self.columns)
        if unknown:
            raise KeyError(f"{self.name}: columnas desconocidas {sorted(unknown)}")
        return {c: overrides[c] if c in overrides else source_row.get(c) for c in self.columns}

    def chunk_limit(self, dialect_name: str, configured: int) -> int:
        max_params = MAX_BIND_PARAMS.get(dialect_name, 999)
        return max(1, min(configured, max_params // len(self.columns)))


class BatchWriter:
    def __init__(
        self,
        target: AsyncEngine,
        *,
        chunk_size: int = 250,
        chunk_delay_s: float = 0.0,
        cancel: Optional[asyncio.Event] = None,
    ) -> None:
        self.target = target
        self.chunk_size = chunk_size
        self.chunk_delay_s = chunk_delay_s
        self.cancel = cancel
        self._probed = False

    def _statement(self, target_table: TargetTable, chunk: list[dict[str, Any]], policy: ConflictPolicy):
        stmt = dialect_insert(self.target, target_table.table).values(chunk)
        keys = list(target_table.conflict_keys)
        updatable = [c for c in target_table.columns if c not in target_table.conflict_keys]

        if policy == ConflictPolicy.IGNORE or not updatable:
            return stmt.on_conflict_do_nothing(index_elements=keys)
        return stmt.on_conflict_do_update(
            index_elements=keys,
            set_={c: stmt.excluded[c] for c in updatable},
        )

    async def _write_chunk(self, target_table: TargetTable, chunk: list[dict[str, Any]], policy: ConflictPolicy, probe: bool) -> None:
        try:
            async with self.target.begin() as conn:
                await conn.execute(self._statement(target_table, chunk, policy))
        except SQLAlchemyError as e:
            logger.error(f"[sync] Fallo escribiendo en {target_table.name} ({len(chunk)} filas): {e}")
            raise SyncWriteException(target_table.name, e, probe=probe) from e

    async def write_batch(
        self,
        target_table: TargetTable,
        rows: Sequence[Mapping[str, Any]],
        policy: ConflictPolicy,
    ) -> int:
        """
        Escribe filas con la politica de conflicto indicada.

        Returns:
            int: filas enviadas a la base (incluye las ignoradas por conflicto)
        """
        if not rows:
            return 0
        if not target_table.conflict_keys:
            raise ValueError(f"{target_table.name}: sin llaves de conflicto, no se puede escribir por lotes")

        limit = target_table.chunk_limit(self.target.dialect.name, self.chunk_size)
        prepared = [{c: row.get(c) for c in target_table.columns} for row in rows]

        written = 0
        index = 0
        while index < len(prepared):
            if self.cancel is not None and self.cancel.is_set():
                raise SyncCancelledException()
            if written and self.chunk_delay_s > 0:
                await asyncio.sleep(self.chunk_delay_s)

            probe = not self._probed
            size = 1 if probe else limit
            chunk = prepared[index:index + size]
            await self._write_chunk(target_table, chunk, policy, probe)
            self._probed = True

            index += len(chunk)
            written += len(chunk)

        return written
