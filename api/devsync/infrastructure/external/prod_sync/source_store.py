"""
Acceso de solo lectura a la base de produccion.

- Una unica conexion por corrida, abierta por la etapa de preparacion y
  reutilizada por todas las etapas.
- Solo acepta sentencias SELECT; en PostgreSQL ademas abre las transacciones
  en modo READ ONLY.
- Cada lectura termina su transaccion (rollback) para no retener snapshots.
"""

from __future__ import annotations

from typing import Any, Optional

from loguru import logger
from sqlalchemy import Select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from devsync.core.config import normalize_async_dsn
from devsync.shared.exceptions.sync import SourceReadException, SyncConfigurationException


class SourceStore:
    def __init__(self, engine: AsyncEngine, *, owns_engine: bool = True) -> None:
        self._engine = engine
        self._owns_engine = owns_engine
        self._conn: Optional[AsyncConnection] = None
        self._closed = False

    @classmethod
    def from_url(cls, url: str) -> "SourceStore":
        if not url:
            raise SyncConfigurationException(
                "Credenciales de la base de produccion no configuradas",
                field="SOURCE_DATABASE_URL",
            )
        engine = create_async_engine(normalize_async_dsn(url), pool_size=1, max_overflow=0) \
            if url.startswith(("postgres", "postgresql")) \
            else create_async_engine(normalize_async_dsn(url))
        return cls(engine)

    @property
    def dialect_name(self) -> str:
        return self._engine.dialect.name

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> None:
        """
        Abre la conexion y valida conectividad con SELECT 1.
        """
        if self._conn is not None:
            return
        try:
            conn = await self._engine.connect()
            if self.dialect_name == "postgresql":
                conn = await conn.execution_options(postgresql_readonly=True)
            self._conn = conn
            await conn.execute(text("SELECT 1"))
            await conn.rollback()
        except SQLAlchemyError as e:
            raise SourceReadException("connection", e) from e
        logger.info(f"[sync] Conectado a produccion ({self.dialect_name}, solo lectura)")

    def _require_select(self, stmt: Any) -> None:
        if not isinstance(stmt, Select):
            # La API solo expone lecturas: cualquier otra sentencia es un bug
            raise TypeError(f"SourceStore solo ejecuta SELECT, recibio {type(stmt).__name__}")
        if self._conn is None or self._closed:
            raise SourceReadException("connection", RuntimeError("la conexion no esta abierta"))

    async def fetch_all(self, stmt: Select, *, what: str) -> list[dict[str, Any]]:
        """Ejecuta un SELECT y retorna filas como dicts."""
        self._require_select(stmt)
        try:
            result = await self._conn.execute(stmt)
            rows = [dict(r) for r in result.mappings().all()]
        except SQLAlchemyError as e:
            raise SourceReadException(what, e) from e
        finally:
            await self._conn.rollback()
        return rows

    async def scalar(self, stmt: Select, *, what: str) -> Any:
        self._require_select(stmt)
        try:
            result = await self._conn.execute(stmt)
            return result.scalar()
        except SQLAlchemyError as e:
            raise SourceReadException(what, e) from e
        finally:
            await self._conn.rollback()

    async def close(self) -> None:
        """Cierra la conexion (idempotente)."""
        if self._closed:
            return
        self._closed = True
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
        if self._owns_engine:
            await self._engine.dispose()
        logger.info("[sync] Conexion a produccion cerrada")
