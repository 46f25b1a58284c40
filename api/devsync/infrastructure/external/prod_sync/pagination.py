"""
Paginacion por cursor sobre la base de produccion.

Dos modos:

- TimestampCursor: `ts >= cursor ORDER BY ts, <desempate> OFFSET skip`.
  El cursor nunca retrocede. Cuando una pagina completa comparte el mismo
  timestamp, `skip` acumula las filas ya vistas en ese valor para no repetir
  la misma pagina indefinidamente.
- CompositeCursor: condicion lexicografica estricta sobre N columnas
  (p. ej. (day, system_id, point_id)); no necesita skip.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional, Sequence

from sqlalchemy import and_, or_
from sqlalchemy.sql import ColumnElement, Select

from devsync.shared.exceptions.sync import SyncCancelledException

from .source_store import SourceStore


@dataclass
class TimestampCursor:
    """
    Estado del cursor por timestamp.

    unit: incremento minimo en la unidad de la columna; se usa para avanzar
    cuando la pagina parcial quedo en un solo valor.
    """

    column: ColumnElement
    value: int
    tiebreak: tuple = ()
    unit: int = 1
    skip: int = 0

    def condition(self) -> ColumnElement:
        return self.column >= self.value

    def order_by(self) -> tuple:
        return (self.column, *self.tiebreak)

    @property
    def offset(self) -> int:
        return self.skip

    def advance(self, rows: Sequence[dict[str, Any]], page_size: int) -> None:
        if not rows:
            return
        key = self.column.name
        first, last = rows[0][key], rows[-1][key]
        full_page = len(rows) >= page_size

        if first == last and not full_page:
            # Ultima pagina de un valor ya agotado
            self.value = last + self.unit
            self.skip = 0
        elif first == last:
            # Pagina completa en un solo valor: seguir desplazando dentro de el
            self.skip = self.skip + len(rows) if last == self.value else len(rows)
            self.value = last
        else:
            # Se re-leen las filas de `last` (upsert idempotente en destino)
            self.value = last
            self.skip = 0


@dataclass
class CompositeCursor:
    """Cursor lexicografico (k1, k2, ..., kn) > ultimo visto."""

    columns: tuple
    last: Optional[tuple] = None

    def condition(self) -> Optional[ColumnElement]:
        if self.last is None:
            return None
        # (a > x) OR (a = x AND b > y) OR (a = x AND b = y AND c > z) ...
        clauses = []
        for i, col in enumerate(self.columns):
            equal_prefix = [self.columns[j] == self.last[j] for j in range(i)]
            clauses.append(and_(*equal_prefix, col > self.last[i]))
        return or_(*clauses)

    def order_by(self) -> tuple:
        return tuple(self.columns)

    @property
    def offset(self) -> int:
        return 0

    def advance(self, rows: Sequence[dict[str, Any]], page_size: int) -> None:
        if not rows:
            return
        tail = rows[-1]
        self.last = tuple(tail[col.name] for col in self.columns)


Cursor = TimestampCursor | CompositeCursor


async def fetch_next_batch(
    source: SourceStore,
    base_query: Select,
    cursor: Cursor,
    page_size: int,
) -> list[dict[str, Any]]:
    """
    Lee la siguiente pagina y avanza el cursor.

    El orden del cursor reemplaza cualquier ORDER BY de la consulta base.

    Returns:
        list: filas (vacia cuando no hay mas datos)
    """
    stmt = base_query
    condition = cursor.condition()
    if condition is not None:
        stmt = stmt.where(condition)
    stmt = stmt.order_by(None).order_by(*cursor.order_by()).limit(page_size)
    if cursor.offset:
        stmt = stmt.offset(cursor.offset)

    what = base_query.get_final_froms()[0].name if base_query.get_final_froms() else "query"
    rows = await source.fetch_all(stmt, what=what)
    cursor.advance(rows, page_size)
    return rows


class CursorPaginator:
    def __init__(
        self,
        source: SourceStore,
        base_query: Select,
        cursor: Cursor,
        page_size: int,
        cancel: Optional[asyncio.Event] = None,
    ) -> None:
        if page_size <= 0:
            raise ValueError("page_size debe ser > 0")
        self.source = source
        self.base_query = base_query
        self.cursor = cursor
        self.page_size = page_size
        self.cancel = cancel

    async def fetch_next_batch(self) -> list[dict[str, Any]]:
        return await fetch_next_batch(self.source, self.base_query, self.cursor, self.page_size)

    async def iter_batches(self) -> AsyncIterator[list[dict[str, Any]]]:
        """Itera paginas hasta agotar la fuente; revisa cancelacion antes de cada lectura."""
        while True:
            if self.cancel is not None and self.cancel.is_set():
                raise SyncCancelledException()
            batch = await self.fetch_next_batch()
            if not batch:
                return
            yield batch
