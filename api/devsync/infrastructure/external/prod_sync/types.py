"""
Tipos del pipeline produccion -> desarrollo.

Se mantienen libres de I/O. El contexto de sincronizacion es inmutable: cada
etapa recibe una instantanea y devuelve un ContextDelta; solo el orquestador
aplica deltas y versiona el contexto.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field, fields, replace
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from devsync.shared.exceptions.sync import SyncCancelledException, SyncConfigurationException
from devsync.shared.utils.datetime_utils import DateTimeUtils

if TYPE_CHECKING:
    from .identity import EntityIdMap, ExternalIdentityMapper
    from .progress import StageTracker
    from .source_store import SourceStore


class StageStatus(str, Enum):
    """Estados de una etapa: pending -> running -> completed | error."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


class ConflictPolicy(str, Enum):
    """Que hacer cuando la fila ya existe en destino."""
    # Backfills historicos: nunca sobrescribir
    IGNORE = "ignore"
    # Solapamiento de cursor y tablas de reemplazo completo
    REPLACE = "replace"


_LOOKBACK_RE = re.compile(r"^\s*(\d+)\s*([dh]?)\s*$", re.IGNORECASE)
AUTOMATIC_LOOKBACK = "auto"


@dataclass(frozen=True)
class LookbackWindow:
    """
    Ventana de lookback del sync.

    - automatic=True: retomar desde la ultima posicion registrada (sync_status)
    - delta: ventana fija hacia atras desde "ahora"
    """

    automatic: bool = False
    delta: Optional[timedelta] = None

    @classmethod
    def parse(cls, raw: Optional[str]) -> "LookbackWindow":
        """
        Acepta 'auto', '<n>d', '<n>h' o '<n>' (dias).

        Raises:
            SyncConfigurationException: si el valor no es valido
        """
        value = (raw or "").strip().lower()
        if value in (AUTOMATIC_LOOKBACK, "automatic"):
            return cls(automatic=True)

        match = _LOOKBACK_RE.match(value)
        if not match:
            raise SyncConfigurationException(
                f"Lookback invalido: '{raw}'. Usa 'auto', '<n>d' o '<n>h'",
                field="lookback",
            )
        amount = int(match.group(1))
        if amount <= 0:
            raise SyncConfigurationException("El lookback debe ser mayor que cero", field="lookback")
        unit = match.group(2) or "d"
        try:
            delta = timedelta(hours=amount) if unit == "h" else timedelta(days=amount)
        except (OverflowError, ValueError):
            raise SyncConfigurationException(f"Lookback fuera de rango: '{raw}'", field="lookback") from None
        return cls(automatic=False, delta=delta)

    def describe(self) -> str:
        if self.automatic:
            return "automatico"
        hours = int(self.delta.total_seconds() // 3600)
        if hours % 24 == 0:
            return f"{hours // 24} dias"
        return f"{hours} horas"


@dataclass(frozen=True)
class SyncOptions:
    """Parametros de una corrida (tamaños de pagina/chunk, fuente, reloj)."""

    source_factory: Callable[[], "SourceStore"]
    page_size: int = 1000
    chunk_size: int = 250
    chunk_delay_s: float = 0.0
    clock: Callable[[], int] = DateTimeUtils.now_ms


@dataclass(frozen=True)
class ContextDelta:
    """
    Cambios parciales que devuelve una etapa.

    Los campos en None no se aplican. `synced` se suma al total acumulado.
    """

    source: Optional["SourceStore"] = None
    identities: Optional["ExternalIdentityMapper"] = None
    systems: Optional["EntityIdMap"] = None
    points: Optional["EntityIdMap"] = None
    local_latest_ms: Optional[int] = None
    sync_from_ms: Optional[int] = None
    record_counts: Optional[Mapping[str, int]] = None
    synced: Optional[int] = None


@dataclass(frozen=True)
class SyncContext:
    """
    Instantanea del estado de una corrida.

    Una sola instancia "viva" por corrida, propiedad del orquestador; no se
    persiste (la posicion de sync vive en la tabla sync_status).
    """

    target: AsyncEngine
    cancel: asyncio.Event
    tracker: "StageTracker"
    lookback: LookbackWindow
    options: SyncOptions
    source: Optional["SourceStore"] = None
    identities: Optional["ExternalIdentityMapper"] = None
    systems: Optional["EntityIdMap"] = None
    points: Optional["EntityIdMap"] = None
    local_latest_ms: Optional[int] = None
    sync_from_ms: Optional[int] = None
    record_counts: Mapping[str, int] = field(default_factory=dict)
    synced_total: int = 0
    version: int = 0

    @property
    def total_to_sync(self) -> int:
        return sum(self.record_counts.values())

    def apply(self, delta: ContextDelta) -> "SyncContext":
        """Retorna un nuevo contexto con el delta aplicado (version + 1)."""
        changes: dict[str, Any] = {}
        for f in fields(delta):
            value = getattr(delta, f.name)
            if value is None:
                continue
            if f.name == "synced":
                changes["synced_total"] = self.synced_total + value
            elif f.name == "record_counts":
                changes["record_counts"] = dict(value)
            else:
                changes[f.name] = value
        return replace(self, version=self.version + 1, **changes)

    def check_cancelled(self) -> None:
        if self.cancel.is_set():
            raise SyncCancelledException()


@dataclass(frozen=True)
class StageResult:
    """Resultado de una etapa: detalle legible + delta opcional."""

    detail: str
    delta: Optional[ContextDelta] = None


StageExecutor = Callable[[SyncContext], Awaitable[StageResult]]


@dataclass(frozen=True)
class StageDefinition:
    """
    Etapa del pipeline.

    modifies_metadata:
        True para etapas de entidades/usuarios (se ejecutan aunque no haya
        datos de series temporales nuevos); False para transferencias.
    estimated_weight:
        costo relativo estimado, usado para repartir la barra de progreso.
    counts_records:
        marca la etapa que calcula los conteos por tabla (habilita el
        corte temprano cuando no hay nada que sincronizar).
    """

    id: str
    name: str
    execute: StageExecutor
    modifies_metadata: bool = False
    estimated_weight: int = 100
    counts_records: bool = False
