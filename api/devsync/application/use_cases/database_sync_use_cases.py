"""
Casos de uso para sincronizar la base de produccion hacia la base local.

Patron de streaming:
- El endpoint llama a `start`, que valida la configuracion y reserva la
  corrida antes de abrir el stream; los errores de configuracion responden 400.
- El pipeline corre en una tarea en background y publica eventos en una cola;
  la respuesta HTTP los consume linea por linea (NDJSON).
- Si el cliente se desconecta, se activa la cancelacion cooperativa.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Callable, Optional, Set

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncEngine

from devsync.core.config import settings
from devsync.infrastructure.external.prod_sync import (
    LookbackWindow,
    QueueEmitter,
    SourceStore,
    SyncOptions,
    run_sync_pipeline,
)
from devsync.infrastructure.external.prod_sync.events import StatusEmitter
from devsync.infrastructure.external.prod_sync.sync_position import load_sync_positions
from devsync.shared.exceptions.sync import SyncAlreadyRunningException, SyncConfigurationException


class DatabaseSyncUseCases:
    """
    Orquestador de corridas de sync.

    Una sola corrida activa por proceso; la tarea se guarda a nivel de clase
    para que no sea recolectada mientras el stream sigue abierto.
    """

    _active: Optional[asyncio.Task] = None
    _tasks: Set[asyncio.Task] = set()

    def __init__(
        self,
        target: AsyncEngine,
        source_factory: Optional[Callable[[], SourceStore]] = None,
    ):
        self.target = target
        self._source_factory = source_factory

    def _build_options(self) -> SyncOptions:
        factory = self._source_factory or (lambda: SourceStore.from_url(settings.SOURCE_DATABASE_URL))
        return SyncOptions(
            source_factory=factory,
            page_size=settings.SYNC_PAGE_SIZE,
            chunk_size=settings.SYNC_CHUNK_SIZE,
            chunk_delay_s=settings.SYNC_CHUNK_DELAY_MS / 1000,
        )

    @classmethod
    def is_running(cls) -> bool:
        return cls._active is not None and not cls._active.done()

    async def preflight(self, lookback: LookbackWindow) -> None:
        """
        Valida lo necesario antes de abrir el stream.

        Raises:
            SyncAlreadyRunningException: ya hay una corrida activa
            SyncConfigurationException: falta la URL de produccion, o modo
                automatico sin posiciones registradas
        """
        if self.is_running():
            raise SyncAlreadyRunningException()

        if self._source_factory is None and not settings.SOURCE_DATABASE_URL:
            raise SyncConfigurationException(
                "Credenciales de la base de produccion no configuradas (SOURCE_DATABASE_URL)",
                field="SOURCE_DATABASE_URL",
            )

        if lookback.automatic and not await load_sync_positions(self.target):
            raise SyncConfigurationException(
                "No hay posiciones de sync registradas; ejecuta primero un sync manual (p. ej. lookback=7d)",
                field="lookback",
            )

    async def run(
        self,
        lookback: LookbackWindow,
        emitter: StatusEmitter,
        cancel: Optional[asyncio.Event] = None,
    ) -> bool:
        """Ejecuta una corrida completa (uso directo: CLI y tests)."""
        return await run_sync_pipeline(
            target=self.target,
            lookback=lookback,
            options=self._build_options(),
            emitter=emitter,
            cancel=cancel,
        )

    async def _run_and_close(self, lookback: LookbackWindow, emitter: QueueEmitter, cancel: asyncio.Event) -> bool:
        try:
            return await self.run(lookback, emitter, cancel)
        finally:
            emitter.close()

    async def start(self, lookback: LookbackWindow) -> AsyncIterator[str]:
        """
        Valida y reserva la corrida; devuelve el iterador de lineas NDJSON.

        Entre la comprobacion de `is_running` y la creacion de la tarea no hay
        ningun `await`, asi que dos solicitudes simultaneas no pueden pasar
        ambas la barrera. La tarea corre hasta el final aunque nadie consuma
        el stream, y al terminar libera el lugar.

        Raises:
            SyncAlreadyRunningException: ya hay una corrida activa
            SyncConfigurationException: ver `preflight`
        """
        await self.preflight(lookback)
        if self.is_running():
            raise SyncAlreadyRunningException()

        emitter = QueueEmitter()
        cancel = asyncio.Event()
        task = asyncio.create_task(self._run_and_close(lookback, emitter, cancel))
        type(self)._active = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return self._lines(emitter, task, cancel)

    async def _lines(self, emitter: QueueEmitter, task: asyncio.Task, cancel: asyncio.Event) -> AsyncIterator[str]:
        try:
            async for line in emitter.lines():
                yield line
        finally:
            if not task.done():
                logger.warning("[sync] Cliente desconectado; solicitando cancelacion")
                cancel.set()
