"""
Orquestador de etapas y punto de entrada del pipeline.
"""

from __future__ import annotations

import asyncio
from typing import Optional, Sequence

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncEngine

from devsync.shared.exceptions.base import AppException
from devsync.shared.exceptions.sync import SyncCancelledException

from .events import CompleteEvent, ErrorEvent, StatusEmitter
from .progress import ProgressReporter, StageTracker
from .stages import SKIPPED_DETAIL, build_sync_stages
from .types import LookbackWindow, StageDefinition, SyncContext, SyncOptions


class StageOrchestrator:
    """
    Ejecuta las etapas en orden estricto.

    Es el unico dueño del contexto: aplica el delta de cada etapa y conserva
    la ultima version en `self.context` (tambien si la corrida falla).
    """

    def __init__(self, stages: Sequence[StageDefinition], tracker: StageTracker, progress: ProgressReporter) -> None:
        self.stages = list(stages)
        self.tracker = tracker
        self.progress = progress
        self.context: Optional[SyncContext] = None

    async def run(self, ctx: SyncContext) -> SyncContext:
        self.context = ctx
        skipped: set[str] = set()

        for index, stage in enumerate(self.stages):
            if stage.id in skipped:
                continue
            self.context.check_cancelled()

            self.tracker.start(stage.id)
            try:
                result = await stage.execute(self.context)
            except Exception as e:
                message = e.message if isinstance(e, AppException) else str(e) or type(e).__name__
                self.tracker.fail(stage.id, message)
                raise

            if result.delta is not None:
                self.context = self.context.apply(result.delta)
                if result.delta.record_counts is not None:
                    self.progress.rebalance(result.delta.record_counts)
            self.tracker.complete(stage.id, result.detail)

            if stage.counts_records and self.context.total_to_sync == 0:
                # Nada nuevo: solo siguen las etapas de metadatos
                for pending in self.stages[index + 1:]:
                    if not pending.modifies_metadata:
                        skipped.add(pending.id)
                        self.tracker.skip(pending.id, SKIPPED_DETAIL)

        return self.context


async def run_sync_pipeline(
    *,
    target: AsyncEngine,
    lookback: LookbackWindow,
    options: SyncOptions,
    emitter: StatusEmitter,
    cancel: Optional[asyncio.Event] = None,
    stages: Optional[Sequence[StageDefinition]] = None,
) -> bool:
    """
    Ejecuta el pipeline completo emitiendo eventos de estado.

    Los errores no se propagan: terminan el stream con un evento `error`
    (la cancelacion con su propio mensaje).

    Returns:
        bool: True si termino con exito
    """
    stages = list(stages) if stages is not None else build_sync_stages()
    cancel = cancel or asyncio.Event()
    progress = ProgressReporter(stages)
    tracker = StageTracker(stages, emitter, progress)
    orchestrator = StageOrchestrator(stages, tracker, progress)
    ctx = SyncContext(target=target, cancel=cancel, tracker=tracker, lookback=lookback, options=options)

    logger.info(f"[sync] Iniciando sync produccion -> desarrollo (lookback {lookback.describe()})")
    tracker.init()
    try:
        final = await orchestrator.run(ctx)
    except SyncCancelledException as e:
        logger.warning(f"[sync] {e.message}")
        tracker.send(ErrorEvent(message=e.message))
        return False
    except AppException as e:
        logger.error(f"[sync] Sync fallido: {e.message}")
        tracker.send(ErrorEvent(message=e.message))
        return False
    except Exception as e:
        logger.exception(f"[sync] Error inesperado en el sync: {e}")
        tracker.send(ErrorEvent(message=str(e) or "Error inesperado en el sync"))
        return False
    finally:
        current = orchestrator.context
        if current is not None and current.source is not None:
            await current.source.close()

    if final.total_to_sync == 0:
        message = "La base local ya esta al dia"
    else:
        message = f"Sync completado: {final.synced_total:,} registros copiados"
    logger.info(f"[sync] {message}")
    tracker.finish(message)
    tracker.send(CompleteEvent())
    return True
