"""
Progreso del pipeline.

La barra global se reparte entre etapas segun su peso estimado. Cuando la
etapa de conteo conoce cuantos registros trae cada tabla, el tramo contiguo
de las etapas de transferencia se vuelve a repartir proporcionalmente a esos
conteos. El porcentaje emitido nunca retrocede y termina exactamente en 100.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from loguru import logger

from devsync.shared.utils.datetime_utils import DateTimeUtils

from .events import (
    ProgressEvent,
    StageState,
    StagesInitEvent,
    StageUpdateEvent,
    StatusEmitter,
)
from .types import StageDefinition, StageStatus


@dataclass
class StageBudget:
    start: float
    end: float

    def at(self, fraction: float) -> float:
        return self.start + (self.end - self.start) * fraction


def stage_fraction(processed: int, expected: int) -> float:
    if expected <= 0:
        return 1.0 if processed > 0 else 0.0
    return min(1.0, processed / expected)


def format_window_detail(batch_size: int, start_ms: Optional[int], end_ms: Optional[int], percent: int) -> str:
    """Detalle para tablas con tiempo: lote descargado y rango cubierto."""
    return (
        f"Descargados {batch_size:,} registros del rango "
        f"[{DateTimeUtils.format_range(start_ms, end_ms)}] ({percent}%)"
    )


def format_count_detail(processed: int, expected: int, percent: int) -> str:
    return f"{processed:,} de {expected:,} ({percent}%)"


class ProgressReporter:
    def __init__(self, stages: Sequence[StageDefinition]) -> None:
        self._order = [s.id for s in stages]
        total_weight = sum(max(0, s.estimated_weight) for s in stages) or 1
        self._budgets: dict[str, StageBudget] = {}
        cursor = 0.0
        for stage in stages:
            width = 100.0 * max(0, stage.estimated_weight) / total_weight
            self._budgets[stage.id] = StageBudget(cursor, cursor + width)
            cursor += width
        self._last = 0

    @property
    def last(self) -> int:
        return self._last

    def budget(self, stage_id: str) -> StageBudget:
        return self._budgets[stage_id]

    def rebalance(self, record_counts: Mapping[str, int]) -> None:
        """
        Reparte el tramo [A, B] de las etapas contadas segun sus conteos.

        Raises:
            ValueError: si las etapas contadas no son contiguas
        """
        ids = [sid for sid in self._order if sid in record_counts]
        total = sum(max(0, record_counts[sid]) for sid in ids)
        if not ids or total == 0:
            return

        positions = [self._order.index(sid) for sid in ids]
        if positions != list(range(positions[0], positions[0] + len(positions))):
            raise ValueError("Las etapas de transferencia deben ser contiguas")

        block_start = self._budgets[ids[0]].start
        block_end = self._budgets[ids[-1]].end
        cursor = block_start
        for sid in ids:
            width = (block_end - block_start) * max(0, record_counts[sid]) / total
            self._budgets[sid] = StageBudget(cursor, cursor + width)
            cursor += width
        # Evita drift por redondeo en el borde final
        self._budgets[ids[-1]].end = block_end

    def overall(self, stage_id: str, fraction: float) -> int:
        value = int(self._budgets[stage_id].at(max(0.0, min(1.0, fraction))))
        self._last = min(100, max(self._last, value))
        return self._last

    def finish(self) -> int:
        self._last = 100
        return self._last


class StageTracker:
    """
    Estado por etapa + emision de eventos.

    Cada transicion emite `stage-update` y luego `progress`.
    """

    def __init__(self, stages: Sequence[StageDefinition], emitter: StatusEmitter, progress: ProgressReporter) -> None:
        self.emitter = emitter
        self.progress = progress
        self._states: dict[str, StageState] = {
            s.id: StageState(id=s.id, name=s.name) for s in stages
        }
        self._started: dict[str, float] = {}

    def state(self, stage_id: str) -> StageState:
        return self._states[stage_id]

    def send(self, event) -> None:
        self.emitter.send(event)

    def init(self) -> None:
        self.send(StagesInitEvent(stages=[s.model_copy() for s in self._states.values()]))

    def _emit(self, stage_id: str) -> None:
        state = self._states[stage_id]
        self.send(StageUpdateEvent(stage=state.model_copy()))
        percent = self.progress.overall(stage_id, state.progress or 0.0)
        message = state.detail or f"{state.name}: {percent}%"
        self.send(ProgressEvent(message=message, progress=percent))

    def start(self, stage_id: str) -> None:
        state = self._states[stage_id]
        self._started[stage_id] = time.perf_counter()
        state.status = StageStatus.RUNNING
        state.start_time = DateTimeUtils.now_ms()
        state.progress = 0.0
        state.detail = None
        logger.info(f"[sync] Etapa '{state.name}' iniciada")
        self._emit(stage_id)

    def tick(self, stage_id: str, processed: int, expected: int, detail: str) -> None:
        state = self._states[stage_id]
        state.progress = stage_fraction(processed, expected)
        state.detail = detail
        self._emit(stage_id)

    def complete(self, stage_id: str, detail: str) -> None:
        state = self._states[stage_id]
        state.status = StageStatus.COMPLETED
        state.progress = 1.0
        state.detail = detail
        started = self._started.get(stage_id)
        if started is not None:
            state.duration = round(time.perf_counter() - started, 3)
        logger.info(f"[sync] Etapa '{state.name}' completada en {state.duration or 0:.3f}s: {detail}")
        self._emit(stage_id)

    def skip(self, stage_id: str, detail: str) -> None:
        state = self._states[stage_id]
        state.status = StageStatus.COMPLETED
        state.progress = 1.0
        state.detail = detail
        state.duration = 0.0
        logger.info(f"[sync] Etapa '{state.name}' omitida: {detail}")
        self._emit(stage_id)

    def fail(self, stage_id: str, detail: str) -> None:
        state = self._states[stage_id]
        state.status = StageStatus.ERROR
        state.detail = detail
        started = self._started.get(stage_id)
        if started is not None:
            state.duration = round(time.perf_counter() - started, 3)
        logger.error(f"[sync] Etapa '{state.name}' fallo: {detail}")
        self.send(StageUpdateEvent(stage=state.model_copy()))

    def finish(self, message: str) -> None:
        self.send(ProgressEvent(message=message, progress=self.progress.finish()))
