from __future__ import annotations

import asyncio
import dataclasses
import json
from typing import List

import pytest

from conftest import ListEmitter
from devsync.infrastructure.external.prod_sync.events import ErrorEvent, QueueEmitter, encode_event
from devsync.infrastructure.external.prod_sync.orchestrator import run_sync_pipeline
from devsync.infrastructure.external.prod_sync.stages import SKIPPED_DETAIL
from devsync.infrastructure.external.prod_sync.types import (
    ContextDelta,
    LookbackWindow,
    StageDefinition,
    StageResult,
    SyncContext,
    SyncOptions,
)
from devsync.shared.exceptions.sync import SyncWriteException

_OPTIONS = SyncOptions(source_factory=lambda: None, clock=lambda: 0)


class _Recorder:
    def __init__(self) -> None:
        self.calls: List[str] = []
        self.versions: List[int] = []

    def stage(self, stage_id: str, delta: ContextDelta = None, error: Exception = None, **kwargs) -> StageDefinition:
        async def execute(ctx: SyncContext) -> StageResult:
            self.calls.append(stage_id)
            self.versions.append(ctx.version)
            if error is not None:
                raise error
            return StageResult(f"{stage_id} listo", delta)
        return StageDefinition(stage_id, stage_id.title(), execute, **kwargs)


async def _run(target_engine, stages, emitter, cancel=None) -> bool:
    return await run_sync_pipeline(
        target=target_engine,
        lookback=LookbackWindow.parse("1d"),
        options=_OPTIONS,
        emitter=emitter,
        cancel=cancel,
        stages=stages,
    )


def test_context_apply_returns_new_version(target_engine) -> None:
    ctx = SyncContext(target=target_engine, cancel=asyncio.Event(), tracker=None,
                      lookback=LookbackWindow.parse("1d"), options=_OPTIONS)

    updated = ctx.apply(ContextDelta(sync_from_ms=10, synced=5)).apply(ContextDelta(synced=3))

    assert (ctx.version, ctx.synced_total, ctx.sync_from_ms) == (0, 0, None)
    assert (updated.version, updated.synced_total, updated.sync_from_ms) == (2, 8, 10)
    with pytest.raises(dataclasses.FrozenInstanceError):
        updated.synced_total = 0


@pytest.mark.asyncio
async def test_stages_run_in_order_with_fresh_context(target_engine) -> None:
    recorder = _Recorder()
    emitter = ListEmitter()
    stages = [
        recorder.stage("prepare", ContextDelta(local_latest_ms=1), modifies_metadata=True),
        recorder.stage("count", ContextDelta(record_counts={"copy": 4}), counts_records=True),
        recorder.stage("copy", ContextDelta(synced=4)),
        recorder.stage("finalise", modifies_metadata=True),
    ]

    assert await _run(target_engine, stages, emitter)

    assert recorder.calls == ["prepare", "count", "copy", "finalise"]
    assert recorder.versions == [0, 1, 2, 3]
    assert emitter.events[-1] == {"type": "complete"}
    assert emitter.of_type("progress")[-1]["message"] == "Sync completado: 4 registros copiados"
    assert {s["status"] for s in emitter.final_stage_states().values()} == {"completed"}


@pytest.mark.asyncio
async def test_failure_aborts_remaining_stages(target_engine) -> None:
    recorder = _Recorder()
    emitter = ListEmitter()
    error = SyncWriteException("point_readings", RuntimeError("constraint"), probe=True)
    stages = [
        recorder.stage("prepare"),
        recorder.stage("copy", error=error),
        recorder.stage("finalise"),
    ]

    assert not await _run(target_engine, stages, emitter)

    assert recorder.calls == ["prepare", "copy"]
    states = emitter.final_stage_states()
    assert states["copy"]["status"] == "error"
    assert states["copy"]["detail"] == error.message
    assert states["finalise"]["status"] == "pending"
    assert emitter.events[-1] == {"type": "error", "message": error.message}
    assert not emitter.of_type("complete")


@pytest.mark.asyncio
async def test_unexpected_errors_end_the_stream(target_engine) -> None:
    emitter = ListEmitter()
    stages = [_Recorder().stage("prepare", error=RuntimeError("kaput"))]

    assert not await _run(target_engine, stages, emitter)
    assert emitter.events[-1] == {"type": "error", "message": "kaput"}


@pytest.mark.asyncio
async def test_nothing_to_sync_skips_transfer_stages(target_engine) -> None:
    recorder = _Recorder()
    emitter = ListEmitter()
    stages = [
        recorder.stage("prepare", modifies_metadata=True),
        recorder.stage("count", ContextDelta(record_counts={"copy-a": 0, "copy-b": 0}), counts_records=True),
        recorder.stage("copy-a"),
        recorder.stage("copy-b"),
        recorder.stage("user-systems", modifies_metadata=True),
    ]

    assert await _run(target_engine, stages, emitter)

    assert recorder.calls == ["prepare", "count", "user-systems"]
    states = emitter.final_stage_states()
    assert states["copy-a"]["detail"] == SKIPPED_DETAIL
    assert states["copy-b"]["status"] == "completed"
    assert emitter.of_type("progress")[-1] == {
        "type": "progress", "message": "La base local ya esta al dia", "progress": 100, "total": 100,
    }


@pytest.mark.asyncio
async def test_cancel_before_start_runs_nothing(target_engine) -> None:
    recorder = _Recorder()
    emitter = ListEmitter()
    cancel = asyncio.Event()
    cancel.set()

    assert not await _run(target_engine, [recorder.stage("prepare")], emitter, cancel)

    assert recorder.calls == []
    assert emitter.events[-1]["message"] == "La sincronizacion fue cancelada por el usuario"


@pytest.mark.asyncio
async def test_queue_emitter_yields_ndjson_lines() -> None:
    emitter = QueueEmitter()
    emitter.send(ErrorEvent(message="x"))
    emitter.close()

    lines = [line async for line in emitter.lines()]

    assert lines == [encode_event(ErrorEvent(message="x"))]
    assert json.loads(lines[0]) == {"type": "error", "message": "x"}
