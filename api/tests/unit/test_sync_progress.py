from __future__ import annotations

import pytest

from conftest import ListEmitter
from devsync.infrastructure.external.prod_sync.progress import (
    ProgressReporter,
    StageTracker,
    format_count_detail,
    format_window_detail,
    stage_fraction,
)
from devsync.infrastructure.external.prod_sync.types import StageDefinition, StageResult
from devsync.shared.utils.datetime_utils import DateTimeUtils


async def _noop(ctx):
    return StageResult("ok")


def _stages(*weights, ids=None):
    ids = ids or [f"s{i}" for i in range(len(weights))]
    return [StageDefinition(i, i.upper(), _noop, estimated_weight=w) for i, w in zip(ids, weights)]


def test_budgets_follow_estimated_weights() -> None:
    reporter = ProgressReporter(_stages(10, 30, 60))

    assert reporter.budget("s0").start == 0
    assert reporter.budget("s1").start == pytest.approx(10)
    assert reporter.budget("s2").end == pytest.approx(100)
    assert reporter.overall("s1", 0.5) == 25


def test_rebalance_splits_transfer_block_by_record_counts() -> None:
    reporter = ProgressReporter(_stages(10, 20, 20, 50))
    # Bloque s1..s2 ocupa [10, 50]; s2 trae 3 veces mas registros
    reporter.rebalance({"s1": 100, "s2": 300})

    assert reporter.budget("s1").start == pytest.approx(10)
    assert reporter.budget("s1").end == pytest.approx(20)
    assert reporter.budget("s2").end == pytest.approx(50)
    assert reporter.budget("s3").start == pytest.approx(50)


def test_rebalance_with_zero_records_keeps_budgets() -> None:
    reporter = ProgressReporter(_stages(10, 20, 20))
    before = (reporter.budget("s1").start, reporter.budget("s1").end)
    reporter.rebalance({"s1": 0, "s2": 0})
    assert (reporter.budget("s1").start, reporter.budget("s1").end) == before


def test_rebalance_requires_contiguous_stages() -> None:
    reporter = ProgressReporter(_stages(10, 20, 20))
    with pytest.raises(ValueError):
        reporter.rebalance({"s0": 1, "s2": 1})


def test_overall_never_goes_backward_and_ends_at_100() -> None:
    reporter = ProgressReporter(_stages(50, 50))

    assert reporter.overall("s1", 0.5) == 75
    assert reporter.overall("s0", 1.0) == 75
    assert reporter.overall("s1", 2.0) == 100
    assert reporter.finish() == 100


def test_stage_fraction_is_capped() -> None:
    assert stage_fraction(50, 100) == 0.5
    assert stage_fraction(150, 100) == 1.0
    assert stage_fraction(0, 0) == 0.0
    assert stage_fraction(3, 0) == 1.0


def test_detail_formats() -> None:
    start = DateTimeUtils.day_to_ms("2025-12-16") + 10 * 3600 * 1000
    end = start + 15 * 60 * 1000
    assert format_window_detail(1500, start, end, 42) == (
        "Descargados 1,500 registros del rango [16 Dec 2025 10:00 - 16 Dec 2025 10:15] (42%)"
    )
    assert format_window_detail(1, start, start, 5) == "Descargados 1 registros del rango [16 Dec 2025 10:00] (5%)"
    assert format_count_detail(1200, 4800, 25) == "1,200 de 4,800 (25%)"


def test_tracker_emits_stage_update_then_progress() -> None:
    stages = _stages(50, 50, ids=["prepare", "finalise"])
    emitter = ListEmitter()
    tracker = StageTracker(stages, emitter, ProgressReporter(stages))

    tracker.init()
    tracker.start("prepare")
    tracker.tick("prepare", 5, 10, "5 de 10 (50%)")
    tracker.complete("prepare", "listo")
    tracker.finish("fin")

    types = [e["type"] for e in emitter.events]
    assert types[0] == "stages-init"
    assert types[1:] == ["stage-update", "progress"] * 3 + ["progress"]
    assert [s["status"] for s in emitter.events[0]["stages"]] == ["pending", "pending"]

    tick = emitter.events[3]["stage"]
    assert tick["progress"] == 0.5
    assert tick["status"] == "running"
    assert "startTime" in tick
    assert emitter.events[4]["message"] == "5 de 10 (50%)"
    assert emitter.events[4]["progress"] == 25

    completed = emitter.events[5]["stage"]
    assert completed["status"] == "completed"
    assert "duration" in completed
    assert emitter.progress_values() == [0, 25, 50, 100]


def test_tracker_fail_marks_error() -> None:
    stages = _stages(100, ids=["prepare"])
    emitter = ListEmitter()
    tracker = StageTracker(stages, emitter, ProgressReporter(stages))
    tracker.start("prepare")
    tracker.fail("prepare", "boom")

    assert emitter.events[-1]["type"] == "stage-update"
    assert emitter.events[-1]["stage"]["status"] == "error"
    assert emitter.events[-1]["stage"]["detail"] == "boom"
