"""
Sync produccion -> desarrollo.

Uso tipico:
  - run_sync_pipeline(target=..., lookback=LookbackWindow.parse("7d"), options=..., emitter=...)
  - SafetyGate.from_settings(settings).enforce(host) antes de cualquier corrida
"""

from .events import QueueEmitter, StreamEmitter
from .orchestrator import StageOrchestrator, run_sync_pipeline
from .safety import SafetyGate
from .source_store import SourceStore
from .stages import build_sync_stages
from .types import ConflictPolicy, LookbackWindow, SyncOptions

__all__ = [
    "ConflictPolicy",
    "LookbackWindow",
    "QueueEmitter",
    "SafetyGate",
    "SourceStore",
    "StageOrchestrator",
    "StreamEmitter",
    "SyncOptions",
    "build_sync_stages",
    "run_sync_pipeline",
]
