"""
Eventos del stream de estado (NDJSON) y emisores.
"""

from __future__ import annotations

import asyncio
import sys
from typing import Any, AsyncIterator, Literal, Optional, Protocol, TextIO

from pydantic import BaseModel, Field

from .types import StageStatus


class StageState(BaseModel):
    id: str
    name: Optional[str] = None
    status: StageStatus = StageStatus.PENDING
    detail: Optional[str] = None
    progress: Optional[float] = Field(default=None, ge=0, le=1)
    start_time: Optional[int] = Field(default=None, alias="startTime")
    duration: Optional[float] = None

    class Config:
        populate_by_name = True
        use_enum_values = True


class StagesInitEvent(BaseModel):
    type: Literal["stages-init"] = "stages-init"
    stages: list[StageState]


class StageUpdateEvent(BaseModel):
    type: Literal["stage-update"] = "stage-update"
    stage: StageState


class ProgressEvent(BaseModel):
    type: Literal["progress"] = "progress"
    message: str
    progress: int = Field(ge=0, le=100)
    total: int = 100


class MappingsEvent(BaseModel):
    type: Literal["mappings"] = "mappings"
    system_mappings: list[dict[str, Any]] = Field(default_factory=list, alias="systemMappings")
    user_mappings: list[dict[str, Any]] = Field(default_factory=list, alias="userMappings")

    class Config:
        populate_by_name = True


class CompleteEvent(BaseModel):
    type: Literal["complete"] = "complete"


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str


def encode_event(event: BaseModel) -> str:
    """Una linea NDJSON (camelCase, sin campos nulos)."""
    return event.model_dump_json(by_alias=True, exclude_none=True) + "\n"


class StatusEmitter(Protocol):
    def send(self, event: BaseModel) -> None:
        ...


class QueueEmitter:
    """
    Emisor para el endpoint HTTP: el pipeline corre en una tarea y el
    StreamingResponse consume las lineas desde la cola.
    """

    _DONE = None

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Optional[str]] = asyncio.Queue()
        self._closed = False

    def send(self, event: BaseModel) -> None:
        if self._closed:
            return
        self._queue.put_nowait(encode_event(event))

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(self._DONE)

    async def lines(self) -> AsyncIterator[str]:
        while True:
            line = await self._queue.get()
            if line is self._DONE:
                return
            yield line


class StreamEmitter:
    """Emisor para el CLI: escribe cada evento en un stream de texto."""

    def __init__(self, stream: TextIO = sys.stdout) -> None:
        self._stream = stream

    def send(self, event: BaseModel) -> None:
        self._stream.write(encode_event(event))
        self._stream.flush()
