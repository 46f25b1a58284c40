"""
Endpoint de administracion: sincroniza la base de produccion hacia la local.

Responde un stream NDJSON con el avance de cada etapa.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from loguru import logger

from devsync.api.v1.dependencies.auth_deps import enforce_safety_gate, require_admin
from devsync.api.v1.dependencies.use_case_deps import get_database_sync_use_cases
from devsync.application.use_cases.database_sync_use_cases import DatabaseSyncUseCases
from devsync.core.config import settings
from devsync.infrastructure.external.prod_sync import LookbackWindow


router = APIRouter(
    prefix="/admin",
    tags=["Admin Sync"],
    dependencies=[Depends(enforce_safety_gate)],
)


@router.post("/sync-database")
async def sync_database(
    lookback: str = Query(
        default=settings.SYNC_DEFAULT_LOOKBACK,
        description="Ventana: '7d', '12h', '3' (dias) o 'auto' para retomar desde sync_status",
    ),
    admin: Dict[str, Any] = Depends(require_admin),
    use_cases: DatabaseSyncUseCases = Depends(get_database_sync_use_cases),
) -> StreamingResponse:
    """
    Inicia un sync produccion -> desarrollo.

    Errores de configuracion se devuelven como 400 antes de abrir el stream;
    a partir de ahi cualquier falla llega como evento `error`.
    """
    window = LookbackWindow.parse(lookback)
    lines = await use_cases.start(window)

    logger.info(f"[sync] Sync solicitado por {admin.get('sub')!r} (lookback {window.describe()})")
    return StreamingResponse(
        lines,
        media_type="application/x-ndjson",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
