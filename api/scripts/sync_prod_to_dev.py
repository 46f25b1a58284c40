"""
CLI: produccion -> desarrollo (sync de una sola via).

Ejecuta el mismo pipeline que POST /api/v1/admin/sync-database, sin HTTP:
los eventos NDJSON salen por stdout y los logs por stderr.

Variables de entorno requeridas:
  - SOURCE_DATABASE_URL (produccion, solo lectura)
  - DATABASE_URL (base local destino)
  - ENVIRONMENT=development

Ejecución:
  python scripts/sync_prod_to_dev.py
  python scripts/sync_prod_to_dev.py --lookback 12h
  python scripts/sync_prod_to_dev.py --lookback auto
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from pathlib import Path

from loguru import logger
from dotenv import load_dotenv

# Permite ejecutar este script desde cualquier cwd sin configurar PYTHONPATH.
_API_ROOT = Path(__file__).resolve().parents[1]
if str(_API_ROOT) not in sys.path:
    sys.path.insert(0, str(_API_ROOT))

# .env del backend primero, luego el de la raiz del repo
load_dotenv(_API_ROOT / ".env", override=False)
load_dotenv(_API_ROOT.parent / ".env", override=False)

from devsync.application.use_cases.database_sync_use_cases import DatabaseSyncUseCases
from devsync.core.config import settings
from devsync.infrastructure.database.session import close_db, engine, init_db
from devsync.infrastructure.external.prod_sync import LookbackWindow, SafetyGate, StreamEmitter
from devsync.shared.exceptions.base import AppException


async def _run(args: argparse.Namespace) -> int:
    # Sin Host: solo aplican las verificaciones de entorno y de base destino
    SafetyGate.from_settings(settings).enforce(host=None)

    window = LookbackWindow.parse(args.lookback)

    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel.set)
        except NotImplementedError:
            # Windows: Ctrl+C corta el proceso sin cancelacion cooperativa
            pass

    try:
        if args.init_db:
            await init_db()
        use_cases = DatabaseSyncUseCases(engine)
        await use_cases.preflight(window)
        ok = await use_cases.run(window, StreamEmitter(sys.stdout), cancel)
    finally:
        await close_db()
    return 0 if ok else 1


def main() -> int:
    parser = argparse.ArgumentParser(description="Sync produccion -> desarrollo")
    parser.add_argument(
        "--lookback",
        default=settings.SYNC_DEFAULT_LOOKBACK,
        help="Ventana: '7d', '12h', '3' (dias) o 'auto' (retoma desde sync_status).",
    )
    parser.add_argument(
        "--init-db",
        action="store_true",
        help="Crea las tablas locales que falten antes de sincronizar.",
    )
    args = parser.parse_args()

    try:
        return asyncio.run(_run(args))
    except AppException as e:
        logger.error(f"[sync] {e.message}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
