"""
Dependencias para inyeccion de casos de uso.
"""
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncEngine

from devsync.application.use_cases.database_sync_use_cases import DatabaseSyncUseCases
from devsync.infrastructure.database.session import get_target_engine


def get_database_sync_use_cases(
    target: AsyncEngine = Depends(get_target_engine)
) -> DatabaseSyncUseCases:
    """
    Dependencia para obtener los casos de uso de sincronizacion.

    Args:
        target: Engine de la base destino (local)

    Returns:
        DatabaseSyncUseCases: Instancia de casos de uso
    """
    return DatabaseSyncUseCases(target)
