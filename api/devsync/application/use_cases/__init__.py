"""
Casos de uso de la aplicacion.
"""
from .database_sync_use_cases import DatabaseSyncUseCases

__all__ = ["DatabaseSyncUseCases"]
