"""
Excepciones del pipeline de sincronizacion produccion -> desarrollo.

Los faltantes de mapeo (identidad o entidad sin contraparte) NO son errores:
se cuentan como filas omitidas y se informan en el detalle de cada etapa.
"""
from typing import Optional

from devsync.shared.exceptions.base import AppException


class SyncException(AppException):
    """Excepción base para errores del pipeline."""

    def __init__(self, message: str, status_code: int = 500, error_code: str = "SYNC_ERROR", details=None):
        super().__init__(
            message=message,
            status_code=status_code,
            error_code=error_code,
            details=details
        )


class SafetyGateRejectedException(SyncException):
    """
    Alguna verificacion indica produccion.

    Se responde 404 sin detalles para no revelar que el endpoint existe.
    """

    def __init__(self, reasons: Optional[list[str]] = None):
        super().__init__(
            message="Not found",
            status_code=404,
            error_code="NOT_FOUND",
        )
        # Solo para logs; nunca se serializa en la respuesta
        self.reasons = reasons or []


class SyncConfigurationException(SyncException):
    """Configuracion faltante o invalida; se reporta antes de ejecutar etapas."""

    def __init__(self, message: str, field: str = None):
        details = {"field": field} if field else None
        super().__init__(
            message=message,
            status_code=400,
            error_code="SYNC_CONFIGURATION_ERROR",
            details=details
        )


class SyncCancelledException(SyncException):
    """Cancelacion cooperativa solicitada durante la corrida."""

    def __init__(self):
        super().__init__(
            message="La sincronizacion fue cancelada por el usuario",
            status_code=499,
            error_code="SYNC_CANCELLED",
        )


class SyncAlreadyRunningException(SyncException):
    """Ya hay una corrida activa en este proceso."""

    def __init__(self):
        super().__init__(
            message="Ya hay una sincronizacion en curso",
            status_code=409,
            error_code="SYNC_ALREADY_RUNNING",
        )


class SyncWriteException(SyncException):
    """Fallo al escribir un chunk en la base destino (constraint, esquema, etc.)."""

    def __init__(self, table: str, cause: Exception, probe: bool = False):
        phase = "chunk de prueba (1 fila)" if probe else "chunk"
        super().__init__(
            message=f"Error escribiendo {phase} en '{table}': {cause}",
            status_code=500,
            error_code="SYNC_WRITE_ERROR",
            details={"table": table, "probe": probe}
        )


class SourceReadException(SyncException):
    """Fallo leyendo de la base de produccion (no se reintenta dentro del pipeline)."""

    def __init__(self, what: str, cause: Exception):
        super().__init__(
            message=f"Error leyendo '{what}' desde produccion: {cause}",
            status_code=502,
            error_code="SOURCE_READ_ERROR",
            details={"source": what}
        )
