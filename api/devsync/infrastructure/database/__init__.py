"""
Configuración de base de datos.

Importa todos los modelos para que se registren con Base
antes de crear las tablas.
"""
from devsync.infrastructure.database.models import (
    SystemModel,
    PointInfoModel,
    ReadingModel,
    PointReadingModel,
    PointReadingAgg5mModel,
    PointReadingAgg1dModel,
    UserSystemModel,
    UserIdMappingModel,
    SyncStatusModel,
)
