"""
Script para crear las tablas de la base local (destino del sync).
"""
import asyncio
from loguru import logger

from devsync.core.config import settings
from devsync.infrastructure.database.session import init_db, close_db


async def main():
    """Crea las tablas que falten; no modifica las existentes."""
    logger.info(f"Inicializando base local ({settings.ENVIRONMENT})...")

    try:
        await init_db()
        logger.success("Base de datos inicializada correctamente")
    except Exception as e:
        logger.error(f"Error al inicializar base de datos: {e}")
        raise
    finally:
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
