"""
Utilidades para manejo de fechas y horas.

Las tablas sincronizadas guardan tiempos como enteros epoch (ms o s) y dias
como 'YYYY-MM-DD'; aqui viven las conversiones y el formato para mostrar rangos.
"""
from datetime import datetime, timezone, date
from typing import Optional


class DateTimeUtils:
    """Clase de utilidades para operaciones con fechas y horas."""

    DISPLAY_FORMAT = "%d %b %Y %H:%M"

    @staticmethod
    def now_utc() -> datetime:
        """
        Obtiene la fecha y hora actual en UTC.

        Returns:
            datetime: Fecha y hora actual en UTC
        """
        return datetime.now(timezone.utc)

    @staticmethod
    def now_ms() -> int:
        """Epoch actual en milisegundos."""
        return int(DateTimeUtils.now_utc().timestamp() * 1000)

    @staticmethod
    def from_ms(epoch_ms: int) -> datetime:
        """Convierte epoch ms a datetime UTC (aware)."""
        return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)

    @staticmethod
    def day_to_ms(day: str) -> int:
        """
        Convierte 'YYYY-MM-DD' al epoch ms del inicio del dia (UTC).

        Args:
            day: Dia en formato ISO

        Returns:
            int: Epoch en milisegundos
        """
        d = date.fromisoformat(day)
        start = datetime(d.year, d.month, d.day, tzinfo=timezone.utc)
        return int(start.timestamp() * 1000)

    @staticmethod
    def ms_to_day(epoch_ms: int) -> str:
        """Dia UTC (YYYY-MM-DD) que contiene el epoch dado."""
        return DateTimeUtils.from_ms(epoch_ms).date().isoformat()

    @staticmethod
    def format_ms(epoch_ms: Optional[int]) -> str:
        """Formato corto para mensajes de progreso, p. ej. '16 Dec 2025 10:15'."""
        if epoch_ms is None:
            return "-"
        return DateTimeUtils.from_ms(epoch_ms).strftime(DateTimeUtils.DISPLAY_FORMAT)

    @staticmethod
    def format_range(start_ms: Optional[int], end_ms: Optional[int]) -> str:
        """Rango legible; colapsa a un solo instante si inicio y fin coinciden."""
        if start_ms is None or end_ms is None:
            return "-"
        if start_ms == end_ms:
            return DateTimeUtils.format_ms(start_ms)
        return f"{DateTimeUtils.format_ms(start_ms)} - {DateTimeUtils.format_ms(end_ms)}"
