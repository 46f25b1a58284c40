"""
Barrera de seguridad: el sync nunca debe ejecutarse contra produccion.

Tres verificaciones independientes; basta una para rechazar:
  (a) el Host de la peticion coincide con un host de produccion
  (b) la base destino parece produccion (identificador conocido en la URL,
      o misma URL que la fuente)
  (c) ENVIRONMENT == "production"
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from devsync.core.config import Settings, split_csv
from devsync.shared.exceptions.sync import SafetyGateRejectedException


def _strip_port(host: str) -> str:
    return host.rsplit(":", 1)[0] if ":" in host and not host.endswith("]") else host


@dataclass(frozen=True)
class SafetyGate:
    production_hosts: tuple[str, ...]
    production_db_identifiers: tuple[str, ...]
    target_url: str
    source_url: str
    environment: str

    @classmethod
    def from_settings(cls, settings: Settings) -> "SafetyGate":
        return cls(
            production_hosts=tuple(split_csv(settings.PRODUCTION_HOSTS)),
            production_db_identifiers=tuple(split_csv(settings.PRODUCTION_DB_IDENTIFIERS)),
            target_url=settings.effective_database_url or "",
            source_url=settings.SOURCE_DATABASE_URL or "",
            environment=settings.ENVIRONMENT or "",
        )

    def host_is_production(self, host: Optional[str]) -> bool:
        if not host:
            return False
        host = _strip_port(host.strip().lower())
        return any(pattern in host for pattern in self.production_hosts)

    def store_is_production(self) -> bool:
        target = self.target_url.lower()
        if any(identifier in target for identifier in self.production_db_identifiers):
            return True
        return bool(self.source_url) and _same_store(self.source_url, self.target_url)

    def environment_is_production(self) -> bool:
        return self.environment.strip().lower() == "production"

    def evaluate(self, host: Optional[str]) -> list[str]:
        """Razones de rechazo (vacia si se permite ejecutar)."""
        reasons = []
        if self.host_is_production(host):
            reasons.append(f"host de produccion: {host}")
        if self.store_is_production():
            reasons.append("la base destino es produccion")
        if self.environment_is_production():
            reasons.append("ENVIRONMENT=production")
        return reasons

    def enforce(self, host: Optional[str]) -> None:
        """
        Raises:
            SafetyGateRejectedException: si alguna verificacion indica produccion
        """
        reasons = self.evaluate(host)
        if reasons:
            logger.critical(f"[sync] Sync bloqueado por la barrera de seguridad: {'; '.join(reasons)}")
            raise SafetyGateRejectedException(reasons)


def _same_store(a: str, b: str) -> bool:
    # Compara ignorando el driver (postgresql+psycopg vs postgres)
    def strip_scheme(url: str) -> str:
        return url.split("://", 1)[-1].rstrip("/").lower()
    return strip_scheme(a) == strip_scheme(b)
