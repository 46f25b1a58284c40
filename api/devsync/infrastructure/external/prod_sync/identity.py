"""
Traduccion de identificadores produccion -> desarrollo.

- ExternalIdentityMapper: ids de usuario del proveedor de identidad. Se carga
  una vez por corrida desde `user_id_mapping`. Si no hay mapeo, la fila que lo
  referencia se omite: nunca se copia el id de produccion.
- EntityIdMap: ids locales de sistemas/puntos, construidos emparejando por
  llave natural.
"""

from __future__ import annotations

from typing import Any, Callable, Generic, Hashable, Iterable, Mapping, Optional, TypeVar

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine

from devsync.infrastructure.database.models import UserIdMappingModel

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

Row = Mapping[str, Any]


def truncate_identity(value: Optional[str], keep: int = 15) -> str:
    """
    Version corta de un id para mostrar en el stream o en logs.

    Nunca revela el id completo: a lo sumo `keep` caracteres y nunca mas de
    la mitad del valor.
    """
    if not value:
        return "-"
    return f"{value[:min(keep, len(value) // 2)]}..."


class ExternalIdentityMapper:
    def __init__(self, mappings: Mapping[str, str], usernames: Optional[Mapping[str, str]] = None) -> None:
        self._mappings = dict(mappings)
        self._usernames = dict(usernames or {})
        self.misses = 0
        self._warned: set[str] = set()

    @classmethod
    async def load(cls, target: AsyncEngine) -> "ExternalIdentityMapper":
        """Lee la tabla de mapeo de la base destino."""
        async with target.connect() as conn:
            result = await conn.execute(
                select(
                    UserIdMappingModel.prod_user_id,
                    UserIdMappingModel.dev_user_id,
                    UserIdMappingModel.username,
                )
            )
            rows = result.all()

        mappings = {r.prod_user_id: r.dev_user_id for r in rows}
        usernames = {r.prod_user_id: r.username for r in rows if r.username}
        logger.info(f"[sync] {len(mappings)} mapeos de usuario cargados")
        return cls(mappings, usernames)

    def __len__(self) -> int:
        return len(self._mappings)

    def map(self, source_identity: Optional[str]) -> Optional[str]:
        """
        Traduce un id de produccion.

        Returns:
            str | None: id de desarrollo, o None si no hay mapeo (la fila se omite)
        """
        if source_identity is None:
            return None
        mapped = self._mappings.get(source_identity)
        if mapped is None:
            self.misses += 1
            if source_identity not in self._warned:
                self._warned.add(source_identity)
                logger.warning(
                    f"[sync] Usuario sin mapeo: {truncate_identity(source_identity, 20)} (filas omitidas)"
                )
        return mapped

    def summaries(self) -> list[dict[str, str]]:
        """Resumen para el evento 'mappings' (ids truncados)."""
        return [
            {
                "username": self._usernames.get(prod_id, "-"),
                "prodId": truncate_identity(prod_id),
                "devId": truncate_identity(dev_id),
            }
            for prod_id, dev_id in self._mappings.items()
        ]


class EntityIdMap(Generic[K, V]):
    """Mapa id origen -> id destino para un tipo de entidad."""

    def __init__(self, kind: str) -> None:
        self.kind = kind
        self._ids: dict[K, V] = {}
        self.misses = 0

    def set(self, source_id: K, target_id: V) -> None:
        self._ids[source_id] = target_id

    def get(self, source_id: K) -> Optional[V]:
        target_id = self._ids.get(source_id)
        if target_id is None:
            self.misses += 1
        return target_id

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def items(self):
        return self._ids.items()

    def summaries(self, labels: Optional[Mapping[K, str]] = None) -> list[dict[str, Any]]:
        labels = labels or {}
        return [
            {"name": labels.get(src, "-"), "prodId": src, "devId": dst}
            for src, dst in self._ids.items()
        ]


def build_entity_map(
    source_inventory: Iterable[Row],
    target_inventory: Iterable[Row],
    *,
    kind: str,
    source_key: Callable[[Row], Optional[Hashable]],
    target_key: Callable[[Row], Hashable],
    source_id: Callable[[Row], Any],
    target_id: Callable[[Row], Any],
    into: Optional[EntityIdMap] = None,
) -> tuple[EntityIdMap, list[Row]]:
    """
    Empareja inventarios por llave natural.

    Args:
        source_key: llave natural de una fila de origen ya traducida al espacio
            destino; None si no se puede resolver (la fila se descarta)
        target_key: llave natural de una fila destino
        into: mapa existente a extender (por lotes)

    Returns:
        tuple: (mapa con los emparejados, filas de origen sin contraparte)
    """
    by_key: dict[Hashable, Any] = {}
    for row in target_inventory:
        # Ante duplicados gana el primero (menor id si el inventario viene ordenado)
        by_key.setdefault(target_key(row), target_id(row))

    entity_map: EntityIdMap = into if into is not None else EntityIdMap(kind)
    unmatched: list[Row] = []
    for row in source_inventory:
        key = source_key(row)
        if key is None:
            continue
        match = by_key.get(key)
        if match is None:
            unmatched.append(row)
        else:
            entity_map.set(source_id(row), match)
    return entity_map, unmatched
