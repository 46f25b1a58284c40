"""
Etapas del sync produccion -> desarrollo, en orden fijo.

  prepare -> sync-systems -> sync-points -> count-data
  -> sync-readings -> sync-point-readings -> sync-point-agg-5m -> sync-point-agg-1d
  -> sync-user-systems -> finalise

Las etapas de transferencia (series temporales) son contiguas: el reparto
de progreso por conteos depende de ello.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from loguru import logger
from sqlalchemy import func, insert, select, update

from devsync.infrastructure.database.models import (
    PointInfoModel,
    PointReadingAgg1dModel,
    PointReadingAgg5mModel,
    PointReadingModel,
    ReadingModel,
    SystemModel,
    UserSystemModel,
)
from devsync.shared.utils.datetime_utils import DateTimeUtils

from .batch_writer import BatchWriter, TargetTable
from .events import MappingsEvent
from .identity import EntityIdMap, ExternalIdentityMapper, build_entity_map
from .pagination import CompositeCursor, Cursor, CursorPaginator, TimestampCursor
from .progress import format_count_detail, format_window_detail, stage_fraction
from .sync_position import record_sync_position, resolve_sync_from_ms
from .types import ConflictPolicy, ContextDelta, StageDefinition, StageResult, SyncContext

Row = Mapping[str, Any]

SKIPPED_DETAIL = "Omitida: no hay datos nuevos"

SYSTEMS = TargetTable.for_model(SystemModel, conflict_keys=())
POINT_INFO = TargetTable.for_model(PointInfoModel, exclude=())
READINGS = TargetTable.for_model(ReadingModel, conflict_keys=("system_id", "inverter_time"))
POINT_READINGS = TargetTable.for_model(
    PointReadingModel, conflict_keys=("system_id", "point_id", "measurement_time")
)
POINT_AGG_5M = TargetTable.for_model(PointReadingAgg5mModel)
POINT_AGG_1D = TargetTable.for_model(PointReadingAgg1dModel)
USER_SYSTEMS = TargetTable.for_model(UserSystemModel, conflict_keys=("user_id", "system_id"))

# Campos de sistema que se refrescan cuando ya existe en destino
SYSTEM_MUTABLE_FIELDS = ("status", "display_name", "model", "serial", "timezone_offset_min", "updated_at")
POINT_MUTABLE_FIELDS = ("default_name", "subsystem", "metric_type", "metric_unit", "active")


def _writer(ctx: SyncContext) -> BatchWriter:
    return BatchWriter(
        ctx.target,
        chunk_size=ctx.options.chunk_size,
        chunk_delay_s=ctx.options.chunk_delay_s,
        cancel=ctx.cancel,
    )


def _skipped_suffix(skipped: int) -> str:
    return f", {skipped:,} omitidos sin mapeo" if skipped else ""


# ---------------------------------------------------------------------------
# Transferencias de series temporales
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TableTransfer:
    """
    Transferencia paginada de una tabla.

    window: filtros del rango a copiar dado el inicio del sync (ms)
    cursor: estado inicial del cursor dado el inicio del sync (ms)
    map_row: traduce ids; None descarta la fila (sin mapeo)
    time_ms: instante (ms) de una fila; None para tablas diarias
    """

    stage_id: str
    name: str
    label: str
    target: TargetTable
    policy: ConflictPolicy
    weight: int
    window: Callable[[int], list]
    cursor: Callable[[int], Cursor]
    map_row: Callable[[SyncContext, Row], Optional[dict]]
    time_ms: Optional[Callable[[Row], int]] = None

    @property
    def table(self):
        return self.target.table


def _map_system_row(table: TargetTable):
    def mapper(ctx: SyncContext, row: Row) -> Optional[dict]:
        system_id = ctx.systems.get(row["system_id"])
        if system_id is None:
            return None
        return table.row_from(row, system_id=system_id)
    return mapper


def _map_point_row(table: TargetTable):
    def mapper(ctx: SyncContext, row: Row) -> Optional[dict]:
        mapped = ctx.points.get((row["system_id"], row["point_id"]))
        if mapped is None:
            return None
        system_id, point_id = mapped
        return table.row_from(row, system_id=system_id, point_id=point_id)
    return mapper


_readings = ReadingModel.__table__
_point_readings = PointReadingModel.__table__
_agg_5m = PointReadingAgg5mModel.__table__
_agg_1d = PointReadingAgg1dModel.__table__

TRANSFERS: tuple[TableTransfer, ...] = (
    TableTransfer(
        stage_id="sync-readings",
        name="Sincronizar lecturas legacy",
        label="lecturas",
        target=READINGS,
        # Backfill historico: nunca sobrescribir
        policy=ConflictPolicy.IGNORE,
        weight=5000,
        window=lambda since_ms: [_readings.c.inverter_time >= since_ms // 1000],
        cursor=lambda since_ms: TimestampCursor(
            _readings.c.inverter_time, since_ms // 1000, tiebreak=(_readings.c.system_id,)
        ),
        map_row=_map_system_row(READINGS),
        time_ms=lambda row: row["inverter_time"] * 1000,
    ),
    TableTransfer(
        stage_id="sync-point-readings",
        name="Sincronizar lecturas de puntos",
        label="lecturas de puntos",
        target=POINT_READINGS,
        policy=ConflictPolicy.REPLACE,
        weight=30000,
        window=lambda since_ms: [_point_readings.c.measurement_time >= since_ms],
        cursor=lambda since_ms: TimestampCursor(
            _point_readings.c.measurement_time,
            since_ms,
            tiebreak=(_point_readings.c.system_id, _point_readings.c.point_id),
        ),
        map_row=_map_point_row(POINT_READINGS),
        time_ms=lambda row: row["measurement_time"],
    ),
    TableTransfer(
        stage_id="sync-point-agg-5m",
        name="Sincronizar agregados 5m",
        label="agregados 5m",
        target=POINT_AGG_5M,
        policy=ConflictPolicy.REPLACE,
        weight=5000,
        window=lambda since_ms: [_agg_5m.c.interval_end >= since_ms],
        cursor=lambda since_ms: TimestampCursor(
            _agg_5m.c.interval_end,
            since_ms,
            tiebreak=(_agg_5m.c.system_id, _agg_5m.c.point_id),
        ),
        map_row=_map_point_row(POINT_AGG_5M),
        time_ms=lambda row: row["interval_end"],
    ),
    TableTransfer(
        stage_id="sync-point-agg-1d",
        name="Sincronizar agregados diarios",
        label="agregados diarios",
        target=POINT_AGG_1D,
        policy=ConflictPolicy.REPLACE,
        weight=3000,
        window=lambda since_ms: [_agg_1d.c.day >= DateTimeUtils.ms_to_day(since_ms)],
        cursor=lambda since_ms: CompositeCursor((_agg_1d.c.day, _agg_1d.c.system_id, _agg_1d.c.point_id)),
        map_row=_map_point_row(POINT_AGG_1D),
    ),
)


async def run_transfer(ctx: SyncContext, transfer: TableTransfer) -> StageResult:
    """
    Copia el rango [sync_from, ahora] de una tabla por paginas.

    Al terminar registra la ultima posicion copiada en sync_status.
    """
    since_ms = ctx.sync_from_ms
    expected = ctx.record_counts.get(transfer.stage_id, 0)
    paginator = CursorPaginator(
        ctx.source,
        select(transfer.table).where(*transfer.window(since_ms)),
        transfer.cursor(since_ms),
        ctx.options.page_size,
        ctx.cancel,
    )
    writer = _writer(ctx)

    processed = synced = skipped = 0
    first_ms: Optional[int] = None
    last_ms: Optional[int] = None
    last_day: Optional[str] = None

    async for batch in paginator.iter_batches():
        mapped = []
        for row in batch:
            out = transfer.map_row(ctx, row)
            if out is None:
                skipped += 1
            else:
                mapped.append(out)

        if mapped:
            synced += await writer.write_batch(transfer.target, mapped, transfer.policy)
        processed += len(batch)
        percent = int(stage_fraction(processed, expected) * 100)

        if transfer.time_ms is not None:
            batch_start = transfer.time_ms(batch[0])
            batch_end = transfer.time_ms(batch[-1])
            first_ms = batch_start if first_ms is None else min(first_ms, batch_start)
            last_ms = batch_end if last_ms is None else max(last_ms, batch_end)
            detail = format_window_detail(len(batch), batch_start, batch_end, percent)
        else:
            batch_day = max(row["day"] for row in batch)
            last_day = batch_day if last_day is None else max(last_day, batch_day)
            detail = format_count_detail(processed, expected, percent)
        ctx.tracker.tick(transfer.stage_id, processed, expected, detail)

    if last_ms is not None:
        await record_sync_position(ctx.target, transfer.table.name, last_entry_ms=last_ms, now_ms=ctx.options.clock())
    elif last_day is not None:
        await record_sync_position(ctx.target, transfer.table.name, last_entry_date=last_day, now_ms=ctx.options.clock())

    detail = f"Sincronizados {synced:,} {transfer.label}"
    if first_ms is not None:
        detail += f" [{DateTimeUtils.format_range(first_ms, last_ms)}]"
    detail += _skipped_suffix(skipped)
    return StageResult(detail, ContextDelta(synced=synced))


def _transfer_executor(transfer: TableTransfer):
    async def execute(ctx: SyncContext) -> StageResult:
        return await run_transfer(ctx, transfer)
    return execute


# ---------------------------------------------------------------------------
# Etapas de metadatos
# ---------------------------------------------------------------------------

async def _count(conn, stmt) -> int:
    return (await conn.execute(stmt)).scalar() or 0


async def prepare(ctx: SyncContext) -> StageResult:
    """Estado local + conexion a produccion + mapeo de usuarios."""
    async with ctx.target.connect() as conn:
        systems = await _count(conn, select(func.count()).select_from(SystemModel.__table__))
        readings = await _count(conn, select(func.count()).select_from(_point_readings))
        latest = (await conn.execute(select(func.max(_point_readings.c.measurement_time)))).scalar()

    source = ctx.options.source_factory()
    try:
        await source.open()
        identities = await ExternalIdentityMapper.load(ctx.target)
    except Exception:
        await source.close()
        raise

    detail = (
        f"Local: {systems} sistemas, {readings:,} lecturas, ultima {DateTimeUtils.format_ms(latest)}; "
        f"{len(identities)} mapeos de usuario"
    )
    return StageResult(detail, ContextDelta(source=source, identities=identities, local_latest_ms=latest))


async def sync_systems(ctx: SyncContext) -> StageResult:
    """
    Empareja sistemas por (vendor_type, vendor_site_id).

    Un sistema cuyo dueño no tiene mapeo se omite aunque exista en destino:
    sin dueño traducible no se toca ninguna fila.
    """
    source_rows = await ctx.source.fetch_all(
        select(SystemModel.__table__).order_by(SystemModel.__table__.c.id), what="systems"
    )
    async with ctx.target.connect() as conn:
        result = await conn.execute(select(SystemModel.__table__).order_by(SystemModel.__table__.c.id))
        target_rows = [dict(r) for r in result.mappings().all()]

    owners: dict[int, str] = {}
    skipped = 0
    for row in source_rows:
        owner = ctx.identities.map(row["owner_user_id"])
        if owner is None:
            skipped += 1
            logger.warning(f"[sync] Sistema {row['id']} ({row['display_name']}) omitido: dueño sin mapeo")
            continue
        owners[row["id"]] = owner

    eligible = [row for row in source_rows if row["id"] in owners]
    natural_key = lambda r: (r["vendor_type"], r["vendor_site_id"])  # noqa: E731
    system_map, unmatched = build_entity_map(
        eligible,
        target_rows,
        kind="system",
        source_key=natural_key,
        target_key=natural_key,
        source_id=lambda r: r["id"],
        target_id=lambda r: r["id"],
    )
    by_id = {row["id"]: row for row in eligible}
    refreshed = len(system_map)

    table = SystemModel.__table__
    async with ctx.target.begin() as conn:
        for source_id, target_id in list(system_map.items()):
            row = by_id[source_id]
            values = {f: row[f] for f in SYSTEM_MUTABLE_FIELDS}
            await conn.execute(
                update(table).where(table.c.id == target_id).values(owner_user_id=owners[source_id], **values)
            )
        for row in unmatched:
            result = await conn.execute(insert(table).values(**SYSTEMS.row_from(row, owner_user_id=owners[row["id"]])))
            system_map.set(row["id"], result.inserted_primary_key[0])

    ctx.tracker.send(MappingsEvent(
        system_mappings=system_map.summaries({r["id"]: r["display_name"] for r in eligible}),
        user_mappings=ctx.identities.summaries(),
    ))
    detail = f"{len(unmatched)} creados, {refreshed} actualizados" + _skipped_suffix(skipped)
    return StageResult(detail, ContextDelta(systems=system_map))


async def sync_points(ctx: SyncContext) -> StageResult:
    """
    Empareja puntos por (sistema destino, origin_id, origin_sub_id).

    Los puntos nuevos reciben el siguiente id libre dentro de su sistema.
    """
    table = PointInfoModel.__table__
    async with ctx.target.connect() as conn:
        result = await conn.execute(select(table).order_by(table.c.system_id, table.c.id))
        target_rows = [dict(r) for r in result.mappings().all()]

    next_id: dict[int, int] = {}
    for row in target_rows:
        next_id[row["system_id"]] = max(next_id.get(row["system_id"], 0), row["id"])

    expected = await ctx.source.scalar(select(func.count()).select_from(table), what="point_info") or 0
    paginator = CursorPaginator(
        ctx.source,
        select(table),
        CompositeCursor((table.c.system_id, table.c.id)),
        ctx.options.page_size,
        ctx.cancel,
    )
    writer = _writer(ctx)
    point_map: EntityIdMap = EntityIdMap("point")
    processed = created = refreshed = skipped = 0

    async for batch in paginator.iter_batches():
        resolvable = []
        for row in batch:
            if ctx.systems.get(row["system_id"]) is None:
                skipped += 1
            else:
                resolvable.append(row)

        _, unmatched = build_entity_map(
            resolvable,
            target_rows,
            kind="point",
            source_key=lambda r: (ctx.systems.get(r["system_id"]), r["origin_id"], r["origin_sub_id"]),
            target_key=lambda r: (r["system_id"], r["origin_id"], r["origin_sub_id"]),
            source_id=lambda r: (r["system_id"], r["id"]),
            target_id=lambda r: (r["system_id"], r["id"]),
            into=point_map,
        )

        unmatched_ids = {(r["system_id"], r["id"]) for r in unmatched}
        matched = [r for r in resolvable if (r["system_id"], r["id"]) not in unmatched_ids]
        if matched:
            async with ctx.target.begin() as conn:
                for row in matched:
                    system_id, point_id = point_map.get((row["system_id"], row["id"]))
                    await conn.execute(
                        update(table)
                        .where(table.c.system_id == system_id, table.c.id == point_id)
                        .values(**{f: row[f] for f in POINT_MUTABLE_FIELDS})
                    )
            refreshed += len(matched)

        new_rows = []
        for row in unmatched:
            system_id = ctx.systems.get(row["system_id"])
            point_id = next_id.get(system_id, 0) + 1
            next_id[system_id] = point_id
            new_row = POINT_INFO.row_from(row, system_id=system_id, id=point_id)
            new_rows.append(new_row)
            target_rows.append(new_row)
            point_map.set((row["system_id"], row["id"]), (system_id, point_id))
        if new_rows:
            await writer.write_batch(POINT_INFO, new_rows, ConflictPolicy.IGNORE)
            created += len(new_rows)

        processed += len(batch)
        percent = int(stage_fraction(processed, expected) * 100)
        ctx.tracker.tick("sync-points", processed, expected, format_count_detail(processed, expected, percent))

    detail = f"{created} creados, {refreshed} actualizados" + _skipped_suffix(skipped)
    return StageResult(detail, ContextDelta(points=point_map))


async def count_data(ctx: SyncContext) -> StageResult:
    """Resuelve el inicio del sync y cuenta registros por tabla."""
    since_ms = await resolve_sync_from_ms(ctx.target, ctx.lookback, ctx.options.clock())
    counts: dict[str, int] = {}
    for transfer in TRANSFERS:
        stmt = select(func.count()).select_from(transfer.table).where(*transfer.window(since_ms))
        counts[transfer.stage_id] = await ctx.source.scalar(stmt, what=transfer.table.name) or 0

    total = sum(counts.values())
    logger.info(f"[sync] Conteos desde {DateTimeUtils.format_ms(since_ms)}: {counts}")
    detail = f"{total:,} registros por sincronizar desde {DateTimeUtils.format_ms(since_ms)} ({ctx.lookback.describe()})"
    if ctx.local_latest_ms is not None:
        detail += f"; ultimo dato local {DateTimeUtils.format_ms(ctx.local_latest_ms)}"
    return StageResult(detail, ContextDelta(sync_from_ms=since_ms, record_counts=counts))


async def sync_user_systems(ctx: SyncContext) -> StageResult:
    """Accesos usuario <-> sistema; se omiten si falta usuario o sistema."""
    source_rows = await ctx.source.fetch_all(
        select(UserSystemModel.__table__).order_by(UserSystemModel.__table__.c.id), what="user_systems"
    )
    rows = []
    skipped = 0
    for row in source_rows:
        user_id = ctx.identities.map(row["user_id"])
        system_id = ctx.systems.get(row["system_id"])
        if user_id is None or system_id is None:
            skipped += 1
            continue
        rows.append(USER_SYSTEMS.row_from(row, user_id=user_id, system_id=system_id))

    written = await _writer(ctx).write_batch(USER_SYSTEMS, rows, ConflictPolicy.REPLACE)
    return StageResult(f"{written} accesos sincronizados" + _skipped_suffix(skipped))


async def finalise(ctx: SyncContext) -> StageResult:
    """Cierra la conexion a produccion y resume el estado local."""
    if ctx.source is not None:
        await ctx.source.close()
    async with ctx.target.connect() as conn:
        systems = await _count(conn, select(func.count()).select_from(SystemModel.__table__))
        readings = await _count(conn, select(func.count()).select_from(_point_readings))
    return StageResult(f"Local: {systems} sistemas, {readings:,} lecturas de puntos")


def build_sync_stages() -> list[StageDefinition]:
    stages = [
        StageDefinition("prepare", "Preparar", prepare, modifies_metadata=True, estimated_weight=1000),
        StageDefinition("sync-systems", "Sincronizar sistemas", sync_systems, modifies_metadata=True, estimated_weight=200),
        StageDefinition("sync-points", "Sincronizar puntos", sync_points, modifies_metadata=True, estimated_weight=300),
        StageDefinition("count-data", "Contar datos", count_data, estimated_weight=300, counts_records=True),
    ]
    stages.extend(
        StageDefinition(t.stage_id, t.name, _transfer_executor(t), estimated_weight=t.weight)
        for t in TRANSFERS
    )
    stages.extend([
        StageDefinition("sync-user-systems", "Sincronizar accesos", sync_user_systems, modifies_metadata=True, estimated_weight=100),
        StageDefinition("finalise", "Finalizar", finalise, modifies_metadata=True, estimated_weight=50),
    ])
    return stages
