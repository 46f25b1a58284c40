"""
Modelos de base de datos (ORM).

Las mismas definiciones describen la base de produccion (origen) y la local
(destino). Los IDs autoincrementales difieren entre ambas; el pipeline los
traduce por claves naturales.

Convencion de tiempos: enteros epoch (ms) salvo `readings.inverter_time`
(segundos, tabla legacy) y `point_readings_agg_1d.day` (YYYY-MM-DD).
"""
from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from devsync.infrastructure.database.session import Base


class SystemModel(Base):
    """Sistema (inversor/sitio) de un proveedor."""

    __tablename__ = "systems"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # Identidad externa (proveedor de auth) del dueño de las credenciales
    owner_user_id = Column(String(255), nullable=True, index=True)
    vendor_type = Column(String(64), nullable=False)
    vendor_site_id = Column(String(255), nullable=False)
    status = Column(String(32), nullable=False, default="active")
    display_name = Column(String(255), nullable=False)
    model = Column(String(255), nullable=True)
    serial = Column(String(255), nullable=True)
    timezone_offset_min = Column(Integer, nullable=False, default=600)
    created_at = Column(BigInteger, nullable=False, default=0)
    updated_at = Column(BigInteger, nullable=False, default=0)

    __table_args__ = (
        Index("systems_vendor_site_idx", "vendor_type", "vendor_site_id"),
    )

    def __repr__(self):
        return f"<System(id={self.id}, vendor={self.vendor_type}:{self.vendor_site_id})>"


class PointInfoModel(Base):
    """
    Punto de monitoreo de un sistema.
    El id es local al sistema: la PK es (system_id, id).
    """

    __tablename__ = "point_info"

    system_id = Column(Integer, ForeignKey("systems.id", ondelete="CASCADE"), primary_key=True)
    id = Column(Integer, primary_key=True, autoincrement=False)
    origin_id = Column(String(255), nullable=False)
    origin_sub_id = Column(String(255), nullable=True)
    default_name = Column(String(255), nullable=False)
    display_name = Column(String(255), nullable=False)
    subsystem = Column(String(64), nullable=True)
    metric_type = Column(String(32), nullable=False)
    metric_unit = Column(String(16), nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(BigInteger, nullable=False, default=0)

    __table_args__ = (
        Index("pi_system_origin_idx", "system_id", "origin_id", "origin_sub_id"),
    )

    def __repr__(self):
        return f"<PointInfo(system_id={self.system_id}, id={self.id}, origin={self.origin_id})>"


class ReadingModel(Base):
    """Lecturas legacy por sistema (inverter_time en segundos)."""

    __tablename__ = "readings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    system_id = Column(Integer, ForeignKey("systems.id", ondelete="CASCADE"), nullable=False)
    inverter_time = Column(BigInteger, nullable=False)
    received_time = Column(BigInteger, nullable=False)
    solar_w = Column(Integer, nullable=True)
    load_w = Column(Integer, nullable=True)
    battery_w = Column(Integer, nullable=True)
    grid_w = Column(Integer, nullable=True)
    battery_soc = Column(Float, nullable=True)
    fault_code = Column(String(64), nullable=True)

    __table_args__ = (
        UniqueConstraint("system_id", "inverter_time", name="readings_system_inverter_time_unique"),
        Index("inverter_time_idx", "inverter_time"),
    )


class PointReadingModel(Base):
    """Lecturas crudas por punto (measurement_time en ms)."""

    __tablename__ = "point_readings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    system_id = Column(Integer, nullable=False)
    point_id = Column(Integer, nullable=False)
    measurement_time = Column(BigInteger, nullable=False)
    received_time = Column(BigInteger, nullable=False)
    value = Column(Float, nullable=True)
    error = Column(Text, nullable=True)
    data_quality = Column(String(16), nullable=False, default="good")

    __table_args__ = (
        UniqueConstraint("system_id", "point_id", "measurement_time", name="pr_point_time_unique"),
        Index("pr_measurement_time_idx", "measurement_time"),
    )


class PointReadingAgg5mModel(Base):
    """Agregados de 5 minutos por punto (interval_end en ms)."""

    __tablename__ = "point_readings_agg_5m"

    system_id = Column(Integer, primary_key=True)
    point_id = Column(Integer, primary_key=True)
    interval_end = Column(BigInteger, primary_key=True)
    avg = Column(Float, nullable=True)
    min = Column(Float, nullable=True)
    max = Column(Float, nullable=True)
    last = Column(Float, nullable=True)
    sample_count = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)
    created_at = Column(BigInteger, nullable=False, default=0)
    updated_at = Column(BigInteger, nullable=False, default=0)

    __table_args__ = (
        Index("pra5m_interval_end_idx", "interval_end"),
    )


class PointReadingAgg1dModel(Base):
    """Agregados diarios por punto (day en formato YYYY-MM-DD)."""

    __tablename__ = "point_readings_agg_1d"

    system_id = Column(Integer, primary_key=True)
    point_id = Column(Integer, primary_key=True)
    day = Column(String(10), primary_key=True)
    avg = Column(Float, nullable=True)
    min = Column(Float, nullable=True)
    max = Column(Float, nullable=True)
    last = Column(Float, nullable=True)
    sample_count = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)
    created_at = Column(BigInteger, nullable=False, default=0)
    updated_at = Column(BigInteger, nullable=False, default=0)

    __table_args__ = (
        Index("pra1d_day_idx", "day"),
    )


class UserSystemModel(Base):
    """Relacion usuario (identidad externa) <-> sistema."""

    __tablename__ = "user_systems"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False)
    system_id = Column(Integer, ForeignKey("systems.id", ondelete="CASCADE"), nullable=False)
    role = Column(String(32), nullable=False, default="viewer")
    created_at = Column(BigInteger, nullable=False, default=0)
    updated_at = Column(BigInteger, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("user_id", "system_id", name="user_system_unique"),
    )


class UserIdMappingModel(Base):
    """
    Mapeo de identidades externas produccion -> desarrollo.

    Solo existe en bases de desarrollo y lo mantiene el operador: el pipeline
    nunca lo crea ni lo modifica.
    """

    __tablename__ = "user_id_mapping"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(255), nullable=False)
    prod_user_id = Column(String(255), nullable=False, unique=True)
    dev_user_id = Column(String(255), nullable=False, unique=True)
    created_at = Column(BigInteger, nullable=False, default=0)
    updated_at = Column(BigInteger, nullable=False, default=0)


class SyncStatusModel(Base):
    """Ultima posicion sincronizada por tabla (solo en desarrollo)."""

    __tablename__ = "sync_status"

    table_name = Column(String(64), primary_key=True)
    last_entry_ms = Column(BigInteger, nullable=True)
    last_entry_date = Column(String(10), nullable=True)
    updated_at = Column(BigInteger, nullable=False, default=0)
