"""
Durable device repository.

The repository is the source of truth for devices, measurements and the
error trail. All database failures surface as IngestionError with code
PERSISTENCE_FAILURE; callers decide whether a given write is fatal.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Optional, Sequence, Union

from sqlalchemy import event, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from errors.exceptions import persistence_failure
from storage.models import Base, Device, ErrorRecord, Measurement
from storage.snapshot import DeviceSnapshot, parse_time_span, utcnow

logger = logging.getLogger(__name__)

SENSOR_COUNT = 5


class DeviceRepository(ABC):
    """
    Abstract base class for device repositories.

    All methods are async to support non-blocking I/O.
    """

    @abstractmethod
    async def find_by_identifier(self, identifier: str) -> Optional[DeviceSnapshot]:
        """
        Look up a device by its external identifier.

        Returns:
            A snapshot of the device, or None when it is not provisioned

        Raises:
            IngestionError: PERSISTENCE_FAILURE if the query fails
        """
        pass

    @abstractmethod
    async def insert_measurement(
        self,
        device_id: int,
        latitude: float,
        longitude: float,
        distance: float,
        sensors: Sequence[Optional[float]] = (),
        recorded_at: Optional[datetime] = None,
    ) -> int:
        """
        Persist a measurement.

        Returns:
            The new measurement id

        Raises:
            IngestionError: PERSISTENCE_FAILURE if the insert fails
        """
        pass

    @abstractmethod
    async def insert_error(
        self,
        device_id: Optional[int],
        identifier: str,
        description: str,
        recorded_at: Optional[datetime] = None,
    ) -> int:
        """
        Append a row to the error trail.

        Returns:
            The new error record id

        Raises:
            IngestionError: PERSISTENCE_FAILURE if the insert fails
        """
        pass

    @abstractmethod
    async def touch_last_seen(
        self,
        device_id: int,
        when: datetime,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> None:
        """
        Record the time (and optionally the position) of the latest report.

        Raises:
            IngestionError: PERSISTENCE_FAILURE if the update fails
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Return True if the database answers; never raises."""
        pass

    async def dispose(self) -> None:
        """Release connections held by the repository."""
        return None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class SqlDeviceRepository(DeviceRepository):
    """
    SQLAlchemy implementation of the device repository.

    Works with any async driver SQLAlchemy supports; SQLite (aiosqlite) is
    the default and MySQL (aiomysql) the production target.

    Attributes:
        engine: Async engine owned by the repository
        session_factory: Factory for short-lived sessions, one per operation
    """

    def __init__(self, database_url: str, echo: bool = False, engine: Optional[AsyncEngine] = None):
        """
        Initialize the repository.

        Args:
            database_url: SQLAlchemy URL with an async driver
            echo: Log every SQL statement
            engine: Pre-built engine; database_url is ignored when given
        """
        self.database_url = database_url
        self.engine = engine or create_async_engine(database_url, echo=echo, pool_pre_ping=True)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        self.session_factory = async_sessionmaker(self.engine, expire_on_commit=False)

    @classmethod
    def from_settings(cls, settings) -> "SqlDeviceRepository":
        return cls(settings.database_url, echo=settings.database_echo)

    async def create_schema(self) -> None:
        """Create missing tables. Existing tables are left untouched."""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise persistence_failure(
                "Failed to create database schema", details={"error": str(e)}
            ) from e

    async def find_by_identifier(self, identifier: str) -> Optional[DeviceSnapshot]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(Device).where(Device.identifier == identifier)
                )
                device = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise persistence_failure(
                "Device lookup failed",
                details={"identifier": identifier, "error": str(e)}
            ) from e

        return device.to_snapshot() if device else None

    async def insert_measurement(
        self,
        device_id: int,
        latitude: float,
        longitude: float,
        distance: float,
        sensors: Sequence[Optional[float]] = (),
        recorded_at: Optional[datetime] = None,
    ) -> int:
        readings = list(sensors)[:SENSOR_COUNT]
        readings += [None] * (SENSOR_COUNT - len(readings))

        measurement = Measurement(
            device_id=device_id,
            recorded_at=recorded_at or utcnow(),
            latitude=latitude,
            longitude=longitude,
            distance=distance,
            sensor_1=readings[0],
            sensor_2=readings[1],
            sensor_3=readings[2],
            sensor_4=readings[3],
            sensor_5=readings[4],
        )
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(measurement)
                    await session.flush()
                    return measurement.id
        except SQLAlchemyError as e:
            raise persistence_failure(
                "Failed to insert measurement",
                details={"device_id": device_id, "error": str(e)}
            ) from e

    async def insert_error(
        self,
        device_id: Optional[int],
        identifier: str,
        description: str,
        recorded_at: Optional[datetime] = None,
    ) -> int:
        record = ErrorRecord(
            device_id=device_id,
            identifier=identifier,
            description=description,
            recorded_at=recorded_at or utcnow(),
        )
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(record)
                    await session.flush()
                    return record.id
        except SQLAlchemyError as e:
            raise persistence_failure(
                "Failed to insert error record",
                details={"identifier": identifier, "error": str(e)}
            ) from e

    async def touch_last_seen(
        self,
        device_id: int,
        when: datetime,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> None:
        values = {"last_seen": when}
        if latitude is not None and longitude is not None:
            values["latitude"] = latitude
            values["longitude"] = longitude
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await session.execute(
                        update(Device).where(Device.id == device_id).values(**values)
                    )
        except SQLAlchemyError as e:
            raise persistence_failure(
                "Failed to update device last seen",
                details={"device_id": device_id, "error": str(e)}
            ) from e

    async def register_device(
        self,
        identifier: str,
        name: str = "",
        max_offline_duration: Union[timedelta, str] = timedelta(0),
        last_seen: Optional[datetime] = None,
    ) -> DeviceSnapshot:
        """
        Provision a device.

        Devices are normally created by an external provisioning process;
        this exists for that process and for fixtures.
        """
        device = Device(
            identifier=identifier,
            name=name,
            max_offline_duration=parse_time_span(max_offline_duration),
            last_seen=last_seen or utcnow(),
        )
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(device)
                    await session.flush()
                    return device.to_snapshot()
        except SQLAlchemyError as e:
            raise persistence_failure(
                "Failed to register device",
                details={"identifier": identifier, "error": str(e)}
            ) from e

    async def health_check(self) -> bool:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            return False

    async def dispose(self) -> None:
        await self.engine.dispose()
