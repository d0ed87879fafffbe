"""
Typed view of a validated telemetry record.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SENSOR_FIELDS = ("Sensor_1", "Sensor_2", "Sensor_3", "Sensor_4", "Sensor_5")


class TelemetryReport(BaseModel):
    """
    A sanitized record ready for ingestion.

    Built from the output of TelemetryValidator.sanitize(); field aliases match
    the payload keys sent by the devices.

    Attributes:
        identifier: Device identifier, always a string
        latitude: Reported latitude in degrees
        longitude: Reported longitude in degrees
        sensor_1..sensor_5: Optional sensor readings
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    identifier: str = Field(alias="Identificador")
    latitude: float = Field(alias="Latitud")
    longitude: float = Field(alias="Longitud")
    sensor_1: Optional[float] = Field(default=None, alias="Sensor_1")
    sensor_2: Optional[float] = Field(default=None, alias="Sensor_2")
    sensor_3: Optional[float] = Field(default=None, alias="Sensor_3")
    sensor_4: Optional[float] = Field(default=None, alias="Sensor_4")
    sensor_5: Optional[float] = Field(default=None, alias="Sensor_5")

    @field_validator("identifier", mode="before")
    @classmethod
    def coerce_identifier(cls, v: Any) -> str:
        """Numeric identifiers are stored as their string form."""
        if isinstance(v, float) and v.is_integer():
            v = int(v)
        return str(v).strip()

    @field_validator(
        "sensor_1", "sensor_2", "sensor_3", "sensor_4", "sensor_5", mode="before"
    )
    @classmethod
    def blank_sensor_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "TelemetryReport":
        """Build a report from a sanitized payload dictionary."""
        return cls.model_validate(record)

    @property
    def sensors(self) -> List[Optional[float]]:
        """The five sensor readings in order; absent readings are None."""
        return [self.sensor_1, self.sensor_2, self.sensor_3, self.sensor_4, self.sensor_5]
