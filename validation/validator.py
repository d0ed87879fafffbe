"""
Validation and sanitization of inbound telemetry records.

Records arrive as decoded JSON objects keyed by the device firmware's field
names (Identificador, Latitud, Longitud, Sensor_1..Sensor_5). The validator
reports every problem it finds instead of stopping at the first one, so a
single audit row can describe everything wrong with a payload.
"""

import math
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from pydantic import BaseModel

from config.settings import DEFAULT_OPTIONAL_FIELDS, DEFAULT_REQUIRED_FIELDS
from geo.calculator import GeoCalculator

IDENTIFIER_FIELD = "Identificador"
LATITUDE_FIELD = "Latitud"
LONGITUDE_FIELD = "Longitud"

MINIMUM_FIELDS = (IDENTIFIER_FIELD, LATITUDE_FIELD, LONGITUDE_FIELD)

_NUMERIC_PATTERN = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")


class FieldError(BaseModel):
    """
    A single validation problem.

    Attributes:
        field: Payload field the problem refers to
        message: Human-readable description stored in the audit trail
    """

    field: str
    message: str

    def __str__(self) -> str:
        return self.message


def is_blank(value: Any) -> bool:
    """Return True for values treated as absent: None and empty strings."""
    if value is None:
        return True
    return isinstance(value, str) and value.strip() == ""


def is_numeric(value: Any) -> bool:
    """
    Check whether a value can be used as a number.

    Integers and floats qualify (booleans do not), as do strings holding a
    finite decimal number such as "12.5" or "-3e2".
    """
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        try:
            return math.isfinite(value)
        except OverflowError:
            # int too large for a float
            return False
    if isinstance(value, str):
        text = value.strip()
        return bool(_NUMERIC_PATTERN.match(text)) and math.isfinite(float(text))
    return False


def _split(fields: str) -> List[str]:
    return [field.strip() for field in fields.split(",") if field.strip()]


class TelemetryValidator:
    """
    Structural and semantic validator for telemetry records.

    Attributes:
        required_fields: Fields that must be present and non-empty
        optional_fields: Fields that may be present and must be numeric when they are
        max_identifier_length: Upper bound on the identifier length
    """

    def __init__(
        self,
        required_fields: Optional[Sequence[str]] = None,
        optional_fields: Optional[Sequence[str]] = None,
        max_identifier_length: int = 255,
    ):
        self.required_fields = list(required_fields or _split(DEFAULT_REQUIRED_FIELDS))
        self.optional_fields = list(
            optional_fields if optional_fields is not None else _split(DEFAULT_OPTIONAL_FIELDS)
        )
        self.max_identifier_length = max_identifier_length

    @classmethod
    def from_settings(cls, settings: Any) -> "TelemetryValidator":
        """Build a validator from application settings."""
        return cls(
            required_fields=settings.required_field_list,
            optional_fields=settings.optional_field_list,
            max_identifier_length=settings.max_identifier_length,
        )

    @property
    def allowed_fields(self) -> List[str]:
        return self.required_fields + [
            field for field in self.optional_fields if field not in self.required_fields
        ]

    def validate(self, record: Mapping[str, Any]) -> List[FieldError]:
        """
        Validate a record and collect every problem found.

        Checks run in order and never short-circuit: required fields,
        identifier format, coordinate ranges, optional numeric fields.

        Args:
            record: Decoded payload

        Returns:
            List of field errors; empty when the record is valid
        """
        errors: List[FieldError] = []
        errors.extend(self._check_required(record))

        if not is_blank(record.get(IDENTIFIER_FIELD)):
            errors.extend(self._check_identifier(record[IDENTIFIER_FIELD]))

        if not is_blank(record.get(LATITUDE_FIELD)):
            errors.extend(self._check_coordinate(LATITUDE_FIELD, record[LATITUDE_FIELD], 90))

        if not is_blank(record.get(LONGITUDE_FIELD)):
            errors.extend(self._check_coordinate(LONGITUDE_FIELD, record[LONGITUDE_FIELD], 180))

        errors.extend(self._check_optional(record))
        return errors

    def _check_required(self, record: Mapping[str, Any]) -> Iterable[FieldError]:
        for field in self.required_fields:
            if is_blank(record.get(field)):
                yield FieldError(field=field, message=f"Field '{field}' is required")

    def _check_identifier(self, identifier: Any) -> Iterable[FieldError]:
        if isinstance(identifier, bool) or not isinstance(identifier, (str, int, float)):
            yield FieldError(
                field=IDENTIFIER_FIELD,
                message=f"{IDENTIFIER_FIELD} must be a string or a number",
            )
            return

        text = str(identifier).strip()
        if len(text) > self.max_identifier_length:
            yield FieldError(
                field=IDENTIFIER_FIELD,
                message=(
                    f"{IDENTIFIER_FIELD} cannot exceed "
                    f"{self.max_identifier_length} characters"
                ),
            )

    def _check_coordinate(self, field: str, value: Any, limit: int) -> Iterable[FieldError]:
        if not is_numeric(value):
            yield FieldError(field=field, message=f"{field} must be numeric")
            return

        try:
            number = float(value)
        except OverflowError:
            number = math.inf
        in_range = (
            GeoCalculator.valid_coordinates(number, 0)
            if field == LATITUDE_FIELD
            else GeoCalculator.valid_coordinates(0, number)
        )
        if not in_range:
            yield FieldError(
                field=field,
                message=f"{field} must be between -{limit} and {limit} degrees",
            )

    def _check_optional(self, record: Mapping[str, Any]) -> Iterable[FieldError]:
        for field in self.optional_fields:
            value = record.get(field)
            if not is_blank(value) and not is_numeric(value):
                yield FieldError(field=field, message=f"Field '{field}' must be numeric")

    def sanitize(self, record: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Return a copy of the record restricted to known fields.

        Unknown keys are dropped and string values are trimmed. The input is
        left untouched.
        """
        allowed = set(self.allowed_fields)
        sanitized: Dict[str, Any] = {}
        for key, value in record.items():
            if key not in allowed:
                continue
            sanitized[key] = value.strip() if isinstance(value, str) else value
        return sanitized

    @staticmethod
    def has_minimum_required_fields(record: Mapping[str, Any]) -> bool:
        """Check only that identifier, latitude and longitude are present."""
        return all(not is_blank(record.get(field)) for field in MINIMUM_FIELDS)

    def missing_fields(self, record: Mapping[str, Any]) -> List[str]:
        """List the required fields absent from the record, in configured order."""
        fields = self.required_fields + [f for f in MINIMUM_FIELDS if f not in self.required_fields]
        return [field for field in fields if is_blank(record.get(field))]
