"""
Pydantic schemas for API request/response contracts.
"""
from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictFloat, StrictInt, StrictStr, field_validator


Number = Union[StrictInt, StrictFloat]


class ReadingIn(BaseModel):
    """One submitted reading. Unknown keys are kept as part of the reading."""

    model_config = ConfigDict(extra="allow", allow_inf_nan=False)

    ts: Number = Field(validation_alias=AliasChoices("ts", "timestamp"))
    value: Union[StrictInt, StrictFloat, StrictStr]
    device_id: StrictStr = "default"
    unit: Optional[StrictStr] = None

    @field_validator("ts")
    @classmethod
    def validate_ts_range(cls, value):
        # Stored as a signed 64-bit integer column.
        if not -(2 ** 63) <= int(value) < 2 ** 63:
            raise ValueError("ts is out of range")
        return value

    def to_record(self, ts_key: str = "ts") -> Dict[str, Any]:
        """Dump the reading, storing the timestamp under ``ts_key``."""
        record = self.model_dump()
        if ts_key != "ts":
            record[ts_key] = record.pop("ts")
        if record.get("unit") is None and "unit" not in self.model_fields_set:
            record.pop("unit", None)
        return record


class SettingsUpdate(BaseModel):
    """Partial settings record; only the keys provided are merged."""

    model_config = ConfigDict(extra="allow", allow_inf_nan=False)

    # Defaults are not validated, so an explicit null is rejected.
    warning_threshold: Number = None
    alert_threshold: Number = None

    def to_partial(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class IngestResponse(BaseModel):
    ok: bool = True
    added: int = 0


class SettingsResponse(BaseModel):
    ok: bool = True
    settings: Dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    ok: bool = True
    time: int


class DeviceOut(BaseModel):
    device_id: str
    name: str
    connected_at: int
    last_reading: Optional[Dict[str, Any]] = None


class ProxyResponse(BaseModel):
    status: int
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = None


class ErrorDetail(BaseModel):
    error: str
    message: Optional[str] = None
    errors: Optional[List[Dict[str, Any]]] = None
