from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence

from .acquisition import OversamplingMode
from .calibration import CalibrationCoefficients
from .transport import BMP180_ADDRESS


@dataclass
class BusConfig:
    bus: int = 1
    address: int = BMP180_ADDRESS


@dataclass
class SimulatorConfig:
    raw_temperature: int = 27898
    raw_pressure: int = 23843
    calibration: Optional[CalibrationCoefficients] = None


@dataclass
class SensorConfig:
    name: str = "BMP180"
    mode: str = "ULTRA_LOW_POWER"
    interval_ms: float = 10.0
    stats_log_interval: float = 60.0
    bus: BusConfig = field(default_factory=BusConfig)
    simulator: SimulatorConfig = field(default_factory=SimulatorConfig)

    def __post_init__(self) -> None:
        self.mode = OversamplingMode.parse(self.mode).name
        if self.interval_ms < 0:
            raise ValueError(f"interval_ms must be non-negative, got {self.interval_ms}")

    @property
    def mode_enum(self) -> OversamplingMode:
        return OversamplingMode[self.mode]

    @property
    def interval_sec(self) -> float:
        return self.interval_ms / 1000.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SensorConfig":
        bus_data = data.get("bus") or {}
        sim_data = data.get("simulator") or {}
        calib_data = sim_data.get("calibration")
        return cls(
            name=str(data.get("name", "BMP180")),
            mode=str(data.get("mode", "ULTRA_LOW_POWER")),
            interval_ms=float(data.get("interval_ms", 10.0)),
            stats_log_interval=float(data.get("stats_log_interval", 60.0)),
            bus=BusConfig(
                bus=int(bus_data.get("bus", 1)),
                address=_parse_address(bus_data.get("address", BMP180_ADDRESS)),
            ),
            simulator=SimulatorConfig(
                raw_temperature=int(sim_data.get("raw_temperature", 27898)),
                raw_pressure=int(sim_data.get("raw_pressure", 23843)),
                calibration=CalibrationCoefficients.from_mapping(calib_data) if calib_data else None,
            ),
        )


def _parse_address(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 0)
    return int(value)


def _scalar(text: str) -> Any:
    lowered = text.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    for convert in (lambda s: int(s, 0), float):
        try:
            return convert(text)
        except ValueError:
            continue
    return text


def apply_override(data: Dict[str, Any], item: str) -> None:
    """Set one dotted `key=value` pair in `data`, creating sections as needed."""

    key, sep, raw_value = item.partition("=")
    path = [part.strip() for part in key.split(".")]
    if not sep or not all(path):
        raise ValueError(f"Override '{item}' must look like section.key=value")
    section = data
    for part in path[:-1]:
        child = section.get(part)
        if not isinstance(child, dict):
            child = section[part] = {}
        section = child
    section[path[-1]] = _scalar(raw_value.strip())


def load_config(path: Path | str | None = None, overrides: Sequence[str] | None = None) -> SensorConfig:
    """
    Build a sensor configuration from an optional JSON file plus overrides.

    Overrides are dotted `key=value` pairs, e.g.:
        ["mode=standard", "bus.bus=0", "interval_ms=250"]

    Invalid modes or intervals raise ValueError here, before any driver exists.
    """
    data: Dict[str, Any] = {}
    if path is not None:
        with Path(path).open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    for item in overrides or []:
        apply_override(data, item)
    return SensorConfig.from_dict(data)
