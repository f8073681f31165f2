from __future__ import annotations

import enum
import time
from typing import Callable, Union

from .transport import BMP180_ADDRESS, BusTransport, read_register

CONTROL_REGISTER = 0xF4
TEMPERATURE_COMMAND = 0x2E
TEMPERATURE_REGISTER = 0xF6
PRESSURE_COMMAND = 0x34
PRESSURE_REGISTER = 0xF6

TEMPERATURE_SETTLE_SEC = 0.005

_SETTLE_MS = {0: 5, 1: 8, 2: 14, 3: 26}

Sleeper = Callable[[float], object]


class OversamplingMode(enum.IntEnum):
    """Pressure oversampling ratio; the value is the `oss` shift amount."""

    ULTRA_LOW_POWER = 0
    STANDARD = 1
    HIGH_RESOLUTION = 2
    ULTRA_HIGH_RESOLUTION = 3

    @property
    def shift(self) -> int:
        return int(self.value)

    @property
    def settle_ms(self) -> int:
        return _SETTLE_MS[self.value]

    @property
    def settle_time(self) -> float:
        return self.settle_ms / 1000.0

    @property
    def pressure_command(self) -> int:
        return PRESSURE_COMMAND | (self.shift << 6)

    @classmethod
    def parse(cls, value: Union["OversamplingMode", int, str]) -> "OversamplingMode":
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            return cls(value)
        text = str(value).strip()
        if text.isdigit():
            return cls(int(text))
        key = text.upper().replace("-", "_").replace(" ", "_")
        try:
            return cls[key]
        except KeyError:
            names = ", ".join(member.name.lower() for member in cls)
            raise ValueError(f"Unknown oversampling mode '{value}'. Expected one of {names}") from None


def acquire_raw_temperature(
    transport: BusTransport,
    address: int = BMP180_ADDRESS,
    sleep: Sleeper = time.sleep,
) -> int:
    """Start a temperature conversion and return the signed 16-bit result."""

    transport.write(address, bytes([CONTROL_REGISTER, TEMPERATURE_COMMAND]))
    sleep(TEMPERATURE_SETTLE_SEC)
    data = read_register(transport, address, TEMPERATURE_REGISTER, 2)
    return int.from_bytes(data, "big", signed=True)


def acquire_raw_pressure(
    transport: BusTransport,
    mode: OversamplingMode,
    address: int = BMP180_ADDRESS,
    sleep: Sleeper = time.sleep,
) -> int:
    """
    Start a pressure conversion under `mode` and return the raw value.

    The 24-bit result is shifted right by `8 - oss`; the same `mode` drives
    the command byte, the settle time and the shift.
    """

    transport.write(address, bytes([CONTROL_REGISTER, mode.pressure_command]))
    sleep(mode.settle_time)
    msb, lsb, xlsb = read_register(transport, address, PRESSURE_REGISTER, 3)
    return ((msb << 16) | (lsb << 8) | xlsb) >> (8 - mode.shift)
