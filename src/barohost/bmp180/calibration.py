from __future__ import annotations

import logging
import struct
from dataclasses import asdict, dataclass, fields
from typing import Dict, Mapping, Optional

from .transport import BMP180_ADDRESS, BusTransport, read_register

logger = logging.getLogger(__name__)

CALIBRATION_REGISTER = 0xAA
CALIBRATION_SIZE = 22
# ac1..ac3 signed, ac4..ac6 unsigned, b1, b2, mb, mc, md signed
CALIBRATION_FORMAT = ">hhhHHHhhhhh"

_SIGNED_FIELDS = {"ac1", "ac2", "ac3", "b1", "b2", "mb", "mc", "md"}


class NotCalibratedError(RuntimeError):
    """Raised when a measurement is requested before calibration was loaded."""


@dataclass(frozen=True)
class CalibrationCoefficients:
    """Factory calibration constants stored in the sensor's EEPROM."""

    ac1: int
    ac2: int
    ac3: int
    ac4: int
    ac5: int
    ac6: int
    b1: int
    b2: int
    mb: int
    mc: int
    md: int

    def __post_init__(self) -> None:
        for item in fields(self):
            value = getattr(self, item.name)
            if item.name in _SIGNED_FIELDS:
                low, high = -0x8000, 0x7FFF
            else:
                low, high = 0, 0xFFFF
            if not low <= value <= high:
                raise ValueError(f"Calibration field {item.name}={value} outside [{low}, {high}]")

    @staticmethod
    def from_mapping(data: Mapping[str, object]) -> "CalibrationCoefficients":
        missing = [item.name for item in fields(CalibrationCoefficients) if item.name not in data]
        if missing:
            raise ValueError(f"Calibration mapping missing fields: {', '.join(missing)}")
        values = {item.name: int(data[item.name]) for item in fields(CalibrationCoefficients)}  # type: ignore[call-overload]
        return CalibrationCoefficients(**values)

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)

    def to_bytes(self) -> bytes:
        """Encode back into the 22-byte EEPROM layout."""
        return struct.pack(CALIBRATION_FORMAT, *(getattr(self, item.name) for item in fields(self)))


def decode_calibration(data: bytes) -> CalibrationCoefficients:
    """Parse the 22-byte calibration block as eleven big-endian words."""

    if len(data) != CALIBRATION_SIZE:
        raise ValueError(f"Calibration block must be {CALIBRATION_SIZE} bytes, got {len(data)}")
    return CalibrationCoefficients(*struct.unpack(CALIBRATION_FORMAT, bytes(data)))


class CalibrationStore:
    """Holds the coefficients of one device; populated once by `load`."""

    def __init__(self, coefficients: Optional[CalibrationCoefficients] = None) -> None:
        self._coefficients = coefficients

    @property
    def loaded(self) -> bool:
        return self._coefficients is not None

    @property
    def coefficients(self) -> CalibrationCoefficients:
        if self._coefficients is None:
            raise NotCalibratedError("Calibration coefficients have not been loaded")
        return self._coefficients

    def load(self, transport: BusTransport, address: int = BMP180_ADDRESS) -> CalibrationCoefficients:
        if self._coefficients is not None:
            logger.debug("Calibration already loaded, skipping bus read")
            return self._coefficients
        block = read_register(transport, address, CALIBRATION_REGISTER, CALIBRATION_SIZE)
        coefficients = decode_calibration(block)
        self._coefficients = coefficients
        logger.info(
            "Loaded calibration from 0x%02X (ac1=%d ac4=%d mc=%d md=%d)",
            address,
            coefficients.ac1,
            coefficients.ac4,
            coefficients.mc,
            coefficients.md,
        )
        return coefficients
