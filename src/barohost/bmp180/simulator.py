"""Register-level BMP180 model used by the demo command and the test-suite."""
from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional

from .acquisition import CONTROL_REGISTER, PRESSURE_COMMAND, TEMPERATURE_COMMAND, TEMPERATURE_REGISTER
from .calibration import CALIBRATION_REGISTER, CalibrationCoefficients
from .transport import BMP180_ADDRESS, BusTransport, TransportError

logger = logging.getLogger(__name__)

CHIP_ID_REGISTER = 0xD0
CHIP_ID = 0x55

# Worked example from the BMP180 datasheet.
DATASHEET_CALIBRATION = CalibrationCoefficients(
    ac1=408,
    ac2=-72,
    ac3=-14383,
    ac4=32741,
    ac5=32757,
    ac6=23153,
    b1=6190,
    b2=4,
    mb=-32767,
    mc=-8711,
    md=2868,
)
DATASHEET_RAW_TEMPERATURE = 27898
DATASHEET_RAW_PRESSURE = 23843


class SimulatedBMP180(BusTransport):
    """
    Emulates the sensor's register file behind the `BusTransport` interface.

    Writing `[0xF4, cmd]` latches a conversion whose result appears at 0xF6;
    a single-byte write selects the register for the following read. The raw
    pressure is presented as the device does, i.e. left-aligned in 24 bits
    (`raw_pressure << (8 - oss)`).

    Failures are injected per operation kind (`open`, `write`, `calibration`,
    `temperature`, `pressure`) with `fail_next`.
    """

    def __init__(
        self,
        calibration: Optional[CalibrationCoefficients] = None,
        raw_temperature: int = DATASHEET_RAW_TEMPERATURE,
        raw_pressure: int = DATASHEET_RAW_PRESSURE,
        address: int = BMP180_ADDRESS,
    ) -> None:
        self.calibration = calibration or DATASHEET_CALIBRATION
        self.raw_temperature = raw_temperature
        self.raw_pressure = raw_pressure
        self.address = address
        self.opened = False
        self.commands: List[int] = []
        self.reads: List[str] = []
        self._pointer = 0
        self._result = b"\x00\x00\x00"
        self._last_conversion: Optional[str] = None
        self._failures: Dict[str, int] = {}
        self._lock = threading.Lock()

    def fail_next(self, kind: str, count: int = 1) -> None:
        if kind not in {"open", "write", "calibration", "temperature", "pressure"}:
            raise ValueError(f"Unknown failure kind '{kind}'")
        with self._lock:
            self._failures[kind] = self._failures.get(kind, 0) + count

    def _consume_failure(self, kind: str) -> bool:
        remaining = self._failures.get(kind, 0)
        if remaining <= 0:
            return False
        self._failures[kind] = remaining - 1
        return True

    def open(self, address: int) -> None:
        with self._lock:
            self._check_address(address)
            if self._consume_failure("open"):
                raise TransportError("simulated open failure", address=address)
            self.opened = True

    def write(self, address: int, data: bytes) -> None:
        with self._lock:
            self._check_address(address)
            if self._consume_failure("write"):
                raise TransportError("simulated write failure", address=address)
            if not data:
                raise TransportError("empty write", address=address)
            self._pointer = data[0]
            if len(data) >= 2 and data[0] == CONTROL_REGISTER:
                self._convert(data[1])

    def read(self, address: int, count: int) -> bytes:
        with self._lock:
            self._check_address(address)
            kind = self._read_kind()
            self.reads.append(kind)
            if self._consume_failure(kind):
                raise TransportError(
                    f"simulated {kind} read failure", address=address, register=self._pointer
                )
            return self._register_bytes(self._pointer, count)

    def _check_address(self, address: int) -> None:
        if address != self.address:
            raise TransportError(f"No device acknowledged address 0x{address:02X}", address=address)

    def _read_kind(self) -> str:
        if self._pointer == CALIBRATION_REGISTER:
            return "calibration"
        if self._pointer == TEMPERATURE_REGISTER and self._last_conversion is not None:
            return self._last_conversion
        return "register"

    def _convert(self, command: int) -> None:
        self.commands.append(command)
        if command == TEMPERATURE_COMMAND:
            self._result = (self.raw_temperature & 0xFFFF).to_bytes(2, "big") + b"\x00"
            self._last_conversion = "temperature"
        elif command & 0x3F == PRESSURE_COMMAND:
            oss = command >> 6
            value = (self.raw_pressure << (8 - oss)) & 0xFFFFFF
            self._result = value.to_bytes(3, "big")
            self._last_conversion = "pressure"
        else:
            logger.debug("Ignoring unknown control command 0x%02X", command)

    def _register_bytes(self, register: int, count: int) -> bytes:
        image = bytearray(0x100)
        image[CALIBRATION_REGISTER : CALIBRATION_REGISTER + 22] = self.calibration.to_bytes()
        image[CHIP_ID_REGISTER] = CHIP_ID
        image[TEMPERATURE_REGISTER : TEMPERATURE_REGISTER + 3] = self._result
        end = register + count
        if end > len(image):
            raise TransportError(f"Read past end of register file (0x{register:02X}+{count})")
        return bytes(image[register:end])
