"""
BMP180 barometric pressure/temperature sensor support.

The subpackage covers calibration decoding, the fixed-point compensation
algorithm, the command/wait/read acquisition sequence and a background
poller that publishes readings. The bus itself is abstracted behind
`BusTransport` so the same code runs against smbus2 or the simulator.
"""

from .acquisition import OversamplingMode, acquire_raw_pressure, acquire_raw_temperature
from .calibration import (
    CalibrationCoefficients,
    CalibrationStore,
    NotCalibratedError,
    decode_calibration,
)
from .compensation import compensate, compensate_pressure, compensate_temperature, compute_b5
from .config import SensorConfig, load_config
from .driver import BMP180Driver, Reading
from .simulator import SimulatedBMP180
from .transport import BMP180_ADDRESS, BusTransport, SMBusTransport, TransportError, read_register

__all__ = [
    "OversamplingMode",
    "acquire_raw_pressure",
    "acquire_raw_temperature",
    "CalibrationCoefficients",
    "CalibrationStore",
    "NotCalibratedError",
    "decode_calibration",
    "compensate",
    "compensate_pressure",
    "compensate_temperature",
    "compute_b5",
    "SensorConfig",
    "load_config",
    "BMP180Driver",
    "Reading",
    "SimulatedBMP180",
    "BMP180_ADDRESS",
    "BusTransport",
    "SMBusTransport",
    "TransportError",
    "read_register",
]
