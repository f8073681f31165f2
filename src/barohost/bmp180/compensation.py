"""
Fixed-point compensation of raw BMP180 readings.

The arithmetic follows the manufacturer's published algorithm bit for bit:
every intermediate is an int32 (or uint32 where the datasheet says so),
right shifts on signed values are arithmetic, and division truncates toward
zero. numpy arrays give us those widths with silent two's-complement
wraparound; inputs may be scalars or array-likes of raw samples.
"""
from __future__ import annotations

from typing import Tuple, Union

import numpy as np

from .acquisition import OversamplingMode
from .calibration import CalibrationCoefficients

ArrayLike = Union[int, np.ndarray, list]
Result = Union[float, np.ndarray]


def _as_int32(values: ArrayLike) -> np.ndarray:
    return np.atleast_1d(np.asarray(values, dtype=np.int64)).astype(np.int32)


def _coeff(calib: CalibrationCoefficients, name: str) -> np.ndarray:
    return np.array([getattr(calib, name)], dtype=np.int32)


def _truncating_divide(numerator: np.ndarray, denominator: np.ndarray) -> np.ndarray:
    if np.any(denominator == 0):
        raise ZeroDivisionError("Compensation divisor is zero; calibration data is invalid")
    quotient = numerator // denominator
    remainder = numerator - quotient * denominator
    # floor division rounds toward -inf; step back toward zero when signs differ
    adjust = (remainder != 0) & ((numerator < 0) != (denominator < 0))
    return quotient + adjust.astype(numerator.dtype)


def _unwrap(values: np.ndarray, scalar: bool) -> Result:
    if scalar:
        return values.item()
    return values


def _b5(raw_temp: np.ndarray, calib: CalibrationCoefficients) -> np.ndarray:
    x1 = ((raw_temp - _coeff(calib, "ac6")) * _coeff(calib, "ac5")) >> 15
    x2 = _truncating_divide(_coeff(calib, "mc") << 11, x1 + _coeff(calib, "md"))
    return x1 + x2


def compute_b5(raw_temp: ArrayLike, calib: CalibrationCoefficients) -> Union[int, np.ndarray]:
    """Temperature intermediate shared by the temperature and pressure paths."""
    return _unwrap(_b5(_as_int32(raw_temp), calib), np.ndim(raw_temp) == 0)


def compensate_temperature(raw_temp: ArrayLike, calib: CalibrationCoefficients) -> Result:
    """Return temperature in degrees Celsius (0.1 degC resolution)."""

    b5 = _b5(_as_int32(raw_temp), calib)
    tenths = (b5 + 8) >> 4
    return _unwrap(tenths.astype(np.float64) / 10.0, np.ndim(raw_temp) == 0)


def compensate_pressure(
    raw_temp: ArrayLike,
    raw_pressure: ArrayLike,
    calib: CalibrationCoefficients,
    mode: Union[OversamplingMode, int, str],
) -> Result:
    """
    Return pressure in Pa.

    `raw_temp` must be the sample taken in the same cycle as `raw_pressure`;
    B5 is recomputed from it rather than cached.
    """

    oss = OversamplingMode.parse(mode).shift
    up = _as_int32(raw_pressure)
    b6 = _b5(_as_int32(raw_temp), calib) - 4000
    b6_sq = (b6 * b6) >> 12

    x1 = (_coeff(calib, "b2") * b6_sq) >> 11
    x2 = (_coeff(calib, "ac2") * b6) >> 11
    x3 = x1 + x2
    b3 = (((_coeff(calib, "ac1") * 4 + x3) << oss) + 2) >> 2

    x1 = (_coeff(calib, "ac3") * b6) >> 13
    x2 = (_coeff(calib, "b1") * b6_sq) >> 16
    x3 = ((x1 + x2) + 2) >> 2
    b4 = (_coeff(calib, "ac4").astype(np.uint32) * (x3 + 32768).astype(np.uint32)) >> 15
    if np.any(b4 == 0):
        raise ZeroDivisionError("Compensation divisor B4 is zero; calibration data is invalid")

    b7 = (up - b3).astype(np.uint32) * np.uint32(50000 >> oss)
    p = np.where(b7 < 0x80000000, (b7 << 1) // b4, (b7 // b4) << 1).astype(np.int32)

    x1 = (p >> 8) * (p >> 8)
    x1 = (x1 * 3038) >> 16
    x2 = (-7357 * p) >> 16
    pressure = p + ((x1 + x2 + 3791) >> 4)
    scalar = np.ndim(raw_temp) == 0 and np.ndim(raw_pressure) == 0
    return _unwrap(pressure.astype(np.float64), scalar)


def compensate(
    raw_temp: ArrayLike,
    raw_pressure: ArrayLike,
    calib: CalibrationCoefficients,
    mode: Union[OversamplingMode, int, str],
) -> Tuple[Result, Result]:
    """Temperature (degC) and pressure (Pa) from one raw sample pair."""
    return (
        compensate_temperature(raw_temp, calib),
        compensate_pressure(raw_temp, raw_pressure, calib, mode),
    )
