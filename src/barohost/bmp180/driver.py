from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union

from .acquisition import OversamplingMode, acquire_raw_pressure, acquire_raw_temperature
from .calibration import CalibrationCoefficients, CalibrationStore
from .compensation import compensate_pressure, compensate_temperature
from .transport import BMP180_ADDRESS, BusTransport, TransportError

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SEC = 0.01

ErrorCallback = Callable[[Exception], None]


@dataclass(frozen=True)
class Reading:
    """Snapshot of the published measurements."""

    temperature: Optional[float]
    pressure: Optional[float]
    cycles: int = 0


class _Halted(Exception):
    """Internal signal: the stop event fired during a wait point."""


class BMP180Driver:
    """
    Polls a BMP180 in a background thread and publishes compensated readings.

    `start()` loads calibration synchronously and raises on failure; once
    running, transport failures and compensation faults are queued to the
    registered error callbacks, which a separate dispatcher thread invokes so a
    slow callback never delays acquisition; the loop carries on at the next
    interval.
    """

    def __init__(
        self,
        transport: BusTransport,
        mode: Union[OversamplingMode, int, str] = OversamplingMode.ULTRA_LOW_POWER,
        interval: float = DEFAULT_INTERVAL_SEC,
        name: str = "BMP180",
        address: int = BMP180_ADDRESS,
        stats_log_interval: float = 60.0,
    ) -> None:
        if interval < 0:
            raise ValueError("interval must be non-negative")
        self._transport = transport
        self._address = address
        self._interval = float(interval)
        self._name = name
        self._mode = OversamplingMode.parse(mode)
        self._calibration = CalibrationStore()
        self._stats_log_interval = stats_log_interval
        self._state_lock = threading.Lock()
        self._bus_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._dispatcher: Optional[threading.Thread] = None
        self._errors: "queue.Queue[Optional[Exception]]" = queue.Queue()
        self._callbacks: List[ErrorCallback] = []
        self._temperature: Optional[float] = None
        self._pressure: Optional[float] = None
        self._cycles = 0
        self._temperature_errors = 0
        self._pressure_errors = 0
        self._compensation_errors = 0
        self.last_exception: Optional[Exception] = None

    @property
    def name(self) -> str:
        return self._name

    def set_name(self, name: str) -> None:
        self._name = name

    @property
    def transport(self) -> BusTransport:
        return self._transport

    @property
    def address(self) -> int:
        return self._address

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def mode(self) -> OversamplingMode:
        with self._state_lock:
            return self._mode

    def set_mode(self, mode: Union[OversamplingMode, int, str]) -> None:
        """Change oversampling; a running poller picks it up on its next cycle."""
        parsed = OversamplingMode.parse(mode)
        with self._state_lock:
            self._mode = parsed
        logger.info("%s: oversampling mode set to %s", self._name, parsed.name)

    @property
    def calibration(self) -> CalibrationCoefficients:
        return self._calibration.coefficients

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def temperature(self) -> Optional[float]:
        with self._state_lock:
            return self._temperature

    @property
    def pressure(self) -> Optional[float]:
        with self._state_lock:
            return self._pressure

    def reading(self) -> Reading:
        with self._state_lock:
            return Reading(self._temperature, self._pressure, self._cycles)

    def stats(self) -> Dict[str, int]:
        with self._state_lock:
            return {
                "cycles": self._cycles,
                "temperature_errors": self._temperature_errors,
                "pressure_errors": self._pressure_errors,
                "compensation_errors": self._compensation_errors,
            }

    def register_error_callback(self, callback: ErrorCallback) -> None:
        self._callbacks.append(callback)

    def unregister_error_callback(self, callback: ErrorCallback) -> None:
        try:
            self._callbacks.remove(callback)
        except ValueError:
            pass

    def _report(self, exc: Exception) -> None:
        self.last_exception = exc
        self._errors.put_nowait(exc)

    def _dispatch(self) -> None:
        while True:
            exc = self._errors.get()
            if exc is None:
                break
            for callback in list(self._callbacks):
                try:
                    callback(exc)
                except Exception:
                    logger.exception("%s: error callback raised", self._name)

    def calibrate(self) -> CalibrationCoefficients:
        """Open the bus and load calibration without starting the poller."""
        with self._bus_lock:
            self._transport.open(self._address)
            return self._calibration.load(self._transport, self._address)

    def start(self) -> None:
        if self.running:
            raise RuntimeError(f"{self._name} is already running")
        self.calibrate()
        self._stop_event.clear()
        if self._dispatcher is None or not self._dispatcher.is_alive():
            self._dispatcher = threading.Thread(
                target=self._dispatch, name=f"{self._name}-errors", daemon=True
            )
            self._dispatcher.start()
        self._thread = threading.Thread(target=self._run, name=f"{self._name}-poller", daemon=True)
        self._thread.start()
        logger.info(
            "%s: polling every %.3fs (mode=%s)", self._name, self._interval, self.mode.name
        )

    def stop(self) -> None:
        """Ask the poller to finish; it exits at its next cycle boundary or wait point."""
        self._stop_event.set()

    def halt(self, timeout: Optional[float] = 5.0) -> None:
        """Stop the poller, wait for it, then deliver any queued errors."""
        self.stop()
        thread = self._thread
        if thread is not None:
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("%s: poller did not stop within %.1fs", self._name, timeout or 0.0)
                return
        self._thread = None
        dispatcher = self._dispatcher
        if dispatcher is not None:
            self._errors.put_nowait(None)
            dispatcher.join(timeout=timeout)
            self._dispatcher = None
        logger.info("%s: halted", self._name)

    def measure(self) -> Reading:
        """Take one temperature/pressure sample synchronously without publishing it."""
        calib = self._calibration.coefficients
        mode = self.mode
        with self._bus_lock:
            raw_temp = acquire_raw_temperature(self._transport, self._address)
            raw_pressure = acquire_raw_pressure(self._transport, mode, self._address)
        return Reading(
            temperature=compensate_temperature(raw_temp, calib),
            pressure=compensate_pressure(raw_temp, raw_pressure, calib, mode),
        )

    def _run(self) -> None:
        next_log = time.monotonic() + self._stats_log_interval
        while not self._stop_event.is_set():
            try:
                self._cycle()
            except _Halted:
                break
            if time.monotonic() >= next_log:
                self._emit_stats()
                next_log = time.monotonic() + self._stats_log_interval
            if self._stop_event.wait(self._interval):
                break

    def _cycle(self) -> None:
        calib = self._calibration.coefficients
        with self._state_lock:
            mode = self._mode
        with self._bus_lock:
            try:
                raw_temp = acquire_raw_temperature(self._transport, self._address, sleep=self._wait)
            except TransportError as exc:
                with self._state_lock:
                    self._temperature_errors += 1
                logger.warning("%s: temperature read failed: %s", self._name, exc)
                self._report(exc)
                return
            try:
                temperature = compensate_temperature(raw_temp, calib)
            except ArithmeticError as exc:
                self._compensation_failed("temperature", raw_temp, exc)
                return
            with self._state_lock:
                self._temperature = temperature
            try:
                raw_pressure = acquire_raw_pressure(
                    self._transport, mode, self._address, sleep=self._wait
                )
            except TransportError as exc:
                with self._state_lock:
                    self._pressure_errors += 1
                logger.warning("%s: pressure read failed: %s", self._name, exc)
                self._report(exc)
                return
        try:
            pressure = compensate_pressure(raw_temp, raw_pressure, calib, mode)
        except ArithmeticError as exc:
            self._compensation_failed("pressure", raw_pressure, exc)
            return
        with self._state_lock:
            self._pressure = pressure
            self._cycles += 1

    def _compensation_failed(self, quantity: str, raw: int, exc: ArithmeticError) -> None:
        with self._state_lock:
            self._compensation_errors += 1
        logger.exception("%s: %s compensation failed for raw value %d", self._name, quantity, raw)
        self._report(exc)

    def _wait(self, seconds: float) -> None:
        if self._stop_event.wait(seconds):
            raise _Halted()

    def _emit_stats(self) -> None:
        stats = self.stats()
        logger.info(
            "%s: cycles=%d temperature_errors=%d pressure_errors=%d compensation_errors=%d",
            self._name,
            stats["cycles"],
            stats["temperature_errors"],
            stats["pressure_errors"],
            stats["compensation_errors"],
        )

