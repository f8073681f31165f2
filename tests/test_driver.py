from __future__ import annotations

import threading
import time
from typing import Callable, List, Optional

import pytest

from barohost.bmp180.acquisition import OversamplingMode
from barohost.bmp180.calibration import NotCalibratedError
from barohost.bmp180.compensation import compensate_pressure, compensate_temperature
from barohost.bmp180.driver import BMP180Driver, Reading
from barohost.bmp180.simulator import DATASHEET_CALIBRATION, SimulatedBMP180
from barohost.bmp180.transport import TransportError

SINGULAR_RAW_TEMPERATURE = 20285  # X1 + MD == 0 with the datasheet calibration


def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def sim() -> SimulatedBMP180:
    return SimulatedBMP180()


def test_start_publishes_datasheet_values(sim: SimulatedBMP180) -> None:
    driver = BMP180Driver(sim, interval=0.01)
    driver.start()
    try:
        assert wait_for(lambda: driver.stats()["cycles"] >= 1)
        assert driver.temperature == 15.0
        assert driver.pressure == 69964.0
        assert driver.running
        assert sim.opened
    finally:
        driver.halt()
    assert not driver.running


def test_start_failure_keeps_driver_idle(sim: SimulatedBMP180) -> None:
    sim.fail_next("calibration")
    driver = BMP180Driver(sim, interval=0.01)
    with pytest.raises(TransportError):
        driver.start()
    assert not driver.running
    time.sleep(0.05)
    assert driver.reading() == Reading(temperature=None, pressure=None, cycles=0)
    assert sim.commands == []
    with pytest.raises(NotCalibratedError):
        driver.calibration


def test_open_failure_is_raised(sim: SimulatedBMP180) -> None:
    sim.fail_next("open")
    driver = BMP180Driver(sim)
    with pytest.raises(TransportError):
        driver.start()
    assert not driver.running
    assert sim.reads == []


def test_pressure_failure_keeps_temperature_and_previous_pressure(sim: SimulatedBMP180) -> None:
    driver = BMP180Driver(sim, interval=0.5)
    errors: List[TransportError] = []
    seen: List[Reading] = []
    reported = threading.Event()

    def on_error(exc: TransportError) -> None:
        errors.append(exc)
        seen.append(driver.reading())
        reported.set()

    driver.register_error_callback(on_error)
    driver.start()
    try:
        assert wait_for(lambda: driver.stats()["cycles"] >= 1)
        sim.raw_temperature = 29000
        sim.fail_next("pressure")
        assert reported.wait(2.0)
        snapshot = seen[0]
        assert snapshot.temperature == compensate_temperature(29000, DATASHEET_CALIBRATION)
        assert snapshot.temperature != 15.0
        assert snapshot.pressure == 69964.0

        cycles = snapshot.cycles
        assert wait_for(lambda: driver.stats()["cycles"] > cycles)
        assert driver.pressure == compensate_pressure(
            29000, 23843, DATASHEET_CALIBRATION, OversamplingMode.ULTRA_LOW_POWER
        )
    finally:
        driver.halt()
    assert len(errors) == 1
    assert driver.stats()["pressure_errors"] == 1
    assert driver.last_exception is errors[0]


def test_temperature_failure_skips_cycle(sim: SimulatedBMP180) -> None:
    sim.fail_next("temperature")
    driver = BMP180Driver(sim, interval=0.01)
    errors: List[TransportError] = []
    driver.register_error_callback(errors.append)
    driver.start()
    try:
        assert wait_for(lambda: driver.stats()["cycles"] >= 1)
    finally:
        driver.halt()
    assert len(errors) == 1
    assert driver.stats()["temperature_errors"] == 1
    assert driver.temperature == 15.0


def test_raising_callback_does_not_stop_poller(sim: SimulatedBMP180) -> None:
    sim.fail_next("temperature")
    driver = BMP180Driver(sim, interval=0.01)

    def broken(_exc: TransportError) -> None:
        raise RuntimeError("sink failure")

    driver.register_error_callback(broken)
    driver.start()
    try:
        assert wait_for(lambda: driver.stats()["cycles"] >= 2)
    finally:
        driver.halt()


def test_unregister_error_callback(sim: SimulatedBMP180) -> None:
    driver = BMP180Driver(sim, interval=0.01)
    errors: List[TransportError] = []
    driver.register_error_callback(errors.append)
    driver.unregister_error_callback(errors.append)
    driver.unregister_error_callback(errors.append)
    sim.fail_next("temperature")
    driver.start()
    try:
        assert wait_for(lambda: driver.stats()["temperature_errors"] == 1)
    finally:
        driver.halt()
    assert errors == []


def test_halt_interrupts_interval_wait(sim: SimulatedBMP180) -> None:
    driver = BMP180Driver(sim, interval=30.0)
    driver.start()
    assert wait_for(lambda: driver.stats()["cycles"] >= 1)
    started = time.monotonic()
    driver.halt()
    assert time.monotonic() - started < 1.0
    assert not driver.running


def test_readings_are_stable_between_cycles(sim: SimulatedBMP180) -> None:
    driver = BMP180Driver(sim, interval=0.01)
    driver.start()
    assert wait_for(lambda: driver.stats()["cycles"] >= 1)
    driver.halt()
    reads = len(sim.reads)
    first = driver.reading()
    assert all(driver.reading() == first for _ in range(5))
    assert driver.temperature == first.temperature
    assert driver.pressure == first.pressure
    assert len(sim.reads) == reads


def test_mode_change_applies_on_next_cycle(sim: SimulatedBMP180) -> None:
    driver = BMP180Driver(sim, mode="standard", interval=0.01)
    driver.start()
    try:
        assert wait_for(lambda: driver.stats()["cycles"] >= 1)
        assert 0x74 in sim.commands
        driver.set_mode(OversamplingMode.ULTRA_HIGH_RESOLUTION)
        assert driver.mode is OversamplingMode.ULTRA_HIGH_RESOLUTION
        assert wait_for(lambda: 0xF4 in sim.commands)
        cycles = driver.stats()["cycles"]
        assert wait_for(lambda: driver.stats()["cycles"] > cycles + 1)
    finally:
        driver.halt()
    expected = compensate_pressure(27898, 23843, DATASHEET_CALIBRATION, 3)
    assert driver.pressure == expected
    pressure_commands = [cmd for cmd in sim.commands if cmd != 0x2E]
    assert set(pressure_commands) <= {0x74, 0xF4}


def test_start_twice_raises(sim: SimulatedBMP180) -> None:
    driver = BMP180Driver(sim, interval=0.01)
    driver.start()
    try:
        with pytest.raises(RuntimeError):
            driver.start()
    finally:
        driver.halt()


def test_restart_reuses_calibration(sim: SimulatedBMP180) -> None:
    driver = BMP180Driver(sim, interval=0.01)
    driver.start()
    driver.halt()
    driver.start()
    try:
        assert wait_for(lambda: driver.stats()["cycles"] >= 1)
    finally:
        driver.halt()
    assert sim.reads.count("calibration") == 1


def test_measure_requires_calibration(sim: SimulatedBMP180) -> None:
    driver = BMP180Driver(sim)
    with pytest.raises(NotCalibratedError):
        driver.measure()
    driver.calibrate()
    reading = driver.measure()
    assert reading.temperature == 15.0
    assert reading.pressure == 69964.0
    assert driver.reading().pressure is None


def test_label_and_connection(sim: SimulatedBMP180) -> None:
    driver = BMP180Driver(sim)
    assert driver.name == "BMP180"
    driver.set_name("roof")
    assert driver.name == "roof"
    assert driver.transport is sim
    assert driver.address == 0x77


def test_negative_interval_rejected(sim: SimulatedBMP180) -> None:
    with pytest.raises(ValueError):
        BMP180Driver(sim, interval=-1)


def test_compensation_fault_is_reported_and_polling_continues(sim: SimulatedBMP180) -> None:
    sim.raw_temperature = SINGULAR_RAW_TEMPERATURE
    driver = BMP180Driver(sim, interval=0.01)
    errors: List[Exception] = []
    faulted = threading.Event()

    def on_error(exc: Exception) -> None:
        errors.append(exc)
        faulted.set()

    driver.register_error_callback(on_error)
    driver.start()
    try:
        assert faulted.wait(2.0)
        assert driver.running
        assert driver.reading() == Reading(temperature=None, pressure=None, cycles=0)
        sim.raw_temperature = 27898
        assert wait_for(lambda: driver.stats()["cycles"] >= 2)
        assert driver.running
    finally:
        driver.halt()
    assert isinstance(errors[0], ZeroDivisionError)
    assert driver.stats()["compensation_errors"] >= 1
    assert driver.stats()["temperature_errors"] == 0
    assert driver.temperature == 15.0
    assert driver.pressure == 69964.0


class _StopOnPressureCommand(SimulatedBMP180):
    def __init__(self) -> None:
        super().__init__()
        self.driver: Optional[BMP180Driver] = None
        self.commanded = threading.Event()

    def write(self, address: int, data: bytes) -> None:
        super().write(address, data)
        is_pressure = len(data) >= 2 and data[0] == 0xF4 and data[1] != 0x2E
        if is_pressure and not self.commanded.is_set():
            assert self.driver is not None
            self.driver.stop()
            self.commanded.set()


def test_halt_during_settle_delay_skips_result_read() -> None:
    sim = _StopOnPressureCommand()
    driver = BMP180Driver(sim, mode=OversamplingMode.ULTRA_HIGH_RESOLUTION, interval=30.0)
    sim.driver = driver
    driver.start()
    assert sim.commanded.wait(2.0)
    started = time.monotonic()
    driver.halt()
    assert time.monotonic() - started < 0.5
    assert not driver.running
    assert sim.commands[-1] == OversamplingMode.ULTRA_HIGH_RESOLUTION.pressure_command
    assert "pressure" not in sim.reads
    assert driver.reading() == Reading(temperature=15.0, pressure=None, cycles=0)


def test_slow_callback_does_not_delay_polling(sim: SimulatedBMP180) -> None:
    driver = BMP180Driver(sim, interval=0.01)
    entered = threading.Event()
    release = threading.Event()

    def slow(_exc: Exception) -> None:
        entered.set()
        release.wait(5.0)

    driver.register_error_callback(slow)
    sim.fail_next("temperature")
    driver.start()
    try:
        assert entered.wait(2.0)
        cycles = driver.stats()["cycles"]
        assert wait_for(lambda: driver.stats()["cycles"] >= cycles + 3)
        assert not release.is_set()
    finally:
        release.set()
        driver.halt()
    assert driver.stats()["temperature_errors"] == 1
