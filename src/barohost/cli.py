"""Command line interface for the barohost package."""
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import List, Optional

import typer

from .bmp180.config import SensorConfig, load_config
from .bmp180.driver import BMP180Driver, Reading
from .bmp180.simulator import SimulatedBMP180
from .bmp180.transport import BusTransport, SMBusTransport, TransportError

logger = logging.getLogger(__name__)

app = typer.Typer(
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
    help="BMP180 barometric sensor host utilities.",
)


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level (DEBUG, INFO, ...)."),
) -> None:
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_config(
    config_path: Optional[Path],
    override: Optional[List[str]],
    mode: Optional[str],
    bus: Optional[int],
) -> SensorConfig:
    overrides = list(override or [])
    if mode is not None:
        overrides.append(f"mode={mode}")
    if bus is not None:
        overrides.append(f"bus.bus={bus}")
    try:
        return load_config(config_path, overrides or None)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _build_transport(cfg: SensorConfig, simulate: bool) -> BusTransport:
    if simulate:
        return SimulatedBMP180(
            calibration=cfg.simulator.calibration,
            raw_temperature=cfg.simulator.raw_temperature,
            raw_pressure=cfg.simulator.raw_pressure,
            address=cfg.bus.address,
        )
    return SMBusTransport(cfg.bus.bus)


def _build_driver(cfg: SensorConfig, transport: BusTransport) -> BMP180Driver:
    return BMP180Driver(
        transport,
        mode=cfg.mode_enum,
        interval=cfg.interval_sec,
        name=cfg.name,
        address=cfg.bus.address,
        stats_log_interval=cfg.stats_log_interval,
    )


def _format_reading(reading: Reading) -> str:
    temp = "n/a" if reading.temperature is None else f"{reading.temperature:.1f} C"
    pressure = "n/a" if reading.pressure is None else f"{reading.pressure:.0f} Pa"
    return f"temperature={temp} pressure={pressure}"


def _poll(driver: BMP180Driver, count: int, print_every: float) -> None:
    driver.register_error_callback(lambda exc: typer.echo(f"[error] {exc}", err=True))
    try:
        driver.start()
    except TransportError as exc:
        typer.echo(f"Failed to start {driver.name}: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    printed = 0
    try:
        while count <= 0 or printed < count:
            time.sleep(print_every)
            typer.echo(f"{driver.name} {_format_reading(driver.reading())}")
            printed += 1
    except KeyboardInterrupt:
        logger.info("Stopping %s (Ctrl+C)", driver.name)
    finally:
        driver.halt()
        driver.transport.close()
        stats = driver.stats()
        logger.info(
            "Final stats: cycles=%d temperature_errors=%d pressure_errors=%d compensation_errors=%d",
            stats["cycles"],
            stats["temperature_errors"],
            stats["pressure_errors"],
            stats["compensation_errors"],
        )


def _config_option():
    return typer.Option(None, "--config", "-c", help="Path to sensor config JSON.")


def _override_option():
    return typer.Option(None, "--set", help="Override config keys, e.g. --set mode=standard")


def _mode_option():
    return typer.Option(
        None,
        "--mode",
        "-m",
        help="Oversampling: ultra_low_power|standard|high_resolution|ultra_high_resolution (or 0-3).",
    )


def _bus_option():
    return typer.Option(None, "--bus", "-b", help="I2C bus number (/dev/i2c-N).")


def _simulate_option():
    return typer.Option(False, "--simulate", help="Use the built-in simulated sensor.")


@app.command()
def run(
    config_path: Optional[Path] = _config_option(),
    override: Optional[List[str]] = _override_option(),
    mode: Optional[str] = _mode_option(),
    bus: Optional[int] = _bus_option(),
    simulate: bool = _simulate_option(),
    count: int = typer.Option(0, "--count", "-n", help="Number of readings to print (0=until Ctrl+C)."),
    print_every: float = typer.Option(1.0, "--print-every", help="Seconds between printed readings."),
) -> None:
    """Poll the sensor in the background and print the latest readings."""

    cfg = _build_config(config_path, override, mode, bus)
    driver = _build_driver(cfg, _build_transport(cfg, simulate))
    _poll(driver, count, max(print_every, 0.0))


@app.command()
def read(
    config_path: Optional[Path] = _config_option(),
    override: Optional[List[str]] = _override_option(),
    mode: Optional[str] = _mode_option(),
    bus: Optional[int] = _bus_option(),
    simulate: bool = _simulate_option(),
) -> None:
    """Take a single temperature and pressure measurement."""

    cfg = _build_config(config_path, override, mode, bus)
    transport = _build_transport(cfg, simulate)
    driver = _build_driver(cfg, transport)
    try:
        driver.calibrate()
        reading = driver.measure()
    except TransportError as exc:
        typer.echo(f"Measurement failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    finally:
        transport.close()
    typer.echo(f"{driver.name} mode={driver.mode.name} {_format_reading(reading)}")


@app.command()
def calib(
    config_path: Optional[Path] = _config_option(),
    override: Optional[List[str]] = _override_option(),
    bus: Optional[int] = _bus_option(),
    simulate: bool = _simulate_option(),
) -> None:
    """Dump the factory calibration coefficients."""

    cfg = _build_config(config_path, override, None, bus)
    transport = _build_transport(cfg, simulate)
    driver = _build_driver(cfg, transport)
    try:
        coefficients = driver.calibrate()
    except TransportError as exc:
        typer.echo(f"Calibration read failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    finally:
        transport.close()
    for key, value in coefficients.as_dict().items():
        typer.echo(f"{key:>3} = {value}")


@app.command()
def demo(
    count: int = typer.Option(3, "--count", "-n", help="Number of readings to print."),
    mode: Optional[str] = _mode_option(),
    print_every: float = typer.Option(0.1, "--print-every", help="Seconds between printed readings."),
) -> None:
    """Run the poller against the simulated sensor (datasheet example values)."""

    cfg = _build_config(None, None, mode, None)
    driver = _build_driver(cfg, _build_transport(cfg, simulate=True))
    _poll(driver, max(count, 1), max(print_every, 0.0))


def run_app() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    run_app()
