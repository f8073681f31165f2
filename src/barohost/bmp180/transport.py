from __future__ import annotations

import abc
import logging
from typing import Optional

from smbus2 import SMBus, i2c_msg

logger = logging.getLogger(__name__)

BMP180_ADDRESS = 0x77


class TransportError(Exception):
    """A bus write or read failed."""

    def __init__(self, message: str, *, address: Optional[int] = None, register: Optional[int] = None):
        super().__init__(message)
        self.address = address
        self.register = register


class BusTransport(abc.ABC):
    """
    Addressed byte transport for a two-wire bus.

    Implementations raise `TransportError` on any failure. Register reads are
    composed from `write` and `read` by `read_register`.
    """

    @abc.abstractmethod
    def open(self, address: int) -> None:
        ...

    @abc.abstractmethod
    def write(self, address: int, data: bytes) -> None:
        ...

    @abc.abstractmethod
    def read(self, address: int, count: int) -> bytes:
        ...

    def close(self) -> None:
        pass


def read_register(transport: BusTransport, address: int, register: int, count: int) -> bytes:
    """Select `register` on the device and read `count` bytes back."""

    transport.write(address, bytes([register]))
    data = transport.read(address, count)
    if len(data) != count:
        raise TransportError(
            f"Short read from register 0x{register:02X} (expected {count}, got {len(data)})",
            address=address,
            register=register,
        )
    return data


class SMBusTransport(BusTransport):
    """Linux I2C character device access through smbus2."""

    def __init__(self, bus: int = 1):
        self.bus = bus
        self._smbus: Optional[SMBus] = None

    def open(self, address: int) -> None:
        if self._smbus is not None:
            return
        try:
            self._smbus = SMBus(self.bus)
        except OSError as exc:
            raise TransportError(f"Cannot open I2C bus {self.bus}: {exc}", address=address) from exc
        logger.info("Opened I2C bus %d for device 0x%02X", self.bus, address)

    def write(self, address: int, data: bytes) -> None:
        bus = self._require_open(address)
        try:
            bus.i2c_rdwr(i2c_msg.write(address, list(data)))
        except OSError as exc:
            raise TransportError(f"I2C write to 0x{address:02X} failed: {exc}", address=address) from exc

    def read(self, address: int, count: int) -> bytes:
        bus = self._require_open(address)
        msg = i2c_msg.read(address, count)
        try:
            bus.i2c_rdwr(msg)
        except OSError as exc:
            raise TransportError(f"I2C read from 0x{address:02X} failed: {exc}", address=address) from exc
        return bytes(list(msg))

    def close(self) -> None:
        if self._smbus is not None:
            try:
                self._smbus.close()
            finally:
                self._smbus = None

    def _require_open(self, address: int) -> SMBus:
        if self._smbus is None:
            raise TransportError(f"I2C bus {self.bus} is not open", address=address)
        return self._smbus
