# SPDX-FileCopyrightText: 2026 Cirlute contributors
#
# SPDX-License-Identifier: MIT

from types import SimpleNamespace
from typing import Callable, Iterable, List, Optional

import pytest

import cirlute_pca9685


class FakeI2CBus:
    """
    In-memory PCA9685 behind a ``busio.I2C`` compatible API.

    Every bus transaction is appended to ``trace``:
    ``("write", register, value)`` and ``("read", register)``.
    Transactions are numbered (retries included);
    ``fail_from`` and ``fail_attempts`` make those attempts raise ``OSError``
    without touching the registers.
    """

    def __init__(
        self,
        trace: List[tuple],
        *,
        address: int = 0x40,
        fail_from: Optional[int] = None,
        fail_attempts: Iterable[int] = (),
    ) -> None:
        self.trace = trace
        self.address = address
        self.fail_from = fail_from
        self.fail_attempts = set(fail_attempts)
        self.attempts = 0
        self.locked = False
        self.deinited = False
        self.on_transaction: Optional[Callable[[], None]] = None
        # power-on defaults
        self.registers = bytearray(256)
        self.registers[cirlute_pca9685.MODE1] = 0x11
        self.registers[cirlute_pca9685.MODE2] = 0x04
        self.registers[cirlute_pca9685.PRESCALE] = 0x1E
        for channel in range(16):
            self.registers[cirlute_pca9685.LED0_OFF_H + 4 * channel] = 0x10

    def try_lock(self) -> bool:
        if self.locked:
            return False
        self.locked = True
        return True

    def unlock(self) -> None:
        self.locked = False

    def deinit(self) -> None:
        self.deinited = True

    def _begin(self, address: int) -> None:
        if self.on_transaction is not None:
            self.on_transaction()
        index = self.attempts
        self.attempts += 1
        if address != self.address:
            raise OSError(121, "Remote I/O error")
        if (self.fail_from is not None and index >= self.fail_from) or (
            index in self.fail_attempts
        ):
            raise OSError(121, "Remote I/O error")

    def writeto(self, address, buffer, *, start=0, end=None) -> None:
        data = bytes(buffer[start:end])
        self._begin(address)
        register, payload = data[0], data[1:]
        self.registers[register : register + len(payload)] = payload
        value = payload[0] if len(payload) == 1 else payload
        self.trace.append(("write", register, value))

    def writeto_then_readfrom(
        self,
        address,
        buffer_out,
        buffer_in,
        *,
        out_start=0,
        out_end=None,
        in_start=0,
        in_end=None
    ) -> None:
        self._begin(address)
        register = bytes(buffer_out[out_start:out_end])[0]
        if in_end is None:
            in_end = len(buffer_in)
        for offset in range(in_end - in_start):
            buffer_in[in_start + offset] = self.registers[register + offset]
        self.trace.append(("read", register))


@pytest.fixture
def trace(monkeypatch) -> List[tuple]:
    """Shared transaction trace - delays of the driver are recorded too."""
    calls: List[tuple] = []
    monkeypatch.setattr(
        cirlute_pca9685,
        "time",
        SimpleNamespace(sleep=lambda seconds: calls.append(("sleep", seconds))),
    )
    return calls


@pytest.fixture
def make_bus(trace) -> Callable[..., FakeI2CBus]:
    def _make_bus(**kwargs) -> FakeI2CBus:
        return FakeI2CBus(trace, **kwargs)

    return _make_bus


@pytest.fixture
def bus(make_bus) -> FakeI2CBus:
    return make_bus()


@pytest.fixture
def pca(bus, trace) -> cirlute_pca9685.PCA9685:
    driver = cirlute_pca9685.PCA9685(bus)
    trace.clear()
    bus.attempts = 0
    return driver
