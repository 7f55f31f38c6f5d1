# SPDX-FileCopyrightText: 2026 Cirlute contributors
#
# SPDX-License-Identifier: MIT

"""
`cirlute_pca9685`
====================================================

Register-level driver for the PCA9685 16-channel 12-bit PWM controller
on an I2C bus.
See examples/pca9685_simpletest.py for a demo of the usage.

Implementation Notes
--------------------

**Hardware:**

* NXP PCA9685 16-channel, 12-bit PWM Fm+ I2C-bus LED controller
  (and the breakout boards built around it, default address 0x40)

**Software and Dependencies:**

* Adafruit Blinka for the ``busio`` / ``micropython`` API on Linux hosts:
  https://github.com/adafruit/Adafruit_Blinka

* Adafruit's Bus Device library:
  https://github.com/adafruit/Adafruit_CircuitPython_BusDevice

* Adafruit's Extended Bus library (only to open a bus by number):
  https://github.com/adafruit/Adafruit_Python_Extended_Bus
"""
__version__ = "0.1.0"
__repo__ = "https://github.com/cocoa-xu/cirlute_pca9685.git"


# pylint - globally disable
# 'invalid-name' check to allow for datasheet conform register names.
# pylint: disable=invalid-name

import logging
import math
import threading
import time
from contextlib import contextmanager

from adafruit_bus_device.i2c_device import I2CDevice
from micropython import const

try:
    from typing import Iterator, Optional, Union
    from busio import I2C
except ImportError:
    pass

logger = logging.getLogger(__name__)

##########################################
# register map
# see PCA9685 datasheet, 7.3 Register definitions
MODE1 = const(0x00)
MODE2 = const(0x01)
SUBADR1 = const(0x02)
SUBADR2 = const(0x03)
SUBADR3 = const(0x04)
LED0_ON_L = const(0x06)
LED0_ON_H = const(0x07)
LED0_OFF_L = const(0x08)
LED0_OFF_H = const(0x09)
ALL_LED_ON_L = const(0xFA)
ALL_LED_ON_H = const(0xFB)
ALL_LED_OFF_L = const(0xFC)
ALL_LED_OFF_H = const(0xFD)
PRESCALE = const(0xFE)

# MODE1 bits
RESTART = const(0x80)
SLEEP = const(0x10)
ALLCALL = const(0x01)
# MODE2 bits
INVRT = const(0x10)
OUTDRV = const(0x04)

CHANNEL_COUNT = const(16)
# every channel owns ON_L, ON_H, OFF_L, OFF_H
_REGISTERS_PER_CHANNEL = const(4)

##########################################
# timing & defaults
_OSCILLATOR_HZ = 25_000_000.0
_COUNTER_STEPS = 4096.0
_PRESCALE_MIN = const(3)
_PRESCALE_MAX = const(255)
# oscillator needs max. 500us to come up - the datasheet examples use 5ms.
OSCILLATOR_DELAY = 0.005

DEFAULT_ADDRESS = const(0x40)
DEFAULT_BUS_ID = const(1)
DEFAULT_FREQUENCY = const(60)
WRITE_RETRIES = const(2)


def _clear_sleep(mode1: int) -> int:
    return mode1 & ~SLEEP


# Power-on sequence.
# every step is (register, value) and is run strictly in order,
# the first failing step aborts the whole sequence.
#   register None  → value is a delay in seconds
#   callable value → read-modify-write rule applied to the current register value
INIT_SEQUENCE = (
    # clear stale PWM state of all 16 channels (broadcast registers)
    (ALL_LED_ON_L, 0x00),
    (ALL_LED_ON_H, 0x00),
    (ALL_LED_OFF_L, 0x00),
    (ALL_LED_OFF_H, 0x00),
    # totem pole outputs
    (MODE2, OUTDRV),
    # respond to the all-call address
    (MODE1, ALLCALL),
    (None, OSCILLATOR_DELAY),
    # wake up the oscillator, keep the other MODE1 bits
    (MODE1, _clear_sleep),
    (None, OSCILLATOR_DELAY),
)


def open_bus(bus_id: int) -> "I2C":
    """
    Open the linux I2C bus ``/dev/i2c-<bus_id>``.

    Errors of the bus driver are passed through unchanged.

    :param int bus_id: number of the I2C bus.
    :return: a ``busio.I2C`` compatible bus object.
    """
    # imported here so that the module can be used without a real I2C bus.
    from adafruit_extended_bus import ExtendedI2C  # pylint: disable=import-outside-toplevel

    logger.debug("open i2c bus %d", bus_id)
    return ExtendedI2C(bus_id)


class I2CTransport:
    """
    Byte addressed register access to one chip on a shared I2C bus.

    Every transaction holds the bus lock (see ``I2CDevice``).
    Writes are retried on transient bus errors (``OSError``: NACK,
    arbitration lost, timeout); reads are not.

    :param ~busio.I2C i2c_bus: The I2C bus the chip is connected to.
    :param int address: 7-bit I2C address of the chip.
    :param bool owns_bus: deinit the bus together with the transport.
    """

    def __init__(self, i2c_bus: "I2C", address: int, *, owns_bus: bool = False) -> None:
        self._i2c_bus = i2c_bus
        self._owns_bus = owns_bus
        self.address = address
        # no probe transaction - a missing chip shows up as OSError of the first write
        self.i2c_device = I2CDevice(i2c_bus, address, probe=False)

    def write(self, buffer: bytes, *, retries: int = WRITE_RETRIES) -> None:
        """
        Write ``buffer`` (register address followed by data) as one transaction.

        :param bytes buffer: register address byte + data byte(s).
        :param int retries: additional attempts on ``OSError``.
        """
        attempt = 0
        while True:
            try:
                with self.i2c_device as i2c:
                    i2c.write(buffer)
                return
            except OSError as error:
                if attempt >= retries:
                    raise
                attempt += 1
                logger.debug(
                    "write 0x%02X to 0x%02X failed (%s) - retry %d/%d",
                    buffer[0],
                    self.address,
                    error,
                    attempt,
                    retries,
                )

    def read_byte(self, register: int) -> int:
        """Read one unsigned byte from ``register``."""
        result = bytearray(1)
        with self.i2c_device as i2c:
            i2c.write_then_readinto(bytes([register]), result)
        return result[0]

    def deinit(self) -> None:
        """Release the bus - but only if it was opened for this transport."""
        if self._owns_bus:
            self._i2c_bus.deinit()
        self._i2c_bus = None
        self.i2c_device = None


class PCA9685:
    """
    PCA9685 16-channel 12-bit PWM controller.

    The driver does not mirror any register state.
    The chip is the only source of truth for the ON/OFF values -
    only the last successfully programmed frequency is remembered.

    A driver instance is *not* shareable between concurrent callers.
    Most operations are multi-register sequences
    that are not atomic from the chip's point of view -
    so starting an operation while another one on the same instance
    is still running raises ``RuntimeError``.
    Sharing one bus between several drivers needs external synchronisation
    for the same reason.

    :param ~busio.I2C i2c_bus: The I2C bus the chip is connected to.
        If omitted the bus ``bus_id`` is opened (and owned) by the driver.
    :param int address: 7-bit I2C address of the chip. (default=0x40)
    :param int bus_id: number of the I2C bus to open if no ``i2c_bus`` is given.
        (default=1)
    :param float frequency: PWM frequency in Hz. (default=60)
    """

    def __init__(
        self,
        i2c_bus: Optional["I2C"] = None,
        *,
        address: int = DEFAULT_ADDRESS,
        bus_id: int = DEFAULT_BUS_ID,
        frequency: float = DEFAULT_FREQUENCY,
    ) -> None:
        """Init."""
        if not 0 < address <= 0x7F:
            raise ValueError(f"address 0x{address:02X} not in range: 0x01..0x7F")
        # fail before touching the bus
        self.calculate_prescale(frequency)

        self.address = address
        self._frequency = None
        self._lock = threading.Lock()
        self._transport = None

        owns_bus = i2c_bus is None
        if owns_bus:
            i2c_bus = open_bus(bus_id)
        try:
            self._transport = I2CTransport(i2c_bus, address, owns_bus=owns_bus)
            with self._exclusive():
                self._initialize()
                if frequency != DEFAULT_FREQUENCY:
                    self._set_frequency(frequency)
        except Exception:
            # no recovery write - the chip stays as it is;
            # but do not leak a bus we opened ourselves.
            if owns_bus:
                i2c_bus.deinit()
            self._transport = None
            raise

    def _initialize(self) -> None:
        logger.debug("initialize PCA9685 at 0x%02X", self.address)
        for register, value in INIT_SEQUENCE:
            if register is None:
                time.sleep(value)
            elif callable(value):
                self._write(register, value(self._read(register)))
            else:
                self._write(register, value)
        self._set_frequency(DEFAULT_FREQUENCY)

    ##########################################
    # exclusivity

    @contextmanager
    def _exclusive(self) -> "Iterator[None]":
        if not self._lock.acquire(blocking=False):  # pylint: disable=consider-using-with
            raise RuntimeError(
                f"PCA9685 at 0x{self.address:02X} is busy with another register sequence - "
                "serialize the access to this driver."
            )
        # checked under the lock - deinit() holds it as well
        if self._transport is None:
            self._lock.release()
            raise RuntimeError("PCA9685 is deinitialized")
        try:
            yield
        finally:
            self._lock.release()

    def deinit(self) -> None:
        """Stop using the chip and release the bus if the driver opened it."""
        if self._transport is not None:
            with self._exclusive():
                self._transport.deinit()
                self._transport = None

    def __enter__(self) -> "PCA9685":
        return self

    def __exit__(self, exception_type, exception_value, traceback) -> None:
        self.deinit()

    ##########################################
    # frequency

    @staticmethod
    def calculate_prescale(frequency: float) -> int:
        """
        Calculate PRESCALE register value.

        see:
        7.3.5 PWM frequency PRE_SCALE
        prescale = round(osc_clock / (4096 * update_rate)) - 1

        the value is rounded half up
        (add 0.5 and truncate - *not* round half to even).

        :param float frequency: PWM frequency (Hz)
        :return int: prescale value (3..255)
        """
        if not frequency > 0:
            raise ValueError(f"frequency {frequency} must be > 0")
        prescale = int(math.floor(_OSCILLATOR_HZ / _COUNTER_STEPS / frequency - 1.0 + 0.5))
        if not _PRESCALE_MIN <= prescale <= _PRESCALE_MAX:
            raise ValueError(
                f"frequency {frequency}Hz → prescale {prescale} "
                f"not in range: {_PRESCALE_MIN}..{_PRESCALE_MAX}"
            )
        return prescale

    @property
    def frequency(self) -> Optional[float]:
        """Last PWM frequency (Hz) programmed into the chip (not read back)."""
        return self._frequency

    @frequency.setter
    def frequency(self, value: float) -> None:
        self.set_frequency(value)

    def set_frequency(self, frequency: float) -> None:
        """
        Set PWM frequency.

        The prescaler can only be written while the oscillator is stopped:
        the chip is put to sleep, the prescaler written,
        the old MODE1 restored and after the oscillator is up again
        all channels are restarted.

        On a bus error the chip can be left in SLEEP -
        treat this as a fatal configuration error and not retry blindly.

        :param float frequency: PWM frequency (Hz)
        """
        with self._exclusive():
            self._set_frequency(frequency)

    def _set_frequency(self, frequency: float) -> None:
        prescale = self.calculate_prescale(frequency)
        logger.debug("frequency %sHz → prescale %d", frequency, prescale)
        old_mode = self._read(MODE1)
        # clear RESTART, set SLEEP
        sleep_mode = (old_mode & ~RESTART) | SLEEP
        self._write(MODE1, sleep_mode)
        self._write(PRESCALE, prescale)
        self._write(MODE1, old_mode)
        time.sleep(OSCILLATOR_DELAY)
        self._write(MODE1, old_mode | RESTART)
        self._frequency = frequency

    ##########################################
    # PWM values

    def set_pwm(self, channel: int, value: int) -> None:
        """
        Set the duty cycle of one channel.

        Output turns on at tick 0 and off at tick ``value``.

        :param int channel: channel index 0..15
        :param int value: off tick 0..4095
        """
        self.write(channel, 0, value)

    def write(self, channel: int, on: int, off: int) -> None:
        """
        Set on and off tick of one channel.

        The four registers are written one by one -
        on a bus error the remaining ones are not written,
        so the channel can be left partially updated.

        :param int channel: channel index 0..15
        :param int on: tick the output turns on (0..4095, bit 12 = full on)
        :param int off: tick the output turns off (0..4095, bit 12 = full off)
        """
        if not 0 <= channel < CHANNEL_COUNT:
            raise IndexError(f"channel {channel} out of range [0..{CHANNEL_COUNT - 1}]")
        with self._exclusive():
            self._write_on_off(LED0_ON_L + _REGISTERS_PER_CHANNEL * channel, on, off)

    def write_all(self, on: int, off: int) -> None:
        """
        Set on and off tick of all channels at once.

        Uses the ALL_LED broadcast registers;
        a later per channel write overrides these values.

        :param int on: tick the outputs turn on
        :param int off: tick the outputs turn off
        """
        with self._exclusive():
            self._write_on_off(ALL_LED_ON_L, on, off)

    def _write_on_off(self, base: int, on: int, off: int) -> None:
        for name, value in (("on", on), ("off", off)):
            if not 0 <= value <= 0xFFFF:
                raise ValueError(f"{name} {value} not in range: 0..65535")
        # ON_L, ON_H, OFF_L, OFF_H
        self._write(base, on & 0xFF)
        self._write(base + 1, on >> 8)
        self._write(base + 2, off & 0xFF)
        self._write(base + 3, off >> 8)

    ##########################################
    # raw register access

    def read_byte_data(self, register: int) -> int:
        """
        Read one register (always a fresh bus transaction).

        :param int register: register address
        :return int: unsigned register value 0..255
        """
        with self._exclusive():
            return self._read(register)

    def write_byte_data(self, register: int, value: Union[int, bytes]) -> None:
        """
        Write one register.

        :param int register: register address
        :param value: byte value 0..255 or bytes-like data
            (written starting at ``register``)
        """
        with self._exclusive():
            self._write(register, value)

    def _read(self, register: int) -> int:
        value = self._transport.read_byte(register)
        logger.debug("0x%02X: read 0x%02X from register 0x%02X", self.address, value, register)
        return value

    def _write(self, register: int, value: Union[int, bytes]) -> None:
        if not 0 <= register <= 0xFF:
            raise ValueError(f"register {register} not in range: 0x00..0xFF")
        if isinstance(value, int):
            if not 0 <= value <= 0xFF:
                raise ValueError(f"value {value} not in range: 0..255")
            data = bytes([value])
        else:
            data = bytes(value)
        logger.debug(
            "0x%02X: write %s to register 0x%02X", self.address, data.hex(), register
        )
        self._transport.write(bytes([register]) + data, retries=WRITE_RETRIES)
