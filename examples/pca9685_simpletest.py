# SPDX-FileCopyrightText: 2026 Cirlute contributors
#
# SPDX-License-Identifier: MIT

"""PCA9685."""

__doc__ = """
pca9685_simpletest.py - PCA9685 simple usage example.

Simple demo of the PCA9685 16 channel 12-bit PWM controller.
Shows setting channel values in a few ways.
"""

import time

import cirlute_pca9685

# Open /dev/i2c-1 and talk to the chip at the default address 0x40.
# The driver runs the power-on sequence and programs 60Hz.
pwm = cirlute_pca9685.PCA9685(bus_id=1, address=0x40)

# The simplest way is to set the duty cycle of a channel.
# The counter has 4096 ticks per period:
# the output goes high at tick 0 and low at the given tick.
# For example set channel 0 to 50% duty cycle:
pwm.set_pwm(0, 2048)

# Or control the on and off tick directly.
# This lets you phase shift channels against each other
# (spreads the current draw of many LEDs over the period).
# Channel 1: on at tick 1024, off at tick 3072 → 50% shifted by a quarter period
pwm.write(1, 1024, 3072)

# Bit 12 of the off value forces the output fully off,
# bit 12 of the on value forces it fully on.
pwm.write(2, 0, 4096)
pwm.write(3, 4096, 0)

# Sweep channel 0 up and down.
while True:
    for value in range(0, 4096, 32):
        pwm.set_pwm(0, value)
        time.sleep(0.01)
    for value in range(4095, -1, -32):
        pwm.set_pwm(0, value)
        time.sleep(0.01)
