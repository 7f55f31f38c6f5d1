# SPDX-FileCopyrightText: 2026 Cirlute contributors
#
# SPDX-License-Identifier: MIT

"""PCA9685."""

__doc__ = """
pca9685_frequency.py - PCA9685 frequency and broadcast example.

Shows how to change the PWM frequency (servos want 50Hz)
and how to set all 16 channels at once.
"""

import logging

from adafruit_extended_bus import ExtendedI2C

import cirlute_pca9685

# show every register access of the driver
logging.basicConfig(level=logging.DEBUG)

print("pca9685_frequency.py")

# You can also pass in a bus you opened yourself.
# In this case the driver does not close it on deinit.
i2c = ExtendedI2C(1)

with cirlute_pca9685.PCA9685(i2c, frequency=50) as pwm:
    print(f"frequency: {pwm.frequency}Hz")
    print(f"prescale register: {pwm.read_byte_data(cirlute_pca9685.PRESCALE)}")

    # a standard servo expects a 1.5ms pulse every 20ms for its center position
    # 1.5ms / 20ms * 4096 ≈ 307 ticks
    pwm.write_all(0, 307)

    # change the frequency - the channels keep their on/off ticks
    pwm.frequency = 200
    print(f"frequency: {pwm.frequency}Hz")

    # everything off again
    pwm.write_all(0, 4096)

i2c.deinit()
