# Copyright (c) 2025 Efstratios Goudelis
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.


"""
Constants module for the sensor station.
Contains the bus topic names, wire protocol tables and timing values used
throughout the application.
"""


# ============================================================================
# Bus topics (published/subscribed through common.bus.MessageBus)
# ============================================================================
class BusTopics:
    """Topic names carried on the station message bus"""

    # Device lifecycle (registry <-> session manager)
    DEVICE_ADDED = "dev-added"
    DEVICE_REMOVED = "dev-removed"
    DEVICE_STALLED = "dev-stalled"
    DEVICE_STATE = "dev-state"

    # Device parameters
    DEVICE_SETTINGS = "dev-settings"
    SET_PARAM_ERROR = "set-param-error"

    # Raw line oriented output for archival
    RAW_OUTPUT = "raw-output"

    # Raw sample chunks from a data channel
    DEVICE_SAMPLES = "dev-samples"

    # Downstream consumer that owns a data connection has died
    CONSUMER_DIED = "consumer-died"

    # Shared GNU Radio bridge
    BRIDGE_STARTED = "bridge-started"
    BRIDGE_DIED = "bridge-died"
    BRIDGE_DATA = "bridge-data"

    # Rate telemetry
    FRAMES = "frames"
    RATE = "rate"

    # Burst finder
    BF_OUT = "bf-out"
    GOT_BURST = "got-burst"

    # Acquisition settings snapshot
    ACQUISITION = "acquisition"

    # Whole station shutting down
    QUIT = "quit"


# ============================================================================
# Socket.IO event names (dashboard facing)
# ============================================================================
class SocketEvents:
    """Socket.IO event names emitted to dashboard clients"""

    DEVICE_ERROR = "device-error"
    DEVICE_STATE = "device-state"
    DEVICE_STALLED = "device-stalled"
    DEVICE_REMOVED = "device-removed"
    DEVICE_ADDED = "device-added"
    DEVICE_SETTINGS = "device-settings"
    SET_PARAM_ERROR = "set-param-error"
    RAW_OUTPUT = "raw-output"
    GOT_BURST = "got-burst"


# ============================================================================
# Binary command table understood by airspy_tcp
# ============================================================================
# the command is sent as a byte, followed by a big-endian 32-bit parameter;
# parameter units are the integer units understood by the server
AIRSPY_COMMANDS = {
    "frequency": 1,  # Hz
    "rate": 2,  # 3e6, 6e6, or 10e6 SPS
    "lna_gain": 3,  # 0-15 dB
    "mixer_gain": 4,  # 0-15 dB
    "vga_gain": 5,  # 0-15 dB
    "linearity_gain": 6,  # 0-20
    "sensitivity_gain": 7,  # 0-20
    "lna_agc": 8,  # bool
    "mixer_agc": 9,  # bool
    "agc": 10,  # bool
    "bias_tee": 11,  # bool
    "streaming": 15,  # bool
}

# airspy_tcp prefixes its reply stream with a dongle info header
AIRSPY_REPLY_HEADER_SIZE = 12

# plan rates the hardware bridge can be asked for; anything else falls back
ALLOWED_PLAN_RATES = (48_000, 3_000_000, 6_000_000, 10_000_000)
FALLBACK_PLAN_RATE = 48_000

# only hardware rate that is an exact multiple of 48 kHz
AIRSPY_HW_RATE = 6_000_000


# ============================================================================
# Timing (seconds unless noted)
# ============================================================================
class Timing:
    """Fixed delays and monitor parameters"""

    RESTART_DELAY = 5.0
    RECONNECT_DELAY = 5.001
    READD_DELAY = 5.0
    RATE_CHECK_INTERVAL = 10.0
    MAX_OUT_OF_BOUNDS = 2
    BOUNDS_PCT = 5.0
    RATE_LOG_LIMIT = 100

    # libusb buffer holds approximately this much I/Q data
    USB_BUFFER_SECONDS = 0.008
    USB_BUFFER_ALIGNMENT = 512  # bytes
