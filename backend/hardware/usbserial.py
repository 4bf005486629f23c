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

import asyncio
import logging
import re
from typing import Optional

logger = logging.getLogger("usb-serial")

UDEVADM = "udevadm"

_SERIAL_RE = re.compile(r"ID_SERIAL=([^\n]+)")


def usb_device_node(usb_path: str) -> str:
    """'1:4' -> '/dev/bus/usb/001/004'"""
    bus, _, device = (usb_path or "0:0").partition(":")
    return f"/dev/bus/usb/{bus.zfill(3)}/{(device or '0').zfill(3)}"


def parse_serial(udev_output: str) -> Optional[str]:
    match = _SERIAL_RE.search(udev_output)
    if not match:
        return None
    return match.group(1).strip().split(":")[-1] or None


async def lookup_serial(usb_path: str, timeout: float = 5.0) -> Optional[str]:
    """
    Ask udev for the serial number of the USB device at bus:dev.

    Returns:
        str or None: Serial number, or None if it could not be determined
    """
    node = usb_device_node(usb_path)
    logger.info(f"Getting serial number for device at path: {node}")
    try:
        process = await asyncio.create_subprocess_exec(
            UDEVADM, "info", "-q", "all", "-n", node,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        logger.warning(f"Failed to run {UDEVADM} for {node}: {e}")
        return None

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        logger.warning(f"Timeout getting udev info for {node}")
        return None

    if process.returncode != 0:
        logger.warning(f"Failed to get udev info for {node}: {stderr.decode(errors='ignore').strip()}")
        return None

    serial = parse_serial(stdout.decode(errors="ignore"))
    logger.info(f"Found serial number: {serial}")
    return serial
