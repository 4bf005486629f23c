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


import argparse
import os

parser = argparse.ArgumentParser(description="Start the sensor station device supervisor.")
parser.add_argument("--host", type=str, default="0.0.0.0", help="Host to run the server on")
parser.add_argument("--port", type=int, default=5000, help="Port to run the server on")
parser.add_argument(
    "--log-level",
    type=str,
    default="INFO",
    choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
    help="Set the logging level",
)
parser.add_argument(
    "--log-config", type=str, default="logconfig.yaml", help="Path to the logger configuration file"
)
parser.add_argument(
    "--acquisition",
    type=str,
    default="/etc/sensorgnome/acquisition.json",
    help="Path to the acquisition plan file",
)
parser.add_argument(
    "--airspy-prog", type=str, default="/usr/local/bin/airspy_tcp", help="airspy_tcp server binary"
)
parser.add_argument("--bridge-prog", type=str, default="/usr/local/bin/grh", help="GNU Radio bridge binary")
parser.add_argument(
    "--bridge-socket", type=str, default="gnuradio.sock", help="Socket name the GNU Radio bridge listens on"
)
parser.add_argument(
    "--enable-bridge",
    type=lambda x: str(x).lower() in ("true", "1", "t"),
    default=True,
    help="Drive non-airspy devices through the shared GNU Radio bridge",
)
parser.add_argument("--socket-dir", type=str, default="/tmp", help="Directory for device sockets")
parser.add_argument(
    "--burstfinder-dir",
    type=str,
    default="",
    help="Directory holding burstfinder.py (empty disables the burst finder)",
)

parser.add_argument(
    "--burst-codes",
    type=str,
    default="/etc/sensorgnome/bursts.yaml",
    help="YAML file mapping tag names to burst intervals in tenths of ms",
)

# Only parse arguments when running as the application
if os.environ.get("SENSOR_STATION_DEFAULT_ARGS"):
    arguments = parser.parse_args([])
else:
    arguments = parser.parse_args()
