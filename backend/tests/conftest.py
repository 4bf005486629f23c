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
Shared fixtures for the station test suite.
"""

import pytest

from common.bus import MessageBus
from fakes import FAKE_AIRSPY, FAKE_BRIDGE, FAKE_BURSTFINDER, write_script


@pytest.fixture
def bus():
    return MessageBus()


@pytest.fixture
def fake_airspy(tmp_path):
    return write_script(tmp_path / "fake_airspy", FAKE_AIRSPY)


@pytest.fixture
def fake_bridge(tmp_path):
    return write_script(tmp_path / "fake_grh", FAKE_BRIDGE)


@pytest.fixture
def burstfinder_dir(tmp_path):
    prog_dir = tmp_path / "bf"
    prog_dir.mkdir()
    write_script(prog_dir / "burstfinder.py", FAKE_BURSTFINDER)
    return str(prog_dir)
