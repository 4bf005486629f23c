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
Tests for common/acquisition.py.
"""

import json
import os

import pytest

from common.acquisition import Acquisition, strip_comments
from common.constants import BusTopics
from sdr.models import Device

ACQUISITION = """
{
  // station wide settings
  "short_label": "SG-1234",
  "memo": "see http://example.org/notes",
  "lotek_freq": 166.38,
  "agc": 0,
  "module_options": {"find_tags": {"params": ["--default-freq", 166.38]}},
  "plans": [
    {
      "key": {"port": ".*", "devType": "airspy"},
      "rate": 6000000,
      "devParams": [
        {"name": "frequency", "schedule": {"type": "Constant", "value": 166.376}},
        {"name": "lna_gain", "schedule": {"type": "Constant", "value": 10}}
      ]
    },
    {
      "key": {"port": "^[1-4]$", "devType": "funcube"},
      "rate": 48000,
      "devParams": [{"name": "frequency", "schedule": {"value": 150.1}}],
      "plugins": [{"library": "lotek-plugins.so", "params": [{"name": "minsnr", "value": 6}]}]
    }
  ]
}
"""


@pytest.fixture
def acq_path(tmp_path):
    path = tmp_path / "acquisition.json"
    path.write_text(ACQUISITION)
    return str(path)


class TestComments:
    def test_line_comments_removed(self):
        """Test that whole-line and trailing comments are stripped."""
        text = '// header\n{"a": 1} // trailing\n'
        assert json.loads(strip_comments(text)) == {"a": 1}

    def test_urls_kept(self):
        """Test that '//' inside a URL is not a comment."""
        assert strip_comments('"http://example.org"') == '"http://example.org"'


class TestAcquisition:
    """Test cases for loading, plan lookup and updates."""

    def test_load(self, acq_path):
        """Test the upgrades applied on load."""
        acq = Acquisition(acq_path)

        assert acq["label"] == "SG-1234"
        assert acq["agc"] is False
        assert acq["burstfinder"]["method"] == "burstfinder"
        assert acq["memo"] == "see http://example.org/notes"

    def test_frequency_fixed_from_tag_frequency(self, acq_path):
        """Test that every plan frequency is set to the tag frequency minus 4 kHz."""
        acq = Acquisition(acq_path)
        plan = acq.lookup("2", "airspy")

        assert plan.params["frequency"] == pytest.approx(166.376)
        assert acq.lookup("2", "funcube").params["frequency"] == pytest.approx(166.376)

    def test_lookup(self, acq_path):
        """Test plan selection by port and device type patterns."""
        acq = Acquisition(acq_path)

        plan = acq.lookup("3", "funcube")
        assert plan.dev_label == "p3"
        assert plan.rate == 48000
        assert plan.plugin_params["minsnr"] == 6
        assert acq.lookup("7", "funcube") is None
        assert acq.lookup("7", "rtlsdr") is None

    def test_plan_for_device(self, acq_path):
        """Test the lookup used by the session manager."""
        acq = Acquisition(acq_path)
        plan = acq.plan_for(Device(usb_path="1:4", port="5", dev_type="airspy"))

        assert plan.rate == 6000000
        assert plan.params["lna_gain"] == 10

    def test_snapshot_published(self, acq_path, bus):
        """Test that loading publishes the settings snapshot."""
        snapshots = []
        bus.subscribe(BusTopics.ACQUISITION, snapshots.append)
        Acquisition(acq_path, bus)

        assert snapshots[0]["label"] == "SG-1234"

    def test_update_saves(self, acq_path):
        """Test that a change is saved and the old file kept as backup."""
        acq = Acquisition(acq_path)

        assert acq.update({"lotek_freq": 150.1, "ignored": 1})
        with open(acq_path) as f:
            saved = json.load(f)
        assert saved["lotek_freq"] == 150.1
        assert "ignored" not in saved
        assert saved["module_options"]["find_tags"]["params"][1] == 150.1
        assert saved["plans"][0]["devParams"][0]["schedule"]["value"] == pytest.approx(150.096)
        with open(acq_path + ".bak") as f:
            assert "short_label" in f.read()

        reloaded = Acquisition(acq_path)
        assert reloaded["label"] == "SG-1234"

    def test_update_without_change(self, acq_path):
        """Test that an unchanged update does not write the file."""
        acq = Acquisition(acq_path)

        assert not acq.update({"label": "SG-1234"})
        assert not os.path.exists(acq_path + ".bak")
