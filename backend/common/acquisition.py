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
Acquisition settings for the station's receivers, including operating plans.

The file is JSON with '//' line comments allowed. Each entry of "plans"
carries a "key" of regular expressions ({"port": ..., "devType": ...}) and
the plan itself (rate, devParams, plugins).
"""

import json
import logging
import os
import re
from typing import Any, Dict, List, Mapping, Optional

from common.bus import MessageBus
from common.constants import BusTopics
from sdr.models import Device, Plan

logger = logging.getLogger("acquisition")

# fields that can be changed through update()
UPDATABLE = ("label", "memo", "lotek_freq", "burstfinder", "agc", "rtlsdr")
SAVED = ("label", "memo", "lotek_freq", "agc", "gps", "plans", "module_options")

# offset applied to the tag frequency to get the receiver frequency, MHz
FREQUENCY_OFFSET = 0.004

BURSTFINDER_DEFAULTS = {
    "filter_file": False,
    "filter_ui": False,
    "method": "burstfinder",
    "both_ui": False,
}

_COMMENT_RE = re.compile(r"(^|\s)//.*$", re.MULTILINE)


def strip_comments(text: str) -> str:
    return _COMMENT_RE.sub(r"\1", text)


class Acquisition:
    def __init__(self, path: str, bus: Optional[MessageBus] = None):
        self.path = path
        self.bus = bus
        self.data: Dict[str, Any] = {}
        self.load()

    def load(self) -> None:
        with open(self.path, "r") as f:
            d = json.loads(strip_comments(f.read()))

        # older files call the label short_label
        if d.get("short_label") and not d.get("label"):
            d["label"] = d.pop("short_label")
        d["agc"] = bool(d.get("agc"))
        d["burstfinder"] = {**BURSTFINDER_DEFAULTS, **(d.get("burstfinder") or {})}
        d.setdefault("plans", [])
        self.data = d

        logger.info(f"lotek freq: {d.get('lotek_freq')}, agc: {d['agc']}")
        if d.get("lotek_freq"):
            self.fix_freq(d["lotek_freq"])
        logger.info(f"Acquisition: found {len(self.plans)} plans")
        self.emit_all()

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    @property
    def plans(self) -> List[Dict[str, Any]]:
        return self.data["plans"]

    def lookup(self, port: str, dev_type: str) -> Optional[Plan]:
        """Return the first plan whose key matches the port and device type."""
        for i, plan in enumerate(self.plans):
            key = plan.get("key") or {}
            if re.search(key.get("port", ""), str(port)) and re.search(key.get("devType", ""), dev_type):
                logger.debug(f"Plan {i} matches port {port} type {dev_type}")
                return Plan.from_acquisition(f"p{port}", plan)
        return None

    def plan_for(self, device: Device) -> Optional[Plan]:
        return self.lookup(device.port, device.dev_type)

    def fix_freq(self, f: float) -> None:
        """Point every plan's receiver frequency at tag frequency f (MHz)."""
        freq = round(float(f) - FREQUENCY_OFFSET, 6)
        for plan in self.plans:
            for dp in plan.get("devParams") or []:
                if dp.get("name") == "frequency":
                    logger.info(f"setting {plan.get('key', {}).get('devType')} frequency to {freq}")
                    dp.setdefault("schedule", {})["value"] = freq
        find_tags = (self.data.get("module_options") or {}).get("find_tags")
        if find_tags and len(find_tags.get("params", [])) > 1:
            find_tags["params"][1] = f

    def snapshot(self) -> Dict[str, Any]:
        return {k: self.data.get(k) for k in UPDATABLE + ("gps",)}

    def emit_all(self) -> None:
        if self.bus is not None:
            self.bus.publish(BusTopics.ACQUISITION, self.snapshot())

    def update(self, new_values: Mapping[str, Any]) -> bool:
        """
        Change updatable fields and save the file if anything changed.

        Returns:
            bool: True if something changed
        """
        changed = False
        for k in UPDATABLE:
            if k in new_values and self.data.get(k) != new_values[k]:
                logger.info(f"Acquisition: updating {k} to {new_values[k]}")
                self.data[k] = new_values[k]
                changed = True
        if not changed:
            return False

        if "lotek_freq" in new_values:
            self.fix_freq(new_values["lotek_freq"])
        self.save()
        self.emit_all()
        return True

    def save(self) -> None:
        """Write to path~, keep the old file as path.bak, then rename into place."""
        data = {k: self.data.get(k) for k in SAVED}
        tmp = self.path + "~"
        try:
            with open(tmp, "w") as f:
                json.dump(data, f, indent=2)
            try:
                os.replace(self.path, self.path + ".bak")
            except FileNotFoundError:
                pass
            os.replace(tmp, self.path)
            logger.info(f"Saved {self.path}")
        except OSError as e:
            logger.error(f"Failed to save acquisition config: {e}")
            logger.exception(e)
