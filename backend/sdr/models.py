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


import copy
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional


@dataclass
class Device:
    """One physical radio as seen by the station registry."""

    usb_path: str  # bus:dev
    port: str
    dev_type: str
    settings: Dict[str, Any] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return f"p{self.port}"

    def clone(self) -> "Device":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "usbPath": self.usb_path,
            "port": self.port,
            "type": self.dev_type,
            "settings": dict(self.settings),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Device":
        return cls(
            usb_path=str(data.get("usbPath", "0:0")),
            port=str(data["port"]),
            dev_type=str(data["type"]),
            settings=dict(data.get("settings") or {}),
        )


@dataclass(frozen=True)
class Plan:
    """
    Desired configuration for a device, supplied once at session creation.

    Parameter values are in natural units (MHz, dB, bool) as written in the
    acquisition file.
    """

    dev_label: str
    rate: int
    params: Mapping[str, Any] = field(default_factory=dict)
    plugin_params: Mapping[str, Any] = field(default_factory=dict)
    param_names: FrozenSet[str] = frozenset()

    def __post_init__(self):
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))
        object.__setattr__(self, "plugin_params", MappingProxyType(dict(self.plugin_params)))
        object.__setattr__(self, "param_names", frozenset(self.param_names) or frozenset(self.params))

    @classmethod
    def from_acquisition(
        cls, dev_label: str, plan: Mapping[str, Any], param_names=frozenset()
    ) -> "Plan":
        """Build a plan from one entry of the acquisition file's 'plans' list."""
        params = {}
        for dp in plan.get("devParams") or []:
            params[dp["name"]] = (dp.get("schedule") or {}).get("value")
        plugin_params = {}
        plugins = plan.get("plugins") or []
        if plugins:
            for p in plugins[0].get("params") or []:
                plugin_params[p["name"]] = p.get("value")
        return cls(
            dev_label=dev_label,
            rate=int(plan.get("rate", 0)),
            params=params,
            plugin_params=plugin_params,
            param_names=param_names,
        )


@dataclass
class Command:
    """A parameter setting in native units plus an optional reply callback."""

    par: str
    val: int
    callback: Optional[Callable[..., Any]] = None


@dataclass
class Reply:
    """One decoded structured-text record from a command channel."""

    data: Dict[str, Any]

    @property
    def is_event(self) -> bool:
        return bool(self.data.get("async"))

    @property
    def event(self) -> Optional[str]:
        return self.data.get("event")

    @property
    def dev_label(self) -> Optional[str]:
        return self.data.get("devLabel")
