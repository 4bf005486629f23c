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
Wire framing and unit conversion for the driven processes.

Two shapes travel over a command channel:

- binary commands: one command byte followed by a big-endian 32-bit
  parameter (airspy_tcp style)
- newline delimited text: commands are "<verb> [<port> [<value>]]\\n" and
  replies are one JSON object per line

Parameter values cross this module in native (integer) units on the wire
side and natural units (MHz, dB, bool) on the caller side.
"""

import json
import logging
import struct
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from common.constants import AIRSPY_COMMANDS
from common.exceptions import RecordDecodeError, UnknownParameterError
from sdr.models import Command

logger = logging.getLogger("sdr-codec")

BINARY_COMMAND_SIZE = 5

_INT32_MIN = -(2**31)
_UINT32_MAX = 2**32 - 1


# ============================================================================
# Unit conversion
# ============================================================================
@dataclass(frozen=True)
class ParamUnit:
    """How one parameter maps between natural and native units."""

    kind: str = "identity"  # identity, scaled, bool
    scale: float = 1.0


PARAM_UNITS: Dict[str, ParamUnit] = {
    "frequency": ParamUnit("scaled", 1.0e6),  # MHz <-> Hz
    "rate": ParamUnit(),
    "lna_gain": ParamUnit(),
    "mixer_gain": ParamUnit(),
    "vga_gain": ParamUnit(),
    "linearity_gain": ParamUnit(),
    "sensitivity_gain": ParamUnit(),
    "tuner_gain": ParamUnit("scaled", 10.0),  # dB <-> 0.1 dB
    "lna_agc": ParamUnit("bool"),
    "mixer_agc": ParamUnit("bool"),
    "agc": ParamUnit("bool"),
    "bias_tee": ParamUnit("bool"),
    "streaming": ParamUnit("bool"),
}

# fields of a settings report given in natural units
REPORT_UNITS = frozenset({"frequency"})


class UnitConverter:
    """Bidirectional natural <-> native conversion driven by a parameter table."""

    def __init__(self, units: Optional[Mapping[str, ParamUnit]] = None):
        self.units = dict(PARAM_UNITS if units is None else units)

    def to_native(self, par: str, value: Any) -> int:
        unit = self.units.get(par, ParamUnit())
        if unit.kind == "bool":
            return 1 if _truthy(value) else 0
        if unit.kind == "scaled":
            return int(round(float(value) * unit.scale))
        if isinstance(value, bool):
            return int(value)
        return int(round(float(value)))

    def to_natural(self, par: str, value: Any) -> Any:
        unit = self.units.get(par, ParamUnit())
        if unit.kind == "bool":
            return bool(value)
        if unit.kind == "scaled":
            return value / unit.scale
        return value

    def settings_to_natural(self, settings: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Convert a reported settings record for display.

        Only the fields in REPORT_UNITS are converted; every other field keeps
        the native value the server reported.
        """
        return {par: self.to_natural(par, val) if par in REPORT_UNITS and par in self.units else val
                for par, val in settings.items()}


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "t", "on", "yes")
    return bool(value)


# ============================================================================
# Binary commands
# ============================================================================
def encode_binary_command(command: Command, table: Mapping[str, int] = AIRSPY_COMMANDS) -> bytes:
    """
    Pack a command as one command byte plus a big-endian 32-bit parameter.

    Args:
        command: Command with the value already in native units
        table: Parameter name to command number table

    Returns:
        bytes: 5 byte wire representation

    Raises:
        UnknownParameterError: If the parameter has no command number
        ValueError: If the value does not fit in 32 bits
    """
    cmd_no = table.get(command.par)
    if not cmd_no:
        raise UnknownParameterError(f"no command number for parameter '{command.par}'")
    val = int(command.val)
    if val < _INT32_MIN or val > _UINT32_MAX:
        raise ValueError(f"value {val} for '{command.par}' does not fit in 32 bits")
    if val < 0:
        return struct.pack(">Bi", cmd_no, val)
    return struct.pack(">BI", cmd_no, val)


def decode_binary_command(
    data: bytes, table: Mapping[str, int] = AIRSPY_COMMANDS, signed: bool = False
) -> Command:
    """
    Inverse of encode_binary_command, used by test fixtures and diagnostics.

    The parameter is read as unsigned unless `signed` is set; the wire format
    does not say which of the two the sender used.
    """
    if len(data) != BINARY_COMMAND_SIZE:
        raise RecordDecodeError(f"binary command must be {BINARY_COMMAND_SIZE} bytes, got {len(data)}")
    cmd_no, val = struct.unpack(">Bi" if signed else ">BI", data)
    for par, no in table.items():
        if no == cmd_no:
            return Command(par=par, val=val)
    raise UnknownParameterError(f"unknown command number {cmd_no}")


# ============================================================================
# Text commands
# ============================================================================
def encode_text_command(verb: str, *args: Any) -> bytes:
    """Build a newline terminated text command like 'frequency 2 166.376'."""
    if not verb or any(c.isspace() for c in verb):
        raise ValueError(f"invalid command verb {verb!r}")
    parts = [verb] + [str(a) for a in args if a is not None]
    return (" ".join(parts) + "\n").encode("utf-8")


# ============================================================================
# Stream framing
# ============================================================================
class LineBuffer:
    """
    Splits a byte stream into newline terminated lines.

    Unterminated trailing bytes are kept until the next feed(). An optional
    fixed size header is dropped once, at the start of the stream; call
    reset() when a new connection starts.
    """

    def __init__(self, header_size: int = 0, encoding: str = "utf-8"):
        self.header_size = header_size
        self.encoding = encoding
        self._buf = bytearray()
        self._header_remaining = header_size

    def reset(self) -> None:
        self._buf.clear()
        self._header_remaining = self.header_size

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet terminated by a newline."""
        return len(self._buf)

    def feed(self, data: bytes) -> List[str]:
        if self._header_remaining:
            skip = min(self._header_remaining, len(data))
            data = data[skip:]
            self._header_remaining -= skip
        self._buf.extend(data)

        lines = []
        while True:
            eol = self._buf.find(b"\n")
            if eol < 0:
                break
            raw = bytes(self._buf[:eol])
            del self._buf[: eol + 1]
            lines.append(raw.decode(self.encoding, errors="replace").rstrip("\r"))
        return lines


class JsonLineFramer(LineBuffer):
    """LineBuffer that decodes each non-empty line as one JSON record."""

    def feed_records(self, data: bytes) -> List[Any]:
        records = []
        for line in self.feed(data):
            if not line.strip():
                continue
            try:
                records.append(decode_record(line))
            except RecordDecodeError as e:
                logger.warning(f"Dropping malformed record: {e}")
        return records


def decode_record(line: str) -> Any:
    try:
        return json.loads(line)
    except ValueError as e:
        raise RecordDecodeError(f"{line[:80]!r}: {e}") from e
