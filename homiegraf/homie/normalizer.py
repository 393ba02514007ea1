"""
homiegraf - Value Normalizer

Converts raw homie payloads into typed field values:

  integer  -> int     (optional sign + digits)
  float    -> float   (decimal or scientific; nan/inf rejected)
  boolean  -> bool    ("true" / "false", case-sensitive)
  enum, string, unknown -> str, or a numeric substitute from a mapping table
  color    -> str     ("r,g,b" / "h,s,v" kept whole)

A payload that does not match its declared datatype raises
TypeMismatchError. Nothing is ever coerced to 0.

Enum mapping tables come from configuration and are resolved per property:
  1. exact "device/node/property" key
  2. "+"-wildcard keys, e.g. "+/thermostat/mode" (first match wins)
  3. datatype-name table, e.g. "enum" or "unknown"
Optional presets sit underneath the configured datatype tables.
"""

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from ..errors import TypeMismatchError
from .model import Datatype

logger = logging.getLogger(__name__)

Number = Union[int, float]
FieldValue = Union[int, float, bool, str]
EnumMap = Dict[str, Number]

_INTEGER_RE = re.compile(r"^[+-]?\d+$")
_FLOAT_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1

# Datatypes whose raw string may be replaced by a mapping table hit
MAPPABLE_DATATYPES = (Datatype.ENUM, Datatype.STRING, Datatype.UNKNOWN)

# Thermostat mode tables. Lookup is by value across all mappable
# properties, first table wins on overlapping names ("auto").
_HVAC_TABLES: List[EnumMap] = [
    {   # current mode
        "lockout": 1.0, "standby": 2.0, "blower": 3.0, "heating": 4.0,
        "heating_with_aux": 5.0, "emergency_heat": 6.0, "cooling": 7.0,
        "waiting": 8.0, "h1": 2.1, "h2": 2.2, "h3": 2.3, "c1": 2.4, "c2": 2.5,
    },
    {"auto": 1.0, "manual": 2.0},                       # humidifier mode
    {"off": 1.0, "auto": 2.0, "cool": 3.0, "heat": 4.0, "eheat": 5.0},  # target mode
    {"auto": 1.0, "continuous": 2.0, "intermittent": 3.0},  # target fan mode
    {"economy": 1.0, "comfort": 2.0},                   # zone priority
]


def _merge_first_wins(tables: Iterable[EnumMap]) -> EnumMap:
    merged: EnumMap = {}
    for table in tables:
        for key, value in table.items():
            merged.setdefault(key, value)
    return merged


PRESETS: Dict[str, EnumMap] = {
    "binary": {"true": 1.0, "open": 1.0, "false": 0.0, "closed": 0.0},
    "hvac": _merge_first_wins(_HVAC_TABLES),
}


@dataclass(frozen=True)
class NormalizedValue:
    """A typed field value plus where it came from."""
    value: FieldValue
    from_enum: bool = False

    @property
    def field_type(self) -> str:
        if isinstance(self.value, bool):
            return "boolean"
        if isinstance(self.value, int):
            return "integer"
        if isinstance(self.value, float):
            return "float"
        return "string"


def _parse_integer(raw: str) -> int:
    if not _INTEGER_RE.match(raw):
        raise TypeMismatchError(raw, Datatype.INTEGER.value)
    value = int(raw)
    if not INT64_MIN <= value <= INT64_MAX:
        raise TypeMismatchError(raw, Datatype.INTEGER.value, "outside int64 range")
    return value


def _parse_float(raw: str) -> float:
    if not _FLOAT_RE.match(raw):
        raise TypeMismatchError(raw, Datatype.FLOAT.value)
    value = float(raw)
    if math.isinf(value):
        raise TypeMismatchError(raw, Datatype.FLOAT.value, "out of range")
    return value


def _parse_boolean(raw: str) -> bool:
    if raw == "true":
        return True
    if raw == "false":
        return False
    raise TypeMismatchError(raw, Datatype.BOOLEAN.value)


def normalize(raw: str, datatype: Datatype,
              mapping: Optional[EnumMap] = None) -> NormalizedValue:
    """Convert *raw* according to *datatype*, applying *mapping* where allowed."""
    if datatype == Datatype.INTEGER:
        return NormalizedValue(_parse_integer(raw))
    if datatype == Datatype.FLOAT:
        return NormalizedValue(_parse_float(raw))
    if datatype == Datatype.BOOLEAN:
        return NormalizedValue(_parse_boolean(raw))
    if datatype in MAPPABLE_DATATYPES and mapping and raw in mapping:
        return NormalizedValue(mapping[raw], from_enum=True)
    return NormalizedValue(raw)


def index_mapping(format_: Optional[str]) -> EnumMap:
    """Map each value of an enum $format list ("a,b,c") to its position."""
    if not format_:
        return {}
    values = [v.strip() for v in format_.split(",")]
    return {v: i for i, v in enumerate(values) if v}


def _valid_table(name: str, table: Any) -> Optional[EnumMap]:
    """Numeric entries of a configured table; all floats if any entry is a float."""
    if not isinstance(table, dict):
        logger.warning("Ignoring enum mapping %r: expected an object", name)
        return None
    clean: EnumMap = {}
    for key, value in table.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            logger.warning("Ignoring enum mapping %r entry %r: %r is not numeric",
                           name, key, value)
            continue
        clean[str(key)] = value
    return _unify_numbers(clean)


def _unify_numbers(table: EnumMap) -> EnumMap:
    # One field type per series: InfluxDB rejects int and float under the same field
    if any(isinstance(v, float) for v in table.values()):
        return {k: float(v) for k, v in table.items()}
    return table


def _pattern_matches(pattern: Tuple[str, ...], path: Tuple[str, str, str]) -> bool:
    return all(p == "+" or p == s for p, s in zip(pattern, path))


class EnumMappings:
    """Resolves the enum-to-numeric table that applies to a property."""

    def __init__(
        self,
        properties: Optional[Dict[str, EnumMap]] = None,
        datatypes: Optional[Dict[str, EnumMap]] = None,
        auto_index: bool = False,
    ):
        self._exact: Dict[Tuple[str, str, str], EnumMap] = {}
        self._wildcards: List[Tuple[Tuple[str, ...], EnumMap]] = []
        for key, table in (properties or {}).items():
            parts = tuple(key.strip("/").split("/"))
            if len(parts) != 3 or not all(parts):
                logger.warning("Ignoring enum mapping key %r: expected device/node/property", key)
                continue
            if "+" in parts:
                self._wildcards.append((parts, table))
            else:
                self._exact[parts] = table
        self._datatypes: Dict[str, EnumMap] = dict(datatypes or {})
        self._auto_index = auto_index

    @classmethod
    def from_config(cls, mappings: Optional[Dict[str, Any]] = None,
                    presets: Optional[Iterable[str]] = None,
                    auto_index: bool = False) -> "EnumMappings":
        """Build from the "enum_mappings" / "enum_presets" settings.

        Presets apply to every mappable datatype and sit underneath the
        configured datatype tables.
        """
        mappings = mappings or {}
        properties: Dict[str, EnumMap] = {}
        for key, table in (mappings.get("properties") or {}).items():
            clean = _valid_table(key, table)
            if clean is not None:
                properties[key] = clean

        datatypes: Dict[str, EnumMap] = {}
        for name in presets or []:
            preset = PRESETS.get(name)
            if preset is None:
                logger.warning("Unknown enum preset %r (known: %s)",
                               name, ", ".join(sorted(PRESETS)))
                continue
            for datatype in MAPPABLE_DATATYPES:
                table = datatypes.setdefault(datatype.value, {})
                for value, number in preset.items():
                    table.setdefault(value, number)

        for name, table in (mappings.get("datatypes") or {}).items():
            clean = _valid_table(name, table)
            if clean is not None:
                datatypes.setdefault(name, {}).update(clean)
        datatypes = {name: _unify_numbers(table) for name, table in datatypes.items()}

        return cls(properties=properties, datatypes=datatypes, auto_index=auto_index)

    def _resolve(self, path: Tuple[str, str, str], datatype: Datatype) -> Optional[EnumMap]:
        table = self._exact.get(path)
        if table is not None:
            return table
        for pattern, candidate in self._wildcards:
            if _pattern_matches(pattern, path):
                return candidate
        return self._datatypes.get(datatype.value)

    def lookup(self, device_id: str, node_id: str, property_id: str,
               datatype: Datatype, format_: Optional[str] = None,
               raw: Optional[str] = None) -> Optional[EnumMap]:
        """Return the table for a property, or None if nothing applies.

        With auto_index, an enum value that the configured table does not
        contain (*raw*) falls back to its position in the $format list.
        """
        table = self._resolve((device_id, node_id, property_id), datatype)
        if not self._auto_index or datatype != Datatype.ENUM:
            return table
        if table is not None and (raw is None or raw in table):
            return table
        index = index_mapping(format_)
        if table is None:
            return index or None
        if raw not in index:
            return table
        # Keep the property on the field type its configured table uses
        if any(isinstance(v, float) for v in table.values()):
            return {k: float(v) for k, v in index.items()}
        return index

    def __bool__(self) -> bool:
        return bool(self._exact or self._wildcards or self._datatypes or self._auto_index)
