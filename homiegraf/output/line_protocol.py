"""
homiegraf - Line Protocol Encoder

Renders one property update as one line-protocol record:

  homie,device=<device>,node=<node>,property=<property> value=<v> <unix-nanos>

Field encoding:
  integer -> 42i
  float   -> 42.0, 21.5, 1e+20
  boolean -> t / f
  string  -> "double quoted", with \\ and " escaped

Reference: https://docs.influxdata.com/influxdb/v2/reference/syntax/line-protocol/
"""

import time
from dataclasses import dataclass
from typing import Dict, Optional

from ..homie.model import EmittableFact
from ..homie.normalizer import FieldValue, NormalizedValue

DEFAULT_MEASUREMENT = "homie"
FIELD_KEY = "value"


def _escape_measurement(name: str) -> str:
    # Backslashes are literal in a measurement; a newline would end the point
    return name.replace(",", "\\,").replace(" ", "\\ ").replace("\n", "\\n")


def _escape_tag(text: str) -> str:
    return (text.replace("\\", "\\\\").replace(",", "\\,").replace("=", "\\=")
            .replace(" ", "\\ ").replace("\n", "\\n"))


def _escape_string_field(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def format_field_value(value: FieldValue) -> str:
    """Encode a field value per line-protocol type rules."""
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return "t" if value else "f"
    if isinstance(value, int):
        return f"{value}i"
    if isinstance(value, float):
        return repr(value)
    return f'"{_escape_string_field(str(value))}"'


@dataclass(frozen=True)
class MetricRecord:
    """A single metric point, ready to be rendered or forwarded."""
    measurement: str
    tags: Dict[str, str]
    value: FieldValue
    timestamp_ns: int
    from_enum: bool = False

    def to_line(self) -> str:
        """Render as exactly one newline-terminated line."""
        tag_part = "".join(
            f",{_escape_tag(k)}={_escape_tag(v)}" for k, v in self.tags.items()
        )
        return (
            f"{_escape_measurement(self.measurement)}{tag_part} "
            f"{FIELD_KEY}={format_field_value(self.value)} {self.timestamp_ns}\n"
        )


def encode(fact: EmittableFact, normalized: NormalizedValue,
           timestamp_ns: Optional[int] = None,
           measurement: str = DEFAULT_MEASUREMENT,
           tag_mapped: bool = False) -> MetricRecord:
    """Build the record for *fact*. Timestamp defaults to now (receipt time)."""
    tags = {
        "device": fact.device_id,
        "node": fact.node_id,
        "property": fact.property_id,
    }
    if tag_mapped and normalized.from_enum:
        tags["mapped"] = "true"
    return MetricRecord(
        measurement=measurement or DEFAULT_MEASUREMENT,
        tags=tags,
        value=normalized.value,
        timestamp_ns=timestamp_ns if timestamp_ns is not None else time.time_ns(),
        from_enum=normalized.from_enum,
    )
