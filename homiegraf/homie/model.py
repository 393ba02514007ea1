"""
homiegraf - Homie Device Model

Sparse, nullable-field records for devices, nodes and properties. Every
attribute can be set independently and in any order; nothing here knows
whether an entity is "fully described".
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional


class Datatype(str, Enum):
    """Property datatypes understood by the normalizer."""
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    STRING = "string"
    ENUM = "enum"
    COLOR = "color"
    UNKNOWN = "unknown"

    @classmethod
    def from_payload(cls, payload: str) -> "Datatype":
        """Map a $datatype payload to a Datatype, UNKNOWN if unrecognized."""
        try:
            return cls(payload.strip())
        except ValueError:
            return cls.UNKNOWN


class DeviceState(str, Enum):
    """Homie v4 device lifecycle states."""
    INIT = "init"
    READY = "ready"
    DISCONNECTED = "disconnected"
    SLEEPING = "sleeping"
    LOST = "lost"
    ALERT = "alert"


# Reserved ids used when a device $state message is rendered as a metric
DEVICE_STATE_NODE = "$device"
DEVICE_STATE_PROPERTY = "$state"
DEVICE_STATE_FORMAT = ",".join(s.value for s in DeviceState)


class Device:
    """A homie device. Node ids are kept in first-seen order."""

    __slots__ = ("device_id", "name", "state", "node_ids", "attributes")

    def __init__(self, device_id: str):
        self.device_id = device_id
        self.name: Optional[str] = None
        self.state: Optional[DeviceState] = None
        self.node_ids: List[str] = []
        self.attributes: Dict[str, str] = {}

    def add_node(self, node_id: str) -> None:
        if node_id not in self.node_ids:
            self.node_ids.append(node_id)

    @property
    def is_ready(self) -> bool:
        return self.state == DeviceState.READY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.device_id,
            "name": self.name,
            "state": self.state.value if self.state else None,
            "nodes": list(self.node_ids),
            "attributes": dict(self.attributes),
        }


class Node:
    """A homie node, owned by exactly one device."""

    __slots__ = ("device_id", "node_id", "name", "type", "property_ids", "attributes")

    def __init__(self, device_id: str, node_id: str):
        self.device_id = device_id
        self.node_id = node_id
        self.name: Optional[str] = None
        self.type: Optional[str] = None
        self.property_ids: List[str] = []
        self.attributes: Dict[str, str] = {}

    def add_property(self, property_id: str) -> None:
        if property_id not in self.property_ids:
            self.property_ids.append(property_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device": self.device_id,
            "id": self.node_id,
            "name": self.name,
            "type": self.type,
            "properties": list(self.property_ids),
            "attributes": dict(self.attributes),
        }


class Property:
    """A homie property. datatype stays UNKNOWN until $datatype arrives."""

    __slots__ = (
        "device_id", "node_id", "property_id", "value", "datatype",
        "unit", "settable", "format", "name", "attributes",
    )

    def __init__(self, device_id: str, node_id: str, property_id: str):
        self.device_id = device_id
        self.node_id = node_id
        self.property_id = property_id
        self.value: Optional[str] = None
        self.datatype = Datatype.UNKNOWN
        self.unit: Optional[str] = None
        self.settable = False
        self.format: Optional[str] = None
        self.name: Optional[str] = None
        self.attributes: Dict[str, str] = {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device": self.device_id,
            "node": self.node_id,
            "id": self.property_id,
            "value": self.value,
            "datatype": self.datatype.value,
            "unit": self.unit,
            "settable": self.settable,
            "format": self.format,
            "name": self.name,
            "attributes": dict(self.attributes),
        }


@dataclass(frozen=True)
class EmittableFact:
    """Snapshot of a property (or device state) at the moment it changed.

    Produced by the registry; everything downstream works from this copy,
    never from live registry entries.
    """
    device_id: str
    node_id: str
    property_id: str
    value: str
    datatype: Datatype
    payload: str
    unit: Optional[str] = None
    settable: bool = False
    format: Optional[str] = None
    previous_value: Optional[str] = None
    kind: str = "value"

    @property
    def path(self) -> str:
        return f"{self.device_id}/{self.node_id}/{self.property_id}"

    @property
    def is_state(self) -> bool:
        return self.kind == "state"
