"""
homiegraf - Device Registry

Thread-safe in-memory arena of homie devices, nodes and properties,
reconstructed from the topic stream.

Entries are keyed by composite ids:
  devices    -> device_id
  nodes      -> (device_id, node_id)
  properties -> (device_id, node_id, property_id)

Entries are created lazily on first reference (including ids listed in
$nodes / $properties) and are never removed: a lost or disconnected device
is just a state attribute. Replaying the same retained messages after a
reconnect therefore converges to the same registry contents.

Only property value updates and device $state messages produce an
EmittableFact. Metadata ($datatype, $unit, $settable, $format, $name, ...)
updates the entry in place and affects how the next value is interpreted.
"""

import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from .model import (
    DEVICE_STATE_FORMAT,
    DEVICE_STATE_NODE,
    DEVICE_STATE_PROPERTY,
    Datatype,
    Device,
    DeviceState,
    EmittableFact,
    Node,
    Property,
)
from .topics import (
    DeviceAttribute,
    NodeAttribute,
    PropertyAttribute,
    PropertyValue,
    TopicKind,
)

logger = logging.getLogger(__name__)

NodeKey = Tuple[str, str]
PropertyKey = Tuple[str, str, str]


def _split_list(payload: str) -> List[str]:
    """Split a homie array payload ("a,b,c"). Legacy "id:suffix" entries keep the id."""
    items = []
    for item in payload.split(","):
        item = item.split(":", 1)[0].strip()
        if item:
            items.append(item)
    return items


class DeviceRegistry:
    """Registry of homie devices, nodes and properties.

    All mutations and reads go through one lock; readers get copies.
    """

    def __init__(self):
        self._devices: Dict[str, Device] = {}
        self._nodes: Dict[NodeKey, Node] = {}
        self._properties: Dict[PropertyKey, Property] = {}
        self._lock = threading.Lock()

    # -- mutation ---------------------------------------------------------

    def apply(self, kind: TopicKind, payload: str) -> Optional[EmittableFact]:
        """Apply one classified message. Returns a fact for value/$state updates."""
        with self._lock:
            if isinstance(kind, PropertyValue):
                return self._apply_value_locked(kind, payload)
            if isinstance(kind, PropertyAttribute):
                self._apply_property_attr_locked(kind, payload)
                return None
            if isinstance(kind, NodeAttribute):
                self._apply_node_attr_locked(kind, payload)
                return None
            if isinstance(kind, DeviceAttribute):
                return self._apply_device_attr_locked(kind, payload)
        raise TypeError(f"unsupported topic kind: {kind!r}")

    def restore_value(self, device_id: str, node_id: str, property_id: str,
                      value: Optional[str], rejected: Optional[str]) -> bool:
        """Put back a property's previous raw value if it still holds *rejected*.

        A newer message may have replaced the rejected value between apply()
        and this call; that value is left alone. Returns False when nothing
        was restored.
        """
        with self._lock:
            prop = self._properties.get((device_id, node_id, property_id))
            if prop is None or prop.value != rejected:
                return False
            prop.value = value
            return True

    def _ensure_device_locked(self, device_id: str) -> Device:
        device = self._devices.get(device_id)
        if device is None:
            device = Device(device_id)
            self._devices[device_id] = device
            logger.info("Discovered homie device %s", device_id)
        return device

    def _ensure_node_locked(self, device_id: str, node_id: str) -> Node:
        key = (device_id, node_id)
        node = self._nodes.get(key)
        if node is None:
            self._ensure_device_locked(device_id).add_node(node_id)
            node = Node(device_id, node_id)
            self._nodes[key] = node
            logger.debug("Discovered node %s/%s", device_id, node_id)
        return node

    def _ensure_property_locked(self, device_id: str, node_id: str,
                                property_id: str) -> Property:
        key = (device_id, node_id, property_id)
        prop = self._properties.get(key)
        if prop is None:
            self._ensure_node_locked(device_id, node_id).add_property(property_id)
            prop = Property(device_id, node_id, property_id)
            self._properties[key] = prop
            logger.debug("Discovered property %s/%s/%s", device_id, node_id, property_id)
        return prop

    def _apply_value_locked(self, kind: PropertyValue, payload: str) -> EmittableFact:
        prop = self._ensure_property_locked(kind.device, kind.node, kind.property)
        previous = prop.value
        prop.value = payload
        return EmittableFact(
            device_id=prop.device_id,
            node_id=prop.node_id,
            property_id=prop.property_id,
            value=payload,
            datatype=prop.datatype,
            payload=payload,
            unit=prop.unit,
            settable=prop.settable,
            format=prop.format,
            previous_value=previous,
        )

    def _apply_property_attr_locked(self, kind: PropertyAttribute, payload: str) -> None:
        prop = self._ensure_property_locked(kind.device, kind.node, kind.property)
        prop.attributes[kind.attr] = payload
        attr = kind.attr
        if attr == "$datatype":
            prop.datatype = Datatype.from_payload(payload)
            if prop.datatype == Datatype.UNKNOWN:
                logger.debug("Unsupported datatype %r on %s/%s/%s, treating as unknown",
                             payload, kind.device, kind.node, kind.property)
        elif attr == "$unit":
            prop.unit = payload or None
        elif attr == "$format":
            prop.format = payload or None
        elif attr == "$name":
            prop.name = payload
        elif attr == "$settable":
            if payload in ("true", "false"):
                prop.settable = payload == "true"
            else:
                logger.debug("Ignoring $settable=%r on %s/%s/%s",
                             payload, kind.device, kind.node, kind.property)

    def _apply_node_attr_locked(self, kind: NodeAttribute, payload: str) -> None:
        node = self._ensure_node_locked(kind.device, kind.node)
        node.attributes[kind.attr] = payload
        if kind.attr == "$name":
            node.name = payload
        elif kind.attr == "$type":
            node.type = payload
        elif kind.attr == "$properties":
            for property_id in _split_list(payload):
                self._ensure_property_locked(kind.device, kind.node, property_id)

    def _apply_device_attr_locked(self, kind: DeviceAttribute,
                                  payload: str) -> Optional[EmittableFact]:
        device = self._ensure_device_locked(kind.device)
        device.attributes[kind.attr] = payload
        if kind.attr == "$name":
            device.name = payload
        elif kind.attr == "$nodes":
            for node_id in _split_list(payload):
                self._ensure_node_locked(kind.device, node_id)
        elif kind.attr == "$state":
            return self._apply_state_locked(device, payload)
        return None

    def _apply_state_locked(self, device: Device, payload: str) -> Optional[EmittableFact]:
        try:
            state = DeviceState(payload)
        except ValueError:
            logger.warning("Device %s published unknown $state %r", device.device_id, payload)
            return None
        previous = device.state
        device.state = state
        if previous != state:
            logger.info("Device %s state: %s -> %s", device.device_id,
                        previous.value if previous else "unknown", state.value)
        return EmittableFact(
            device_id=device.device_id,
            node_id=DEVICE_STATE_NODE,
            property_id=DEVICE_STATE_PROPERTY,
            value=state.value,
            datatype=Datatype.ENUM,
            payload=payload,
            format=DEVICE_STATE_FORMAT,
            previous_value=previous.value if previous else None,
            kind="state",
        )

    # -- queries ----------------------------------------------------------

    def get_device(self, device_id: str) -> Optional[Dict[str, Any]]:
        """Return a copy of one device, or None."""
        with self._lock:
            device = self._devices.get(device_id)
            return device.to_dict() if device else None

    def get_node(self, device_id: str, node_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            node = self._nodes.get((device_id, node_id))
            return node.to_dict() if node else None

    def get_property(self, device_id: str, node_id: str,
                     property_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            prop = self._properties.get((device_id, node_id, property_id))
            return prop.to_dict() if prop else None

    def devices(self) -> List[Dict[str, Any]]:
        """Return copies of all devices in discovery order."""
        with self._lock:
            return [d.to_dict() for d in self._devices.values()]

    @property
    def device_count(self) -> int:
        with self._lock:
            return len(self._devices)

    @property
    def property_count(self) -> int:
        with self._lock:
            return len(self._properties)

    def snapshot(self) -> Dict[str, Any]:
        """Plain-dict dump of the whole registry, keyed by composite path."""
        with self._lock:
            return {
                "devices": {
                    did: d.to_dict() for did, d in sorted(self._devices.items())
                },
                "nodes": {
                    "/".join(key): n.to_dict() for key, n in sorted(self._nodes.items())
                },
                "properties": {
                    "/".join(key): p.to_dict() for key, p in sorted(self._properties.items())
                },
            }
