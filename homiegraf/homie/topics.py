"""
homiegraf - Homie Topic Parser

Classifies MQTT topics published under a homie v4 base topic:

  <base>/<device>/$attr                    -> DeviceAttribute
  <base>/<device>/<node>/$attr             -> NodeAttribute
  <base>/<device>/<node>/<property>        -> PropertyValue
  <base>/<device>/<node>/<property>/$attr  -> PropertyAttribute

The grammar is positional: segment count plus the '$' prefix on the last
segment decide the shape. Ids are not validated against [a-z0-9-]+, but a
'$' prefix on an id segment (e.g. homie/dev/$fw/name, homie/$broadcast/x)
is never treated as a node or property.

Reference: https://homieiot.github.io/specification/spec-core-v4_0_0/
"""

from dataclasses import dataclass
from typing import List, Union

from ..errors import TopicParseError

DEFAULT_BASE_TOPIC = "homie"
ATTRIBUTE_PREFIX = "$"


@dataclass(frozen=True)
class DeviceAttribute:
    device: str
    attr: str


@dataclass(frozen=True)
class NodeAttribute:
    device: str
    node: str
    attr: str


@dataclass(frozen=True)
class PropertyValue:
    device: str
    node: str
    property: str


@dataclass(frozen=True)
class PropertyAttribute:
    device: str
    node: str
    property: str
    attr: str


TopicKind = Union[DeviceAttribute, NodeAttribute, PropertyValue, PropertyAttribute]


def normalize_base(base: str) -> str:
    """Strip surrounding slashes from a configured base topic."""
    return (base or "").strip().strip("/")


def subscription_topic(base: str = DEFAULT_BASE_TOPIC) -> str:
    """Wildcard subscription covering everything under *base*."""
    return f"{normalize_base(base)}/#"


def _is_attr(segment: str) -> bool:
    return segment.startswith(ATTRIBUTE_PREFIX)


def _split(topic: str, base: str) -> List[str]:
    prefix = normalize_base(base)
    if not prefix:
        raise TopicParseError(topic, "empty base topic")
    if not topic.startswith(prefix + "/"):
        raise TopicParseError(topic, f"not under base {prefix!r}")
    segments = topic[len(prefix) + 1:].split("/")
    if any(not s for s in segments):
        raise TopicParseError(topic, "empty segment")
    return segments


def parse_topic(topic: str, base: str = DEFAULT_BASE_TOPIC) -> TopicKind:
    """Classify *topic* into one of the four homie shapes.

    Raises TopicParseError for anything else.
    """
    segments = _split(topic, base)
    count = len(segments)
    device = segments[0]
    if _is_attr(device):
        raise TopicParseError(topic, "device id starts with '$'")

    if count == 2:
        if _is_attr(segments[1]):
            return DeviceAttribute(device=device, attr=segments[1])
        raise TopicParseError(topic, "device-level segment without '$'")

    if count == 3:
        node, last = segments[1], segments[2]
        if _is_attr(node):
            raise TopicParseError(topic, "node id starts with '$'")
        if _is_attr(last):
            return NodeAttribute(device=device, node=node, attr=last)
        return PropertyValue(device=device, node=node, property=last)

    if count == 4:
        node, prop, last = segments[1], segments[2], segments[3]
        if _is_attr(node) or _is_attr(prop):
            raise TopicParseError(topic, "node or property id starts with '$'")
        if _is_attr(last):
            return PropertyAttribute(device=device, node=node, property=prop, attr=last)
        raise TopicParseError(topic, "property sub-topic without '$'")

    raise TopicParseError(topic, f"{count} segments")
