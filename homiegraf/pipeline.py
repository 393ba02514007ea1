"""
homiegraf - Message Pipeline

One MQTT message in, at most one metric record out:

  parse_topic -> DeviceRegistry.apply -> normalize -> encode

The registry is passed in by the caller on every call, so tests (and
multiple bridges in one process) each work on their own registry.

Per-message failures never propagate: unrecognized topics are dropped at
DEBUG, type mismatches are dropped with a WARNING, and both are counted.
"""

import logging
import threading
from typing import Any, Dict, Optional

from .errors import TopicParseError, TypeMismatchError
from .homie.normalizer import EnumMappings, normalize
from .homie.registry import DeviceRegistry
from .homie.topics import DEFAULT_BASE_TOPIC, normalize_base, parse_topic
from .output.line_protocol import DEFAULT_MEASUREMENT, MetricRecord, encode

logger = logging.getLogger(__name__)


class MetricPipeline:
    """Turns messages into records. Homie state lives in the registry, only counters live here.

    keep_rejected_values decides what happens to the registry when a value
    fails normalization: True keeps the rejected raw value as the
    property's current value, False puts the previous value back.
    """

    def __init__(
        self,
        base_topic: str = DEFAULT_BASE_TOPIC,
        measurement: str = DEFAULT_MEASUREMENT,
        mappings: Optional[EnumMappings] = None,
        keep_rejected_values: bool = True,
        emit_device_state: bool = True,
        tag_mapped_values: bool = False,
    ):
        self._base = normalize_base(base_topic)
        self._measurement = measurement or DEFAULT_MEASUREMENT
        self._mappings = mappings or EnumMappings()
        self._keep_rejected = keep_rejected_values
        self._emit_state = emit_device_state
        self._tag_mapped = tag_mapped_values
        self._stats_lock = threading.Lock()
        self._stats = {
            "messages": 0,
            "parse_errors": 0,
            "type_mismatches": 0,
            "emitted": 0,
        }

    @classmethod
    def from_config(cls, config: Any) -> "MetricPipeline":
        mappings = EnumMappings.from_config(
            config.get("enum_mappings"),
            presets=config.get("enum_presets"),
            auto_index=bool(config.get("auto_enum_index")),
        )
        return cls(
            base_topic=config.get("mqtt_topic", DEFAULT_BASE_TOPIC),
            measurement=config.get("measurement", DEFAULT_MEASUREMENT),
            mappings=mappings,
            keep_rejected_values=bool(config.get("keep_rejected_values", True)),
            emit_device_state=bool(config.get("emit_device_state", True)),
            tag_mapped_values=bool(config.get("tag_mapped_values", False)),
        )

    @property
    def base_topic(self) -> str:
        return self._base

    def _count(self, key: str) -> None:
        with self._stats_lock:
            self._stats[key] += 1

    def process(self, registry: DeviceRegistry, topic: str, payload: str,
                timestamp_ns: Optional[int] = None) -> Optional[MetricRecord]:
        """Apply one message to *registry*; return a record if it is emittable."""
        self._count("messages")
        try:
            kind = parse_topic(topic, self._base)
        except TopicParseError as e:
            self._count("parse_errors")
            logger.debug("Dropping message: %s", e)
            return None

        fact = registry.apply(kind, payload)
        if fact is None:
            return None
        if fact.is_state and not self._emit_state:
            return None

        mapping = self._mappings.lookup(
            fact.device_id, fact.node_id, fact.property_id, fact.datatype, fact.format,
            raw=fact.value,
        )
        try:
            normalized = normalize(fact.value, fact.datatype, mapping)
        except TypeMismatchError as e:
            self._count("type_mismatches")
            logger.warning("Dropping value for %s: %s", fact.path, e)
            if not self._keep_rejected:
                registry.restore_value(fact.device_id, fact.node_id,
                                       fact.property_id, fact.previous_value,
                                       rejected=fact.value)
            return None

        record = encode(fact, normalized, timestamp_ns,
                        measurement=self._measurement, tag_mapped=self._tag_mapped)
        self._count("emitted")
        return record

    def get_stats(self) -> Dict[str, int]:
        with self._stats_lock:
            return dict(self._stats)
