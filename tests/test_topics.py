"""Tests for homie topic classification."""

import pytest

from homiegraf.errors import TopicParseError
from homiegraf.homie.topics import (
    DeviceAttribute,
    NodeAttribute,
    PropertyAttribute,
    PropertyValue,
    normalize_base,
    parse_topic,
    subscription_topic,
)


class TestParseTopicShapes:
    """Tests for the four recognized topic shapes."""

    def test_device_attribute(self):
        assert parse_topic("homie/therm1/$state") == DeviceAttribute("therm1", "$state")

    def test_node_attribute(self):
        assert parse_topic("homie/therm1/main/$properties") == NodeAttribute(
            "therm1", "main", "$properties"
        )

    def test_property_value(self):
        assert parse_topic("homie/therm1/main/setpoint") == PropertyValue(
            "therm1", "main", "setpoint"
        )

    def test_property_attribute(self):
        assert parse_topic("homie/therm1/main/setpoint/$datatype") == PropertyAttribute(
            "therm1", "main", "setpoint", "$datatype"
        )

    def test_custom_base(self):
        kind = parse_topic("devices/home/lamp/light/on", base="devices/home")
        assert kind == PropertyValue("lamp", "light", "on")

    def test_base_with_surrounding_slashes(self):
        kind = parse_topic("homie/lamp/light/on", base="/homie/")
        assert kind == PropertyValue("lamp", "light", "on")

    def test_ids_are_not_restricted_to_homie_charset(self):
        kind = parse_topic("homie/Living Room/Main_1/temp.c")
        assert kind == PropertyValue("Living Room", "Main_1", "temp.c")


class TestParseTopicRejects:
    """Tests for topics that must raise TopicParseError."""

    @pytest.mark.parametrize("topic", [
        "homie",
        "homie/therm1",
        "homie/therm1/main/setpoint/$datatype/extra",
        "homie/a/b/c/d/e/f",
    ])
    def test_wrong_segment_count(self, topic):
        with pytest.raises(TopicParseError) as exc:
            parse_topic(topic)
        assert exc.value.reason == "UNRECOGNIZED_SHAPE"
        assert exc.value.topic == topic

    def test_other_base(self):
        with pytest.raises(TopicParseError):
            parse_topic("zigbee2mqtt/lamp/state")

    def test_base_prefix_must_end_at_separator(self):
        with pytest.raises(TopicParseError):
            parse_topic("homiex/therm1/$state")

    def test_two_segments_without_attribute(self):
        with pytest.raises(TopicParseError):
            parse_topic("homie/therm1/main")

    def test_four_segments_without_attribute(self):
        with pytest.raises(TopicParseError):
            parse_topic("homie/therm1/main/setpoint/set")

    def test_empty_segment(self):
        with pytest.raises(TopicParseError):
            parse_topic("homie/therm1//setpoint")

    def test_trailing_slash(self):
        with pytest.raises(TopicParseError):
            parse_topic("homie/therm1/main/")

    def test_broadcast_topic(self):
        with pytest.raises(TopicParseError):
            parse_topic("homie/$broadcast/alert")

    def test_attribute_in_node_position(self):
        with pytest.raises(TopicParseError):
            parse_topic("homie/therm1/$fw/name")

    def test_attribute_in_property_position(self):
        with pytest.raises(TopicParseError):
            parse_topic("homie/therm1/main/$stats/uptime")

    def test_empty_base(self):
        with pytest.raises(TopicParseError):
            parse_topic("homie/therm1/$state", base="")


class TestSubscription:
    """Tests for base topic helpers."""

    def test_subscription_topic(self):
        assert subscription_topic("homie") == "homie/#"

    def test_subscription_topic_strips_slashes(self):
        assert subscription_topic("/site/homie/") == "site/homie/#"

    def test_normalize_base_handles_none(self):
        assert normalize_base(None) == ""
