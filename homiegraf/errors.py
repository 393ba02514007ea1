"""
homiegraf - Exception Types

Per-message failures in the bridge are isolated: each one is caught by the
pipeline or forwarder, logged, counted, and the next message is processed.
"""

from typing import Optional


class HomiegrafError(Exception):
    """Base class for all homiegraf errors."""


class TopicParseError(HomiegrafError):
    """An MQTT topic does not have a recognizable homie shape."""

    UNRECOGNIZED_SHAPE = "UNRECOGNIZED_SHAPE"

    def __init__(self, topic: str, detail: str = "",
                 reason: str = UNRECOGNIZED_SHAPE):
        self.topic = topic
        self.reason = reason
        self.detail = detail
        msg = f"{reason}: {topic!r}"
        if detail:
            msg = f"{msg} ({detail})"
        super().__init__(msg)


class NormalizeError(HomiegrafError):
    """A raw payload could not be converted to a typed value."""


class TypeMismatchError(NormalizeError):
    """The payload does not match the property's declared datatype."""

    def __init__(self, raw: str, datatype: str, detail: Optional[str] = None):
        self.raw = raw
        self.datatype = datatype
        msg = f"{raw!r} is not a valid {datatype}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class ForwardError(HomiegrafError):
    """A record could not be delivered to the downstream collector."""
