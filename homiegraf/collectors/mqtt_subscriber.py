"""
homiegraf - MQTT Homie Subscriber

Subscribes to <base>/# on a homie broker and feeds every message through
the pipeline, sending whatever comes out to the forwarder.

paho-mqtt runs the whole chain on its network thread, one message at a
time in arrival order. Subscribing again on every (re)connect makes the
broker replay retained attributes and values, which the registry absorbs
idempotently.
"""

import logging
import os
import ssl
import threading
from typing import Any, Dict, List, Optional

import paho.mqtt.client as mqtt

from ..homie.registry import DeviceRegistry
from ..homie.topics import subscription_topic
from ..output.forwarder import Forwarder
from ..pipeline import MetricPipeline
from ..utils.reconnect import BrokerBackoff

logger = logging.getLogger(__name__)

DEFAULT_BROKER = "localhost"
DEFAULT_PORT = 1883
DEFAULT_KEEPALIVE = 5

# Maximum MQTT payload size to process (bytes)
MAX_PAYLOAD_SIZE = 65536  # 64 KB


def _client_id() -> str:
    return f"homiegraf-{os.getpid()}"


class HomieSubscriber:
    """Live MQTT subscriber for a homie device tree."""

    def __init__(
        self,
        pipeline: MetricPipeline,
        forwarder: Forwarder,
        registry: Optional[DeviceRegistry] = None,
        broker: str = DEFAULT_BROKER,
        port: int = DEFAULT_PORT,
        username: Optional[str] = None,
        password: Optional[str] = None,
        tls: bool = False,
        keepalive: int = DEFAULT_KEEPALIVE,
    ):
        self._pipeline = pipeline
        self._forwarder = forwarder
        self._registry = registry if registry is not None else DeviceRegistry()
        self._broker = broker
        self._port = port
        self._topic = subscription_topic(pipeline.base_topic)
        self._username = username
        self._password = password
        self._tls = tls
        self._keepalive = keepalive
        self._client = None
        self._thread: Optional[threading.Thread] = None
        self._running = threading.Event()
        self._connected = threading.Event()
        self._stop_event = threading.Event()
        self._stats_lock = threading.Lock()
        self._messages_received = 0
        self._rejected_payloads = 0
        self._handler_errors = 0
        self._records_sent = 0

    @classmethod
    def from_config(cls, config: Any, pipeline: MetricPipeline,
                    forwarder: Forwarder,
                    registry: Optional[DeviceRegistry] = None) -> "HomieSubscriber":
        return cls(
            pipeline=pipeline,
            forwarder=forwarder,
            registry=registry,
            broker=config.get("mqtt_host", DEFAULT_BROKER),
            port=int(config.get("mqtt_port", DEFAULT_PORT)),
            username=config.get("mqtt_username"),
            password=config.get("mqtt_password"),
            tls=bool(config.get("mqtt_tls", False)),
            keepalive=int(config.get("mqtt_keepalive", DEFAULT_KEEPALIVE)),
        )

    @property
    def registry(self) -> DeviceRegistry:
        return self._registry

    @property
    def topic(self) -> str:
        return self._topic

    def _create_client(self) -> Any:
        api_version = getattr(mqtt, "CallbackAPIVersion", None)
        if api_version is not None and hasattr(api_version, "VERSION2"):
            client = mqtt.Client(api_version.VERSION2, client_id=_client_id())
        else:
            client = mqtt.Client(client_id=_client_id())

        if self._username:
            client.username_pw_set(self._username, self._password or "")
        if self._tls:
            client.tls_set(cert_reqs=ssl.CERT_REQUIRED,
                           tls_version=ssl.PROTOCOL_TLS_CLIENT)
            logger.info("MQTT TLS enabled for %s:%d", self._broker, self._port)

        client.on_connect = self._on_connect
        client.on_message = self._on_message
        client.on_disconnect = self._on_disconnect
        return client

    def start(self) -> bool:
        """Start the subscriber in a background thread."""
        if self._running.is_set():
            return True
        try:
            self._client = self._create_client()
        except (ValueError, OSError, ssl.SSLError) as e:
            logger.error("Failed to start MQTT subscriber: %s", e)
            return False

        self._stop_event.clear()
        self._running.set()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="homiegraf-mqtt",
            daemon=True,
        )
        self._thread.start()
        logger.info("MQTT subscriber starting: %s:%d topic=%s",
                    self._broker, self._port, self._topic)
        return True

    def stop(self) -> None:
        """Stop the subscriber and wait for its thread to exit."""
        self._running.clear()
        self._stop_event.set()
        client = self._client
        if client:
            try:
                client.disconnect()
            except Exception as e:
                logger.debug("MQTT disconnect error: %s", e)
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
            if self._thread.is_alive():
                logger.warning("MQTT subscriber thread did not exit within 5s")
        self._client = None
        self._thread = None
        self._connected.clear()
        logger.info("MQTT subscriber stopped")

    def _run_loop(self) -> None:
        """Connect, run the network loop, back off and retry until stopped."""
        backoff = BrokerBackoff()
        while self._running.is_set() and not self._stop_event.is_set():
            try:
                self._client.connect(self._broker, self._port,
                                     keepalive=self._keepalive)
                backoff.connected()
                self._client.loop_forever()
            except Exception as e:
                if not self._running.is_set():
                    break
                delay = backoff.failed()
                logger.warning(
                    "MQTT connection to %s:%d failed: %s, retrying in %.1fs (attempt %d)",
                    self._broker, self._port, e, delay, backoff.failures,
                )
                self._stop_event.wait(delay)

    def _on_connect(self, client: Any, userdata: Any, flags: Any,
                    rc: Any, *args: Any) -> None:
        self._connected.set()
        logger.info("MQTT connected to %s:%d (rc=%s), subscribing to %s",
                    self._broker, self._port, rc, self._topic)
        client.subscribe(self._topic)

    def _on_disconnect(self, client: Any, userdata: Any, *args: Any) -> None:
        self._connected.clear()
        if self._running.is_set():
            logger.warning("MQTT disconnected from %s:%d, will reconnect",
                           self._broker, self._port)

    def _on_message(self, client: Any, userdata: Any, msg: Any) -> None:
        try:
            self.handle_message(msg.topic, msg.payload)
        except Exception:
            with self._stats_lock:
                self._handler_errors += 1
            logger.exception("Unexpected error handling message on %s", msg.topic)

    def handle_message(self, topic: str, payload: bytes) -> bool:
        """Run one raw MQTT message through the pipeline and forwarder.

        Returns True if a record was produced and delivered.
        """
        if len(payload) > MAX_PAYLOAD_SIZE:
            with self._stats_lock:
                self._rejected_payloads += 1
            logger.warning("Rejected oversized payload (%d bytes) on %s",
                           len(payload), topic)
            return False
        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError:
            with self._stats_lock:
                self._rejected_payloads += 1
            logger.warning("Rejected non-UTF-8 payload on %s", topic)
            return False

        with self._stats_lock:
            self._messages_received += 1

        record = self._pipeline.process(self._registry, topic, text)
        if record is None:
            return False
        sent = self._forwarder.send(record)
        if sent:
            with self._stats_lock:
                self._records_sent += 1
        return sent

    def status_lines(self) -> List[str]:
        """One line per known device: id and whether it is ready."""
        lines = []
        for device in self._registry.devices():
            ready = "ready" if device["state"] == "ready" else "not ready"
            lines.append(f"{device['id']}: {ready} (state={device['state']}, "
                         f"nodes={len(device['nodes'])})")
        return lines

    def log_status(self) -> None:
        lines = self.status_lines()
        logger.info("%d devices, %d properties, %s",
                    self._registry.device_count, self._registry.property_count,
                    "connected" if self._connected.is_set() else "disconnected")
        for line in lines:
            logger.info("  %s", line)

    def get_stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            stats = {
                "messages_received": self._messages_received,
                "rejected_payloads": self._rejected_payloads,
                "handler_errors": self._handler_errors,
                "records_sent": self._records_sent,
            }
        stats.update({
            "broker": self._broker,
            "port": self._port,
            "topic": self._topic,
            "connected": self._connected.is_set(),
            "running": self._running.is_set(),
            "has_credentials": self._username is not None,
            "device_count": self._registry.device_count,
            "pipeline": self._pipeline.get_stats(),
            "forwarder": self._forwarder.get_stats(),
        })
        return stats
