"""
homiegraf - Record Forwarders

Hands encoded records to the downstream collector:

  SocketForwarder -> Telegraf socket_listener over UDP (one datagram per
                     line) or TCP (one persistent stream, reconnected lazily)
  InfluxForwarder -> InfluxDB v2 write API via influxdb-client

Back-pressure policy: never queue. A destination that keeps failing trips
a circuit breaker and records are dropped (and counted) until a probe send
succeeds again. Failures are logged here and never reach the pipeline.
"""

import logging
import socket
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from influxdb_client import InfluxDBClient, WritePrecision
from influxdb_client.client.write_api import SYNCHRONOUS

from ..errors import ForwardError
from ..utils.circuit_breaker import CircuitBreaker
from .line_protocol import MetricRecord

logger = logging.getLogger(__name__)

TRANSPORTS = ("udp", "tcp")
PUSH_METHODS = ("telegraf", "influx")

# Seconds to wait on a TCP connect/send before counting a failure
SOCKET_TIMEOUT = 5.0

# Largest UDP datagram that fits the IPv4 payload limit
MAX_DATAGRAM = 65507


class Forwarder(ABC):
    """Base forwarder: circuit breaker, counters, and the send contract."""

    name = "forwarder"

    def __init__(self, breaker: Optional[CircuitBreaker] = None):
        self._breaker = breaker or CircuitBreaker(self.name)
        self._lock = threading.Lock()
        self._sent = 0
        self._failed = 0
        self._dropped = 0

    def send(self, record: MetricRecord) -> bool:
        """Deliver one record. Returns False if it was dropped or failed."""
        if not self._breaker.can_execute():
            with self._lock:
                self._dropped += 1
            return False
        line = record.to_line()
        try:
            self._write(line)
        except ForwardError as e:
            with self._lock:
                self._failed += 1
            self._breaker.record_failure()
            logger.warning("%s: failed to write point: %s", self.name, e)
            return False
        with self._lock:
            self._sent += 1
        self._breaker.record_success()
        logger.debug("%s: wrote %s", self.name, line.rstrip("\n"))
        return True

    @abstractmethod
    def _write(self, line: str) -> None:
        """Write one line to the destination. Raise ForwardError on failure."""
        ...

    def close(self) -> None:
        """Release network resources. Safe to call more than once."""

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            stats = {
                "sent": self._sent,
                "failed": self._failed,
                "dropped": self._dropped,
            }
        stats["circuit"] = self._breaker.get_stats()
        return stats


class SocketForwarder(Forwarder):
    """Writes lines to a Telegraf socket_listener over UDP or TCP."""

    def __init__(self, host: str, port: int, transport: str = "udp",
                 timeout: float = SOCKET_TIMEOUT,
                 breaker: Optional[CircuitBreaker] = None):
        transport = transport.lower()
        if transport not in TRANSPORTS:
            raise ValueError(f"transport must be one of {TRANSPORTS}, got {transport!r}")
        self.name = f"telegraf {transport}://{host}:{port}"
        super().__init__(breaker)
        self._host = host
        self._port = port
        self._transport = transport
        self._timeout = timeout
        self._sock: Optional[socket.socket] = None

    @property
    def transport(self) -> str:
        return self._transport

    def _write(self, line: str) -> None:
        data = line.encode("utf-8")
        if self._transport == "udp":
            self._write_udp(data)
        else:
            self._write_tcp(data)

    def _write_udp(self, data: bytes) -> None:
        if len(data) > MAX_DATAGRAM:
            raise ForwardError(f"line of {len(data)} bytes exceeds UDP datagram limit")
        try:
            if self._sock is None:
                self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            self._sock.sendto(data, (self._host, self._port))
        except OSError as e:
            self._close_socket()
            raise ForwardError(str(e)) from e

    def _write_tcp(self, data: bytes) -> None:
        try:
            if self._sock is None:
                self._sock = socket.create_connection(
                    (self._host, self._port), timeout=self._timeout
                )
                logger.info("Connected to %s", self.name)
            self._sock.sendall(data)
        except OSError as e:
            # Drop the stream; the next send reconnects if the breaker allows
            self._close_socket()
            raise ForwardError(str(e)) from e

    def _close_socket(self) -> None:
        sock, self._sock = self._sock, None
        if sock is not None:
            try:
                sock.close()
            except OSError as e:
                logger.debug("Socket close error: %s", e)

    def close(self) -> None:
        self._close_socket()


class InfluxForwarder(Forwarder):
    """Writes lines straight to an InfluxDB v2 bucket."""

    def __init__(self, url: str, bucket: str, org: str, token: str,
                 timeout: float = SOCKET_TIMEOUT,
                 breaker: Optional[CircuitBreaker] = None):
        self.name = f"influx {url} bucket={bucket}"
        super().__init__(breaker)
        self._bucket = bucket
        self._org = org
        self._client = InfluxDBClient(url=url, token=token, org=org,
                                      timeout=int(timeout * 1000))
        self._write_api = self._client.write_api(write_options=SYNCHRONOUS)

    def _write(self, line: str) -> None:
        try:
            self._write_api.write(
                bucket=self._bucket,
                org=self._org,
                record=line.rstrip("\n"),
                write_precision=WritePrecision.NS,
            )
        except Exception as e:
            # influxdb-client surfaces HTTP, urllib3 and socket errors alike
            raise ForwardError(str(e)) from e

    def close(self) -> None:
        try:
            self._write_api.close()
            self._client.close()
        except Exception as e:
            logger.debug("Influx client close error: %s", e)


def create_forwarder(config: Any) -> Forwarder:
    """Build the forwarder selected by the "push_method" setting."""
    method = str(config.get("push_method", "telegraf")).lower()
    if method == "influx":
        url = f"http://{config.get('influx_host')}:{config.get('influx_port')}"
        logger.info("Using influx: %s bucket=[%s] org=[%s]", url,
                    config.get("influx_bucket"), config.get("influx_org"))
        return InfluxForwarder(
            url=url,
            bucket=config.get("influx_bucket"),
            org=config.get("influx_org"),
            token=config.get("influx_token") or "",
        )
    if method == "telegraf":
        logger.info("Using telegraf: %s://%s:%s", config.get("telegraf_transport"),
                    config.get("telegraf_host"), config.get("telegraf_port"))
        return SocketForwarder(
            host=config.get("telegraf_host"),
            port=int(config.get("telegraf_port")),
            transport=config.get("telegraf_transport", "udp"),
        )
    raise ValueError(f"push_method must be one of {PUSH_METHODS}, got {method!r}")
