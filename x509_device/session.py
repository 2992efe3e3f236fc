"""Authenticated MQTT session to the IoT hub the device was assigned to."""
import logging, threading
from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import quote, urlencode

from paho.mqtt import client as mqtt

from . import transport
from .errors import PublishError, SessionClosedError, TransportError

logger = logging.getLogger(__name__)

HUB_API_VERSION = "2021-04-12"
EVENTS_TOPIC = "devices/{device_id}/messages/events/"

# paho return codes meaning the connection is gone, not just this send.
_CONNECTION_LOST = {mqtt.MQTT_ERR_NO_CONN, mqtt.MQTT_ERR_CONN_LOST}


class SessionState(str, Enum):
    CREATED = "created"
    OPENING = "opening"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"
    FAILED = "failed"


@dataclass(frozen=True)
class OutboundMessage:
    body: bytes
    tag: str
    properties: dict = field(default_factory=dict)

    @property
    def application_properties(self):
        # The hub filters on SensorType without reading the body.
        return {"SensorType": self.tag, **self.properties}


class Session:
    """One MQTT connection to the hub, keyed by (hub, device ID, identity).

    Either fully open or not usable at all. ``publish`` may be called from
    several tasks or threads at once; a lock serialises the state check and
    the send.
    """

    def __init__(self, assigned_hub, device_id, identity, ca_certs=None,
                 connect_timeout=10.0, client_factory=None):
        self.assigned_hub = assigned_hub
        self.device_id = device_id
        self.identity = identity
        self.ca_certs = ca_certs
        self.connect_timeout = connect_timeout
        self.client_factory = client_factory
        self.state = SessionState.CREATED
        self._client = None
        self._lock = threading.RLock()

    @property
    def username(self):
        return f"{self.assigned_hub}/{self.device_id}/?api-version={HUB_API_VERSION}"

    @property
    def is_open(self):
        return self.state is SessionState.OPEN

    def open(self):
        with self._lock:
            if self.state is not SessionState.CREATED:
                raise TransportError(f"Session to {self.assigned_hub} cannot be opened from {self.state.value}")
            self.state = SessionState.OPENING

        logger.info("DeviceClient OpenAsync.")
        try:
            client = transport.connect_with_certificate(
                self.assigned_hub, self.device_id, self.username, self.identity,
                ca_certs=self.ca_certs, timeout=self.connect_timeout,
                client_factory=self.client_factory)
        except Exception:
            self.state = SessionState.FAILED
            raise

        with self._lock:
            self._client = client
            client.on_disconnect = self._on_disconnect
            self.state = SessionState.OPEN
        logger.info("Session open to %s as %s", self.assigned_hub, self.device_id)
        return self

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        with self._lock:
            if self.state is SessionState.OPEN:
                logger.error("Hub %s dropped the connection (rc=%s)",
                             self.assigned_hub, transport.reason_value(reason_code))
                self.state = SessionState.FAILED

    def topic_for(self, message: OutboundMessage):
        return EVENTS_TOPIC.format(device_id=self.device_id) + urlencode(
            message.application_properties, safe="$", quote_via=quote)

    def publish(self, message: OutboundMessage):
        with self._lock:
            if self.state in (SessionState.CLOSING, SessionState.CLOSED):
                raise SessionClosedError(f"Session to {self.assigned_hub} is {self.state.value}")
            if self.state is not SessionState.OPEN:
                raise PublishError(f"Session to {self.assigned_hub} is {self.state.value}, not open")

            info = self._client.publish(self.topic_for(message), message.body, qos=1)
            if info.rc != mqtt.MQTT_ERR_SUCCESS:
                if info.rc in _CONNECTION_LOST:
                    self.state = SessionState.FAILED
                raise PublishError(f"Publish to {self.assigned_hub} failed: {mqtt.error_string(info.rc)}")
            return info

    def close(self):
        with self._lock:
            if self.state in (SessionState.CLOSING, SessionState.CLOSED):
                return
            client, self._client = self._client, None
            self.state = SessionState.CLOSING

        logger.info("DeviceClient CloseAsync.")
        if client is not None:
            client.on_disconnect = None
            transport.disconnect(client)
        self.state = SessionState.CLOSED

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class SessionManager:
    def __init__(self, ca_certs=None, connect_timeout=10.0, client_factory=None):
        self.ca_certs = ca_certs
        self.connect_timeout = connect_timeout
        self.client_factory = client_factory

    def open(self, assigned_hub, device_id, identity) -> Session:
        """Connect to ``assigned_hub`` as ``device_id`` and return the open session."""
        logger.info("Creating X509 DeviceClient authentication.")
        session = Session(assigned_hub, device_id, identity,
                          ca_certs=self.ca_certs,
                          connect_timeout=self.connect_timeout,
                          client_factory=self.client_factory)
        return session.open()
