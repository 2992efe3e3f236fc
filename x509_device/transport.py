"""Paho MQTT connection to the IoT hub, authenticated by the device certificate."""
import logging, ssl, threading

from paho.mqtt import client as mqtt

from .errors import AuthenticationError, TransportError

logger = logging.getLogger(__name__)

MQTT_PORT = 8883
KEEPALIVE = 60

# CONNACK codes for a rejected credential, MQTT 3.1.1 and the paho 2.x reason codes.
_AUTH_REFUSED = {4, 5, 134, 135}

# TLS alerts a server sends when it will not accept the client certificate.
_CERTIFICATE_ALERTS = {
    "SSLV3_ALERT_BAD_CERTIFICATE",
    "SSLV3_ALERT_CERTIFICATE_UNKNOWN",
    "SSLV3_ALERT_CERTIFICATE_REVOKED",
    "SSLV3_ALERT_CERTIFICATE_EXPIRED",
    "TLSV1_ALERT_UNKNOWN_CA",
    "TLSV1_ALERT_ACCESS_DENIED",
    "TLSV13_ALERT_CERTIFICATE_REQUIRED",
}


def default_client_factory(client_id):
    client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2,
                         client_id=client_id,
                         protocol=mqtt.MQTTv311)
    client.enable_logger(logging.getLogger("paho.mqtt.client"))
    return client


def reason_value(reason_code):
    return getattr(reason_code, "value", reason_code)


def connect_with_certificate(host, client_id, username, identity, ca_certs=None,
                             timeout=10.0, client_factory=None):
    """Open a TLS MQTT connection authenticated by the identity's certificate.

    Blocks until the broker answers CONNACK, then leaves paho's network loop
    running in its background thread. Returns the connected client.
    """
    client = (client_factory or default_client_factory)(client_id)
    connack = threading.Event()
    outcome = {}

    def on_connect(client, userdata, flags, reason_code, properties=None):
        outcome["rc"] = reason_code
        connack.set()

    def on_disconnect(client, userdata, flags, reason_code, properties=None):
        outcome.setdefault("closed", reason_code)
        connack.set()

    client.on_connect = on_connect
    client.on_disconnect = on_disconnect

    client.username_pw_set(username=username)
    try:
        client.tls_set(ca_certs=ca_certs,
                       certfile=identity.cert_file,
                       keyfile=identity.key_file,
                       tls_version=ssl.PROTOCOL_TLS_CLIENT)
    except (OSError, ValueError) as e:
        raise TransportError(f"Cannot set up TLS for {host}: {e}") from e

    logger.debug("Connecting to %s:%d as %s", host, MQTT_PORT, client_id)
    try:
        client.connect(host, MQTT_PORT, keepalive=KEEPALIVE)
    except ssl.SSLCertVerificationError as e:
        raise TransportError(f"Could not verify {host}: {e}") from e
    except ssl.SSLError as e:
        if getattr(e, "reason", None) not in _CERTIFICATE_ALERTS:
            raise TransportError(f"TLS handshake with {host} failed: {e}") from e
        raise AuthenticationError(f"{host} rejected certificate {identity.thumbprint}: {e}") from e
    except OSError as e:
        raise TransportError(f"Could not reach {host}:{MQTT_PORT}: {e}") from e

    client.loop_start()
    if not connack.wait(timeout):
        _teardown(client)
        raise TransportError(f"No CONNACK from {host} within {timeout}s")

    if "rc" not in outcome:
        _teardown(client)
        raise TransportError(f"{host} closed the connection before CONNACK "
                             f"(rc={reason_value(outcome.get('closed'))})")

    rc = reason_value(outcome["rc"])
    if rc in _AUTH_REFUSED:
        _teardown(client)
        raise AuthenticationError(f"{host} refused {client_id} (rc={rc})")
    if rc != 0:
        _teardown(client)
        raise TransportError(f"{host} refused the connection (rc={rc})")

    client.on_connect = None
    client.on_disconnect = None
    return client


def _teardown(client):
    try:
        client.disconnect()
    finally:
        client.loop_stop()


def disconnect(client):
    """Disconnect and stop the network loop, logging rather than raising."""
    try:
        _teardown(client)
    except Exception as e:
        logger.warning("MQTT disconnect error: %s", e)
