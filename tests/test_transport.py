import ssl

import pytest

from conftest import ClientFactory
from x509_device.errors import AuthenticationError, TransportError
from x509_device.transport import MQTT_PORT, connect_with_certificate


def _connect(factory, identity, **kwargs):
    return connect_with_certificate("hub.example.net", "dev-1", "hub.example.net/dev-1/?api-version=x",
                                    identity, client_factory=factory, **kwargs)


def test_connects_with_identity_certificate(fake_identity):
    factory = ClientFactory()
    client = _connect(factory, fake_identity, ca_certs="ca.pem")

    assert client.host == "hub.example.net"
    assert client.port == MQTT_PORT
    assert client.client_id == "dev-1"
    assert client.username == "hub.example.net/dev-1/?api-version=x"
    assert client.tls["certfile"] == "device.cert.pem"
    assert client.tls["keyfile"] == "device.key.pem"
    assert client.tls["ca_certs"] == "ca.pem"
    assert client.loop_running


@pytest.mark.parametrize("rc", [4, 5, 134, 135])
def test_refused_credentials_raise_authentication_error(fake_identity, rc):
    factory = ClientFactory(connack=rc)
    with pytest.raises(AuthenticationError):
        _connect(factory, fake_identity)
    assert factory.clients[0].disconnected
    assert not factory.clients[0].loop_running


def test_other_connack_refusal_is_transport_error(fake_identity):
    with pytest.raises(TransportError, match="rc=3"):
        _connect(ClientFactory(connack=3), fake_identity)


def ssl_alert(reason):
    error = ssl.SSLError(1, f"[SSL: {reason}] tls alert")
    error.reason = reason
    return error


@pytest.mark.parametrize("reason", ["SSLV3_ALERT_BAD_CERTIFICATE", "TLSV1_ALERT_UNKNOWN_CA",
                                    "SSLV3_ALERT_CERTIFICATE_EXPIRED"])
def test_certificate_alert_is_authentication_error(fake_identity, reason):
    factory = ClientFactory(connect_error=ssl_alert(reason))
    with pytest.raises(AuthenticationError, match="AB12"):
        _connect(factory, fake_identity)


@pytest.mark.parametrize("error", [ssl_alert("WRONG_VERSION_NUMBER"), ssl.SSLError("handshake broke")])
def test_other_tls_failures_are_transport_errors(fake_identity, error):
    with pytest.raises(TransportError, match="TLS handshake with hub.example.net failed"):
        _connect(ClientFactory(connect_error=error), fake_identity)


def test_unusable_tls_files_are_transport_error(fake_identity):
    factory = ClientFactory(tls_error=FileNotFoundError(2, "No such file or directory"))
    with pytest.raises(TransportError, match="Cannot set up TLS for hub.example.net") as excinfo:
        _connect(factory, fake_identity, ca_certs="missing-ca.pem")
    assert isinstance(excinfo.value.__cause__, FileNotFoundError)


def test_server_verification_failure_is_transport_error(fake_identity):
    factory = ClientFactory(connect_error=ssl.SSLCertVerificationError("bad server cert"))
    with pytest.raises(TransportError, match="Could not verify"):
        _connect(factory, fake_identity)


def test_unreachable_host_is_transport_error(fake_identity):
    factory = ClientFactory(connect_error=ConnectionRefusedError("refused"))
    with pytest.raises(TransportError, match="Could not reach"):
        _connect(factory, fake_identity)


def test_missing_connack_times_out(fake_identity):
    factory = ClientFactory(connack=None)
    with pytest.raises(TransportError, match="No CONNACK"):
        _connect(factory, fake_identity, timeout=0.05)
