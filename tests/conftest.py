import datetime
from types import SimpleNamespace

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import BestAvailableEncryption, pkcs12
from cryptography.x509.oid import NameOID

from x509_device.config import Settings

BUNDLE_PASSWORD = "1234"


def make_certificate(common_name, key=None):
    key = key or ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .sign(key, hashes.SHA256())
    )
    return certificate, key


def write_bundle(path, key=None, cert=None, cas=None, password=BUNDLE_PASSWORD):
    data = pkcs12.serialize_key_and_certificates(
        b"device" if cert is not None else None, key, cert, cas,
        BestAvailableEncryption(password.encode()))
    path.write_bytes(data)
    return str(path)


@pytest.fixture
def device_bundle(tmp_path):
    """PFX with the device certificate + key and one extra CA certificate."""
    cert, key = make_certificate("sim-device-01")
    ca, _ = make_certificate("Test Root CA")
    return write_bundle(tmp_path / "device.pfx", key=key, cert=cert, cas=[ca])


@pytest.fixture
def keyless_bundle(tmp_path):
    first, _ = make_certificate("Test Root CA")
    second, _ = make_certificate("Test Intermediate CA")
    return write_bundle(tmp_path / "chain.pfx", cas=[first, second])


@pytest.fixture
def fake_identity():
    return SimpleNamespace(registration_id="sim-device-01", thumbprint="AB12",
                           cert_file="device.cert.pem", key_file="device.key.pem")


@pytest.fixture
def settings(device_bundle):
    return Settings(bundle_path=device_bundle, bundle_password=BUNDLE_PASSWORD,
                    id_scope="0ne00TEST", send_interval=1.0)


class FakeMqttClient:
    """Stands in for paho's Client; answers CONNACK when the loop starts."""

    def __init__(self, client_id, connack=0, connect_error=None, publish_rc=0, on_publish=None,
                 tls_error=None):
        self.client_id = client_id
        self.connack = connack
        self.connect_error = connect_error
        self.tls_error = tls_error
        self.publish_rc = publish_rc
        self.on_publish_hook = on_publish
        self.on_connect = None
        self.on_disconnect = None
        self.published = []
        self.loop_running = False
        self.disconnected = False

    def username_pw_set(self, username, password=None):
        self.username = username

    def tls_set(self, **kwargs):
        if self.tls_error is not None:
            raise self.tls_error
        self.tls = kwargs

    def connect(self, host, port, keepalive=60):
        if self.connect_error is not None:
            raise self.connect_error
        self.host, self.port = host, port

    def loop_start(self):
        self.loop_running = True
        if self.connack is not None:
            self.on_connect(self, None, {}, self.connack, None)

    def loop_stop(self):
        self.loop_running = False

    def disconnect(self):
        self.disconnected = True

    def publish(self, topic, payload=None, qos=0):
        self.published.append((topic, payload, qos))
        if self.on_publish_hook is not None:
            self.on_publish_hook(self, topic, payload)
        return SimpleNamespace(rc=self.publish_rc, mid=len(self.published))


class ClientFactory:
    """Records every client it hands out."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.clients = []

    def __call__(self, client_id):
        client = FakeMqttClient(client_id, **self.kwargs)
        self.clients.append(client)
        return client


class FakeDps:
    """Stands in for the SDK's ProvisioningDeviceClient and its factory."""

    def __init__(self, status="assigned", hub=None, device_id=None, error=None):
        self.status = status
        self.hub = hub
        self.device_id = device_id
        self.error = error
        self.calls = []
        self.registrations = 0

    def __call__(self, **kwargs):
        self.calls.append(kwargs)
        return self

    def register(self):
        self.registrations += 1
        if self.error is not None:
            raise self.error
        state = SimpleNamespace(registration_id="sim-device-01",
                                assigned_hub=self.hub, device_id=self.device_id)
        return SimpleNamespace(status=self.status, operation_id="op-1", registration_state=state)
