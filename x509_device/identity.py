"""Load the device identity (certificate + private key) from a PFX bundle."""
import logging, os, shutil, tempfile
from contextlib import ExitStack

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.serialization import (
    Encoding, NoEncryption, PrivateFormat, PublicFormat, pkcs12,
)
from cryptography.x509.oid import NameOID

from .errors import CredentialError

logger = logging.getLogger(__name__)


def _thumbprint(certificate):
    return certificate.fingerprint(hashes.SHA1()).hex().upper()


def _public_der(public_key):
    return public_key.public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo)


class CertificateEntry:
    """One certificate out of a bundle, with its private key when the bundle carries it."""

    def __init__(self, certificate, private_key=None):
        self.certificate = certificate
        self.private_key = private_key
        self.thumbprint = _thumbprint(certificate)
        self.subject = certificate.subject.rfc4514_string()
        self.released = False

    @property
    def has_private_key(self):
        return self.private_key is not None

    def release(self):
        # Drop the key material so nothing outlives the selection.
        self.certificate = None
        self.private_key = None
        self.released = True


class Identity:
    """The certificate the device authenticates with, for the life of the process.

    ssl, paho and the Azure device SDK only take client credentials from files, so the
    PEM certificate and key are written to a private temporary directory
    that :meth:`release` removes.
    """

    def __init__(self, entry: CertificateEntry, workdir: str):
        self._entry = entry
        self._workdir = workdir
        self.certificate = entry.certificate
        self.thumbprint = entry.thumbprint
        self.subject = entry.subject
        self.registration_id = _registration_id(entry.certificate, entry.thumbprint)
        self.cert_file = os.path.join(workdir, "device.cert.pem")
        self.key_file = os.path.join(workdir, "device.key.pem")

    @classmethod
    def from_entry(cls, entry: CertificateEntry) -> "Identity":
        workdir = tempfile.mkdtemp(prefix="x509-device-")
        identity = cls(entry, workdir)
        try:
            with open(identity.cert_file, "wb") as f:
                f.write(entry.certificate.public_bytes(Encoding.PEM))
            fd = os.open(identity.key_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(entry.private_key.private_bytes(
                    Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()))
        except OSError as e:
            shutil.rmtree(workdir, ignore_errors=True)
            raise CredentialError(f"Could not stage certificate {entry.thumbprint}: {e}") from e
        return identity

    @property
    def released(self):
        return self._entry.released

    def release(self):
        if self._entry.released:
            return
        shutil.rmtree(self._workdir, ignore_errors=True)
        self._entry.release()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.release()

    def __repr__(self):
        return f"Identity(registration_id={self.registration_id!r}, thumbprint={self.thumbprint!r})"


def _registration_id(certificate, thumbprint):
    # DPS individual X.509 enrollments use the subject CN as registration ID.
    names = certificate.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    if names:
        return str(names[0].value)
    return thumbprint.lower()


def read_bundle(bundle_path, bundle_password) -> list:
    """Decode every certificate in a PKCS#12 bundle, in bundle order."""
    try:
        with open(bundle_path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise CredentialError(f"Cannot open certificate bundle {bundle_path}: {e}") from e

    password = bundle_password.encode() if bundle_password else None
    try:
        bundle = pkcs12.load_pkcs12(data, password)
    except (ValueError, TypeError) as e:
        raise CredentialError(f"Cannot decrypt certificate bundle {bundle_path}: {e}") from e

    certificates = []
    if bundle.cert is not None:
        certificates.append(bundle.cert.certificate)
    certificates.extend(c.certificate for c in bundle.additional_certs)

    key_der = _public_der(bundle.key.public_key()) if bundle.key is not None else None
    entries = []
    for certificate in certificates:
        owns_key = key_der is not None and _public_der(certificate.public_key()) == key_der
        entries.append(CertificateEntry(certificate, bundle.key if owns_key else None))
    return entries


def select_identity(entries, source="bundle") -> Identity:
    """Keep the first key-bearing entry and release all the others.

    Selection is first match in bundle order, so a bundle should carry a
    single key-bearing certificate.
    """
    selected = None
    with ExitStack() as discard:
        for entry in entries:
            logger.info("Found certificate: %s %s; PrivateKey: %s",
                        entry.thumbprint, entry.subject, entry.has_private_key)
            if selected is None and entry.has_private_key:
                selected = entry
            else:
                discard.callback(entry.release)

        if selected is None:
            raise CredentialError(f"{source} did not contain any certificate with a private key.")

        try:
            identity = Identity.from_entry(selected)
        except Exception:
            selected.release()
            raise

    logger.info("Using certificate %s %s", identity.thumbprint, identity.subject)
    return identity


def load_identity(bundle_path, bundle_password) -> Identity:
    entries = read_bundle(bundle_path, bundle_password)
    return select_identity(entries, source=str(bundle_path))

