"""Register the device with the Azure Device Provisioning Service.

One call to :meth:`ProvisioningClient.register` is one registration
attempt. The SDK runs the whole handshake (register request, certificate
check, polling while DPS is ``assigning``) inside that call; nothing is
retried here.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from azure.iot.device import X509, ProvisioningDeviceClient, exceptions

from .errors import AuthenticationError, ProvisioningError, TransportError

logger = logging.getLogger(__name__)

GLOBAL_DEVICE_ENDPOINT = "global.azure-devices-provisioning.net"

# Transport option name -> the SDK's websockets flag.
TRANSPORTS = {"mqtt": False, "websockets": True}


class RegistrationStatus(str, Enum):
    ASSIGNED = "assigned"
    ASSIGNING = "assigning"
    FAILED = "failed"
    DISABLED = "disabled"
    UNASSIGNED = "unassigned"


@dataclass(frozen=True)
class RegistrationResult:
    status: RegistrationStatus
    registration_id: str
    assigned_hub: Optional[str] = None
    device_id: Optional[str] = None
    operation_id: Optional[str] = None

    @classmethod
    def from_sdk(cls, result, registration_id):
        """Map the SDK's registration result onto ours."""
        try:
            status = RegistrationStatus(result.status)
        except ValueError:
            raise TransportError(f"DPS returned unknown registration status {result.status!r}") from None

        state = result.registration_state
        assigned = status is RegistrationStatus.ASSIGNED
        if assigned and not (state and state.assigned_hub and state.device_id):
            raise TransportError("DPS assigned the device without a hub or device ID")
        return cls(
            status=status,
            registration_id=getattr(state, "registration_id", None) or registration_id,
            assigned_hub=state.assigned_hub if assigned else None,
            device_id=state.device_id if assigned else None,
            operation_id=result.operation_id,
        )


def _read_ca(ca_certs):
    if not ca_certs:
        return None
    try:
        with open(ca_certs) as f:
            return f.read()
    except OSError as e:
        raise TransportError(f"Cannot read CA bundle {ca_certs}: {e}") from e


class ProvisioningClient:
    def __init__(self, transport="mqtt", ca_certs=None,
                 client_factory=ProvisioningDeviceClient.create_from_x509_certificate):
        if transport not in TRANSPORTS:
            raise ValueError(f"Unknown provisioning transport {transport!r}")
        self.transport = transport
        self.ca_certs = ca_certs
        self.client_factory = client_factory

    def register(self, endpoint, id_scope, identity) -> RegistrationResult:
        """Register ``identity`` under ``id_scope``.

        Returns the result when DPS assigns the device. Raises
        ProvisioningError for any other final status, AuthenticationError
        when DPS rejects the certificate, and TransportError when the
        exchange itself breaks down.
        """
        logger.info("RegistrationID = %s", identity.registration_id)
        logger.info("ProvisioningClient RegisterAsync . . . ")

        x509 = X509(cert_file=identity.cert_file, key_file=identity.key_file)
        try:
            client = self.client_factory(
                provisioning_host=endpoint,
                registration_id=identity.registration_id,
                id_scope=id_scope,
                x509=x509,
                websockets=TRANSPORTS[self.transport],
                server_verification_cert=_read_ca(self.ca_certs),
            )
            sdk_result = client.register()
        except exceptions.CredentialError as e:
            raise AuthenticationError(f"DPS rejected certificate {identity.thumbprint}: {e}") from e
        except (exceptions.ClientError, exceptions.ServiceError,
                exceptions.OperationTimeout, exceptions.OperationCancelled) as e:
            raise TransportError(f"DPS registration via {endpoint} failed: {e}") from e

        result = RegistrationResult.from_sdk(sdk_result, identity.registration_id)
        if result.status is not RegistrationStatus.ASSIGNED:
            logger.error("Device Registration Status: %s", result.status.value)
            raise ProvisioningError(result.status, result)

        logger.info("Device Registration Status: %s", result.status.value)
        logger.info("ProvisioningClient AssignedHub: %s; DeviceID: %s",
                    result.assigned_hub, result.device_id)
        return result
