"""Bring the simulated device up: identity, DPS registration, hub session, telemetry."""
import asyncio, logging

from .errors import DeviceError, PublishError
from .identity import load_identity
from .provisioning import ProvisioningClient
from .publisher import TelemetryPublisher
from .session import SessionManager

logger = logging.getLogger(__name__)


def _fatal(stage, error):
    logger.error("%s failed: %s", stage, error)
    logger.debug("%s traceback", stage, exc_info=error)
    return 1


class SimulatedDevice:
    """Runs the device lifecycle once and reports a process exit status.

    The steps are strictly sequential up to the open session; after that
    the two publish loops run until ``stop`` is set or one of them fails.
    """

    def __init__(self, settings, provisioning_client=None, session_manager=None,
                 identity_loader=load_identity, publisher_factory=TelemetryPublisher):
        self.settings = settings
        self.provisioning_client = provisioning_client or ProvisioningClient(
            settings.transport, ca_certs=settings.ca_certs)
        self.session_manager = session_manager or SessionManager(
            ca_certs=settings.ca_certs, connect_timeout=settings.connect_timeout)
        self.identity_loader = identity_loader
        self.publisher_factory = publisher_factory
        self.identity = None
        self.registration = None
        self.session = None

    async def run(self, stop: asyncio.Event = None) -> int:
        stop = stop or asyncio.Event()
        try:
            self.identity = self.identity_loader(self.settings.bundle_path,
                                                 self.settings.bundle_password)
        except DeviceError as e:
            return _fatal("Loading the device certificate", e)

        try:
            return await self._provision_and_stream(stop)
        finally:
            self.identity.release()

    async def _provision_and_stream(self, stop):
        s = self.settings
        try:
            self.registration = await asyncio.to_thread(
                self.provisioning_client.register, s.endpoint, s.id_scope, self.identity)
        except DeviceError as e:
            return _fatal("Device registration", e)

        try:
            self.session = await asyncio.to_thread(
                self.session_manager.open, self.registration.assigned_hub,
                self.registration.device_id, self.identity)
        except DeviceError as e:
            return _fatal(f"Connecting to {self.registration.assigned_hub}", e)

        logger.info("Simulated Device. Ctrl-C to exit.")
        publisher = self.publisher_factory(self.session, interval=s.send_interval)
        try:
            await publisher.run(stop)
        except PublishError as e:
            return _fatal("Sending telemetry", e)
        finally:
            self.session.close()
        return 0
