import asyncio, logging
from datetime import datetime

from .sensor import EnvironmentSensor
from .session import OutboundMessage

logger = logging.getLogger(__name__)

TELEMETRY_TAG = "Stelemetry"
LOG_TAG = "Slog"
SEND_INTERVAL = 1.0

# IoT Hub system properties so routing queries can read the JSON body.
JSON_CONTENT = {"$.ct": "application/json", "$.ce": "utf-8"}


def build_message(record, tag) -> OutboundMessage:
    return OutboundMessage(body=record.to_json().encode("ascii"), tag=tag,
                           properties=dict(JSON_CONTENT))


class TelemetryPublisher:
    """Two send loops, telemetry and log, sharing one open session.

    Each loop reads its own sensor, publishes, then waits ``interval``
    seconds or until ``stop`` is set. :meth:`run` returns once ``stop`` is
    set, or raises the first PublishError either loop hits.
    """

    def __init__(self, session, interval=SEND_INTERVAL, sensor_factory=EnvironmentSensor,
                 tags=(TELEMETRY_TAG, LOG_TAG)):
        self.session = session
        self.interval = interval
        self.sensor_factory = sensor_factory
        self.tags = tags
        self.sent = {tag: 0 for tag in tags}

    async def send_loop(self, tag, stop: asyncio.Event):
        sensor = self.sensor_factory()
        while not stop.is_set():
            record = sensor.read()
            message = build_message(record, tag)
            self.session.publish(message)
            self.sent[tag] += 1
            logger.info("%s > Sending message: %s", datetime.now(), message.body.decode("ascii"))

            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    async def run(self, stop: asyncio.Event):
        logger.info("Start reading and sending device telemetry...")
        tasks = [asyncio.create_task(self.send_loop(tag, stop), name=f"send-{tag}")
                 for tag in self.tags]
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            for task in done:
                if task.exception() is not None:
                    raise task.exception()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
