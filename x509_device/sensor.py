import json, random
from dataclasses import asdict, dataclass

# Lower bound and span of every reading.
TEMPERATURE_RANGE = (20.0, 15.0)
HUMIDITY_RANGE = (60.0, 20.0)
PRESSURE_RANGE = (1013.25, 12.0)
LATITUDE_RANGE = (39.810492, 0.5)
LONGITUDE_RANGE = (-98.556061, 0.5)

TELEMETRY_FIELDS = ("temperature", "humidity", "pressure", "latitude", "longitude")


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class TelemetryRecord:
    temperature: float
    humidity: float
    pressure: float
    latitude: float
    longitude: float

    def to_json(self):
        return json.dumps(asdict(self))


class EnvironmentSensor:
    """Simulated environment sensor; every read is a fresh uniform draw."""

    def __init__(self, rng=None):
        self.rng = rng or random.Random()

    def _draw(self, bounds):
        low, span = bounds
        return low + self.rng.random() * span

    def read_temperature(self):
        return self._draw(TEMPERATURE_RANGE)

    def read_humidity(self):
        return self._draw(HUMIDITY_RANGE)

    def read_pressure(self):
        return self._draw(PRESSURE_RANGE)

    def read_location(self):
        return Location(latitude=self._draw(LATITUDE_RANGE),
                        longitude=self._draw(LONGITUDE_RANGE))

    def read(self) -> TelemetryRecord:
        location = self.read_location()
        return TelemetryRecord(
            temperature=self.read_temperature(),
            humidity=self.read_humidity(),
            pressure=self.read_pressure(),
            latitude=location.latitude,
            longitude=location.longitude,
        )
