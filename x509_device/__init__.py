"""Simulated X.509 device: provision with DPS, then stream telemetry to the assigned hub."""

__version__ = "0.3.0"
