import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigError
from .provisioning import GLOBAL_DEVICE_ENDPOINT, TRANSPORTS


@dataclass(frozen=True)
class Settings:
    bundle_path: str
    bundle_password: str
    id_scope: str
    endpoint: str = GLOBAL_DEVICE_ENDPOINT
    transport: str = "mqtt"
    ca_certs: Optional[str] = None
    send_interval: float = 1.0
    connect_timeout: float = 10.0


def _float(name: str, raw: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {raw!r}")
    return value


def get_settings(**overrides) -> Settings:
    """Build settings from the environment; non-None ``overrides`` win.

    A dotenv file (``DEVICE_ENV_FILE``, default ``.env``) is loaded first,
    without replacing variables already set in the real environment.
    """
    env_file = os.getenv("DEVICE_ENV_FILE", ".env")
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    values = {
        "bundle_path": os.getenv("DEVICE_BUNDLE_PATH", ""),
        # Better kept in a hardware security module on production devices.
        "bundle_password": os.getenv("DEVICE_BUNDLE_PASSWORD", ""),
        "id_scope": os.getenv("DPS_ID_SCOPE", ""),
        "endpoint": os.getenv("DPS_GLOBAL_ENDPOINT", GLOBAL_DEVICE_ENDPOINT),
        "transport": os.getenv("DPS_TRANSPORT", "mqtt").lower(),
        "ca_certs": os.getenv("DEVICE_CA_CERTS") or None,
        "send_interval": os.getenv("SEND_INTERVAL_SECONDS", "1.0"),
        "connect_timeout": os.getenv("CONNECT_TIMEOUT_SECONDS", "10"),
    }
    values.update({k: v for k, v in overrides.items() if v is not None})

    if not values["bundle_path"]:
        raise ConfigError("No certificate bundle: set DEVICE_BUNDLE_PATH or pass --bundle")
    if not values["id_scope"]:
        raise ConfigError("No DPS ID scope: set DPS_ID_SCOPE or pass --id-scope")
    if values["transport"] not in TRANSPORTS:
        raise ConfigError(f"DPS_TRANSPORT must be one of {sorted(TRANSPORTS)}, got {values['transport']!r}")

    for name in ("send_interval", "connect_timeout"):
        values[name] = _float(name, str(values[name]))

    return Settings(**values)
