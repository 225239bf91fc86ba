"""Client configuration for tachobridge."""

from __future__ import annotations

import dataclasses
import os
import platform
from collections.abc import Mapping
from typing import Any

from tachobridge._constants import FLEET_BASE_URL, HUB_BASE_URL, MAX_POLL_DURATION_S, POLL_INTERVAL_S
from tachobridge.exceptions import BridgeConfigError


def normalize_base_url(url: str | None, fallback: str) -> str:
    """Trim whitespace and trailing slashes, falling back when empty."""
    trimmed = (url or "").strip().rstrip("/")
    return trimmed or fallback


def _env_float(env: Mapping[str, str], key: str) -> float | None:
    value = env.get(key)
    if value is None or not value.strip():
        return None
    try:
        return float(value)
    except ValueError as exc:
        raise BridgeConfigError(f"{key} must be a number, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class DeviceProfile:
    """Device identity fields sent when registering this device with the Hub."""

    device_name: str = dataclasses.field(default_factory=platform.node)
    device_platform: str = dataclasses.field(default_factory=platform.system)
    device_model: str = dataclasses.field(default_factory=platform.machine)
    os_version: str = dataclasses.field(default_factory=platform.release)
    device_manufacturer: str = "TransportKlok"


@dataclasses.dataclass(frozen=True)
class BridgeConfig:
    """Client configuration.

    Parameters
    ----------
    hub_base_url : str
        Base URL of the Hub identity service (no trailing slash).
    fleet_base_url : str
        Base URL of the Fleet service (no trailing slash).
    application_key : str
        Application key sent when requesting a device authorization token.
    app_version : str
        Application version reported on device registration.
    redirect_uri : str or None
        Added as ``redirect`` query parameter to the approval URL so the
        browser can hand control back to the desktop application.
    poll_interval : float
        Seconds between two device authorization checks.
    max_poll_duration : float
        Seconds after which an unconfirmed authorization expires.
    request_timeout : float
        Total timeout in seconds for a single HTTP request.
    credentials_path : str or None
        JSON file used to persist credentials.  ``None`` keeps them in memory.
    device : DeviceProfile
        Device identity fields.
    """

    hub_base_url: str = HUB_BASE_URL
    fleet_base_url: str = FLEET_BASE_URL
    application_key: str = ""
    app_version: str = "0.0.0"
    redirect_uri: str | None = "transportklok_tachograph_connector://open"
    poll_interval: float = POLL_INTERVAL_S
    max_poll_duration: float = MAX_POLL_DURATION_S
    request_timeout: float = 30.0
    credentials_path: str | None = None
    device: DeviceProfile = dataclasses.field(default_factory=DeviceProfile)

    def __post_init__(self) -> None:
        object.__setattr__(self, "hub_base_url", normalize_base_url(self.hub_base_url, HUB_BASE_URL))
        object.__setattr__(self, "fleet_base_url", normalize_base_url(self.fleet_base_url, FLEET_BASE_URL))
        if self.poll_interval <= 0:
            raise BridgeConfigError("poll_interval must be positive")
        if self.max_poll_duration < self.poll_interval:
            raise BridgeConfigError("max_poll_duration must be at least one poll_interval")

    @classmethod
    def from_env(cls, **overrides: Any) -> BridgeConfig:
        """Create configuration from ``TACHOBRIDGE_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ

        device_kwargs: dict[str, str] = {}
        _ENV_DEVICE_MAP = {
            "TACHOBRIDGE_DEVICE_NAME": "device_name",
            "TACHOBRIDGE_DEVICE_PLATFORM": "device_platform",
            "TACHOBRIDGE_DEVICE_MODEL": "device_model",
            "TACHOBRIDGE_OS_VERSION": "os_version",
            "TACHOBRIDGE_DEVICE_MANUFACTURER": "device_manufacturer",
        }
        for env_key, field_name in _ENV_DEVICE_MAP.items():
            val = env.get(env_key)
            if val is not None:
                device_kwargs[field_name] = val

        device_overrides = overrides.pop("device", None)
        if isinstance(device_overrides, dict):
            device_kwargs.update(device_overrides)
        elif isinstance(device_overrides, DeviceProfile):
            device_kwargs = dataclasses.asdict(device_overrides)

        device = DeviceProfile(**device_kwargs) if device_kwargs else DeviceProfile()

        _ENV_CONFIG_MAP = {
            "TACHOBRIDGE_HUB_URL": "hub_base_url",
            "TACHOBRIDGE_FLEET_URL": "fleet_base_url",
            "TACHOBRIDGE_APPLICATION_KEY": "application_key",
            "TACHOBRIDGE_APP_VERSION": "app_version",
            "TACHOBRIDGE_REDIRECT_URI": "redirect_uri",
            "TACHOBRIDGE_CREDENTIALS_PATH": "credentials_path",
        }
        config_kwargs: dict[str, Any] = {"device": device}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_FLOAT_MAP = {
            "TACHOBRIDGE_POLL_INTERVAL": "poll_interval",
            "TACHOBRIDGE_MAX_POLL_DURATION": "max_poll_duration",
            "TACHOBRIDGE_REQUEST_TIMEOUT": "request_timeout",
        }
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            number = _env_float(env, env_key)
            if number is not None and field_name not in overrides:
                config_kwargs[field_name] = number

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
