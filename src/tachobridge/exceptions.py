"""Custom exception hierarchy for tachobridge."""

from __future__ import annotations

from typing import Any


class TachoBridgeError(Exception):
    """Base exception for all tachobridge errors."""


class BridgeConfigError(TachoBridgeError):
    """Invalid or missing configuration."""


class BridgeTransportError(TachoBridgeError):
    """HTTP-level failure (network, non-success status, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
        payload: Any = None,
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        self.payload = payload
        super().__init__(message)


class HubRequestError(BridgeTransportError):
    """The Hub service answered with a non-success status."""


class OutdatedClientError(HubRequestError):
    """The Hub service refuses this application version (HTTP 426).

    Users must install a newer release before they can sign in again.
    """


class FleetRequestError(BridgeTransportError):
    """The Fleet service answered with a non-success status."""


class MalformedResponseError(TachoBridgeError):
    """A success response was missing required fields."""

    def __init__(self, message: str, *, endpoint: str = "") -> None:
        self.endpoint = endpoint
        super().__init__(message)


class NotAuthenticatedError(TachoBridgeError):
    """No device or session credential is available for an authenticated call."""


class AuthorizationStartError(TachoBridgeError):
    """Requesting a device authorization token failed."""


class VerificationError(TachoBridgeError):
    """A remote state check returned an unexpected status.

    Raised while polling the device authorization token and while verifying
    the bridge client registration.  Never retried.
    """


class AuthorizationExpiredError(TachoBridgeError):
    """The user did not confirm the device authorization in time."""


class RoleNotAllowedError(TachoBridgeError):
    """The signed-in account has a role that may not use the bridge.

    This is a business rule, not a transient failure: the credential set
    has already been cleared when this is raised.
    """


class BridgeClientResolutionError(TachoBridgeError):
    """The bridge client registration could not be created or verified."""
