"""Token and authorization response models."""

from __future__ import annotations

from pydantic import Field, field_validator

from tachobridge.models._base import BridgeBaseModel


class DeviceAuthorization(BridgeBaseModel):
    """Pending device authorization returned by the Hub.

    Parameters
    ----------
    token : str
        Opaque authorization token polled until the user approves it.
    approval_url : str
        Page the user opens in a browser to approve this device.
    """

    token: str
    approval_url: str = Field(alias="url")


class AuthorizationCheck(BridgeBaseModel):
    """Body of a 200 answer on the authorization check endpoint."""

    success: bool = False


class BearerToken(BridgeBaseModel):
    """``{token}`` answer of the device and session endpoints."""

    token: str


class FleetToken(BridgeBaseModel):
    """Fleet access token minted by the Hub for the signed-in user."""

    token: str
    company_id: str

    @field_validator("company_id", mode="before")
    @classmethod
    def _stringify_company_id(cls, value: object) -> object:
        # Hub serialises numeric company ids as JSON numbers.
        if isinstance(value, int):
            return str(value)
        return value
