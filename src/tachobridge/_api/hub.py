"""Hub identity service endpoints.

Endpoints:
  - POST /auth/device/authentication-token
  - GET  /auth/device/authentication-token/check
  - POST /auth/device
  - POST /auth/session
  - GET  /rest/me
  - POST /actions/management/fleet/tokens
"""

from __future__ import annotations

from typing import Any

from tachobridge._api._common import bearer_headers, parse_model, raise_for_hub_status
from tachobridge._transport import Transport
from tachobridge.config import BridgeConfig
from tachobridge.models.token import AuthorizationCheck, BearerToken, DeviceAuthorization, FleetToken
from tachobridge.models.user import HubUser

AUTHENTICATION_TOKEN_ENDPOINT = "/auth/device/authentication-token"
AUTHENTICATION_CHECK_ENDPOINT = "/auth/device/authentication-token/check"
DEVICE_ENDPOINT = "/auth/device"
SESSION_ENDPOINT = "/auth/session"
CURRENT_USER_ENDPOINT = "/rest/me"
FLEET_TOKENS_ENDPOINT = "/actions/management/fleet/tokens"

_CURRENT_USER_RELATIONS: tuple[tuple[str, str], ...] = (
    ("relations[]", "currentOrganization.name"),
    ("relations[]", "current_role"),
)


def build_device_details(config: BridgeConfig) -> dict[str, str]:
    """Describe this installation for ``POST /auth/device``."""
    return {
        "device_name": config.device.device_name,
        "device_platform": config.device.device_platform,
        "device_model": config.device.device_model,
        "os_version": config.device.os_version,
        "application_version": config.app_version,
        "device_manufacturer": config.device.device_manufacturer,
    }


async def request_device_authorization(config: BridgeConfig, transport: Transport) -> DeviceAuthorization:
    """Ask the Hub for a token the user approves in a browser."""
    body: dict[str, Any] = {
        "mode": "web",
        "application_key": config.application_key or None,
    }
    response = await transport.request(
        "POST",
        f"{config.hub_base_url}{AUTHENTICATION_TOKEN_ENDPOINT}",
        json_body=body,
    )
    raise_for_hub_status(response, endpoint=AUTHENTICATION_TOKEN_ENDPOINT)
    return parse_model(DeviceAuthorization, response, endpoint=AUTHENTICATION_TOKEN_ENDPOINT)


async def check_authorization_status(config: BridgeConfig, transport: Transport, token: str) -> AuthorizationCheck:
    """Check whether *token* was approved.

    The Hub answers 404 while the user has not confirmed yet; that is
    raised as :class:`~tachobridge.exceptions.HubRequestError` like any other
    non-success status.
    """
    response = await transport.request(
        "GET",
        f"{config.hub_base_url}{AUTHENTICATION_CHECK_ENDPOINT}",
        params={"token": token},
    )
    raise_for_hub_status(response, endpoint=AUTHENTICATION_CHECK_ENDPOINT)
    if not isinstance(response.data, dict):
        return AuthorizationCheck()
    return AuthorizationCheck.model_validate(response.data)


async def register_device(config: BridgeConfig, transport: Transport, approval_token: str) -> BearerToken:
    """Exchange an approved authorization token for a device token."""
    response = await transport.request(
        "POST",
        f"{config.hub_base_url}{DEVICE_ENDPOINT}",
        json_body={"token": approval_token, **build_device_details(config)},
    )
    raise_for_hub_status(response, endpoint=DEVICE_ENDPOINT)
    return parse_model(BearerToken, response, endpoint=DEVICE_ENDPOINT)


async def create_session(config: BridgeConfig, transport: Transport, device_token: str) -> BearerToken:
    """Exchange the device token for a session token."""
    response = await transport.request(
        "POST",
        f"{config.hub_base_url}{SESSION_ENDPOINT}",
        headers=bearer_headers(device_token),
    )
    raise_for_hub_status(response, endpoint=SESSION_ENDPOINT)
    return parse_model(BearerToken, response, endpoint=SESSION_ENDPOINT)


async def fetch_current_user(config: BridgeConfig, transport: Transport, session_token: str) -> HubUser:
    """Fetch the signed-in account with its organization and role."""
    response = await transport.request(
        "GET",
        f"{config.hub_base_url}{CURRENT_USER_ENDPOINT}",
        headers=bearer_headers(session_token),
        params=_CURRENT_USER_RELATIONS,
    )
    raise_for_hub_status(response, endpoint=CURRENT_USER_ENDPOINT)
    return parse_model(HubUser, response, endpoint=CURRENT_USER_ENDPOINT)


async def create_fleet_token(config: BridgeConfig, transport: Transport, session_token: str) -> FleetToken:
    """Have the Hub mint a Fleet token for the signed-in user."""
    response = await transport.request(
        "POST",
        f"{config.hub_base_url}{FLEET_TOKENS_ENDPOINT}",
        headers=bearer_headers(session_token),
    )
    raise_for_hub_status(response, endpoint=FLEET_TOKENS_ENDPOINT)
    return parse_model(FleetToken, response, endpoint=FLEET_TOKENS_ENDPOINT)
