from __future__ import annotations

import pytest

from tachobridge._api import hub
from tachobridge.config import BridgeConfig
from tachobridge.exceptions import HubRequestError, MalformedResponseError, OutdatedClientError

from .conftest import FakeTransport


@pytest.mark.asyncio
async def test_request_device_authorization_sends_web_mode_and_key(
    config: BridgeConfig, transport: FakeTransport
) -> None:
    transport.reply(
        "POST",
        "/auth/device/authentication-token",
        200,
        {"token": "pending-1", "url": "https://hub.test/approve?code=1"},
    )

    authorization = await hub.request_device_authorization(config, transport)

    assert authorization.token == "pending-1"
    assert authorization.approval_url == "https://hub.test/approve?code=1"
    call = transport.last("POST", "/auth/device/authentication-token")
    assert call.json_body == {"mode": "web", "application_key": "app-key"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [{"token": "pending-1"}, {"url": "https://hub.test/approve"}, {"token": "", "url": ""}, None, ["x"]],
)
async def test_request_device_authorization_rejects_incomplete_body(
    config: BridgeConfig, transport: FakeTransport, body: object
) -> None:
    transport.reply("POST", "/auth/device/authentication-token", 200, body)

    with pytest.raises(MalformedResponseError):
        await hub.request_device_authorization(config, transport)


@pytest.mark.asyncio
async def test_outdated_client_status_maps_to_dedicated_error(config: BridgeConfig, transport: FakeTransport) -> None:
    transport.reply("POST", "/auth/device/authentication-token", 426, {"message": "Please update"})

    with pytest.raises(OutdatedClientError, match="Please update") as exc_info:
        await hub.request_device_authorization(config, transport)

    assert exc_info.value.status_code == 426


@pytest.mark.asyncio
async def test_check_authorization_status_raises_on_pending(config: BridgeConfig, transport: FakeTransport) -> None:
    transport.reply("GET", "/auth/device/authentication-token/check", 404, {"message": "not confirmed"})

    with pytest.raises(HubRequestError) as exc_info:
        await hub.check_authorization_status(config, transport, "pending-1")

    assert exc_info.value.status_code == 404
    assert transport.last("GET", "/auth/device/authentication-token/check").params == {"token": "pending-1"}


@pytest.mark.asyncio
async def test_check_authorization_status_reads_success_flag(config: BridgeConfig, transport: FakeTransport) -> None:
    transport.reply("GET", "/auth/device/authentication-token/check", 200, {"success": True})
    transport.reply("GET", "/auth/device/authentication-token/check", 200, None)

    assert (await hub.check_authorization_status(config, transport, "pending-1")).success is True
    assert (await hub.check_authorization_status(config, transport, "pending-1")).success is False


@pytest.mark.asyncio
async def test_register_device_sends_device_details(config: BridgeConfig, transport: FakeTransport) -> None:
    transport.reply("POST", "/auth/device", 201, {"token": "device-1"})

    result = await hub.register_device(config, transport, "pending-1")

    assert result.token == "device-1"
    assert transport.last("POST", "/auth/device").json_body == {
        "token": "pending-1",
        "device_name": "office-pc",
        "device_platform": "Windows",
        "device_model": "x86_64",
        "os_version": "10",
        "application_version": "1.4.0",
        "device_manufacturer": "TransportKlok",
    }


@pytest.mark.asyncio
async def test_create_session_uses_device_bearer(config: BridgeConfig, transport: FakeTransport) -> None:
    transport.reply("POST", "/auth/session", 200, {"token": "session-1"})

    result = await hub.create_session(config, transport, "device-1")

    assert result.token == "session-1"
    assert transport.last("POST", "/auth/session").headers["authorization"] == "Bearer device-1"


@pytest.mark.asyncio
async def test_fetch_current_user_flattens_relations(config: BridgeConfig, transport: FakeTransport) -> None:
    transport.reply(
        "GET",
        "/rest/me",
        200,
        {
            "data": {
                "id": 7,
                "first_name": "Ann",
                "last_name": "Vries",
                "currentOrganization": {"name": "Acme Transport"},
                "current_role": {"name": "owner"},
            }
        },
    )

    user = await hub.fetch_current_user(config, transport, "session-1")

    assert user.id == "7"
    assert user.display_name == "Ann Vries"
    assert user.organization_name == "Acme Transport"
    assert user.current_role == "owner"
    assert not user.is_employee


@pytest.mark.asyncio
async def test_create_fleet_token_stringifies_company_id(config: BridgeConfig, transport: FakeTransport) -> None:
    transport.reply("POST", "/actions/management/fleet/tokens", 200, {"token": "fleet-1", "company_id": 42})

    fleet = await hub.create_fleet_token(config, transport, "session-1")

    assert fleet.token == "fleet-1"
    assert fleet.company_id == "42"


@pytest.mark.asyncio
async def test_create_fleet_token_requires_company(config: BridgeConfig, transport: FakeTransport) -> None:
    transport.reply("POST", "/actions/management/fleet/tokens", 200, {"token": "fleet-1"})

    with pytest.raises(MalformedResponseError, match="company_id"):
        await hub.create_fleet_token(config, transport, "session-1")
