"""Fleet service endpoints.

All paths are company scoped:
  - /v1/companies/{company_id}/tachograph-company-card-clients[/{device_id}]
  - /v1/companies/{company_id}/tachograph-company-card-clients/{device_id}/cards[/{card_id}]
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from tachobridge._api._common import bearer_headers, parse_model, raise_for_fleet_status, unwrap_data
from tachobridge._transport import HttpResponse, Transport
from tachobridge.config import BridgeConfig
from tachobridge.exceptions import MalformedResponseError
from tachobridge.models.card import RemoteCard
from tachobridge.models.token import FleetToken

_logger = logging.getLogger(__name__)


def bridge_clients_path(company_id: str) -> str:
    return f"/v1/companies/{company_id}/tachograph-company-card-clients"


def cards_path(company_id: str, device_id: str) -> str:
    return f"{bridge_clients_path(company_id)}/{device_id}/cards"


def extract_device_id(data: Any) -> str | None:
    """Read ``device_id`` from a bridge client body, if it carries one."""
    body = unwrap_data(data)
    if not isinstance(body, dict):
        return None
    value = body.get("device_id")
    if value is None or value == "":
        return None
    return str(value)


async def _send(
    config: BridgeConfig,
    transport: Transport,
    fleet: FleetToken,
    method: str,
    endpoint: str,
    *,
    json_body: Any = None,
) -> HttpResponse:
    response = await transport.request(
        method,
        f"{config.fleet_base_url}{endpoint}",
        headers=bearer_headers(fleet.token),
        json_body=json_body,
    )
    raise_for_fleet_status(response, endpoint=endpoint)
    return response


async def get_bridge_client(config: BridgeConfig, transport: Transport, fleet: FleetToken, device_id: str) -> Any:
    """Fetch a bridge client; 404 surfaces as FleetRequestError."""
    endpoint = f"{bridge_clients_path(fleet.company_id)}/{device_id}"
    response = await _send(config, transport, fleet, "GET", endpoint)
    return unwrap_data(response.data)


async def create_bridge_client(
    config: BridgeConfig,
    transport: Transport,
    fleet: FleetToken,
    client_identifier: str,
) -> str | None:
    """Register this device and return the server-assigned ``device_id``.

    A 409 conflict surfaces as FleetRequestError with the body attached as
    ``payload``.
    """
    endpoint = bridge_clients_path(fleet.company_id)
    response = await _send(
        config,
        transport,
        fleet,
        "POST",
        endpoint,
        json_body={"client_identifier": client_identifier},
    )
    return extract_device_id(response.data)


async def delete_bridge_client(config: BridgeConfig, transport: Transport, fleet: FleetToken, device_id: str) -> None:
    endpoint = f"{bridge_clients_path(fleet.company_id)}/{device_id}"
    await _send(config, transport, fleet, "DELETE", endpoint)


async def list_cards(
    config: BridgeConfig,
    transport: Transport,
    fleet: FleetToken,
    device_id: str,
) -> list[RemoteCard]:
    """Fetch the remote card directory of a bridge client."""
    endpoint = cards_path(fleet.company_id, device_id)
    response = await _send(config, transport, fleet, "GET", endpoint)
    items = unwrap_data(response.data)
    if not isinstance(items, list):
        raise MalformedResponseError(f"{endpoint} returned no card list", endpoint=endpoint)

    cards: list[RemoteCard] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            cards.append(RemoteCard.model_validate(item))
        except ValidationError:
            _logger.warning("Skipping malformed card entry from %s", endpoint, exc_info=True)
    return cards


async def create_card(
    config: BridgeConfig,
    transport: Transport,
    fleet: FleetToken,
    device_id: str,
    card: RemoteCard,
) -> RemoteCard:
    endpoint = cards_path(fleet.company_id, device_id)
    response = await _send(config, transport, fleet, "POST", endpoint, json_body=card.to_payload())
    return parse_model(RemoteCard, response, endpoint=endpoint)


async def update_card(
    config: BridgeConfig,
    transport: Transport,
    fleet: FleetToken,
    device_id: str,
    card: RemoteCard,
) -> RemoteCard:
    if not card.remote_id:
        raise ValueError("update_card requires a card with a remote_id")
    endpoint = f"{cards_path(fleet.company_id, device_id)}/{card.remote_id}"
    response = await _send(config, transport, fleet, "PUT", endpoint, json_body=card.to_payload())
    return parse_model(RemoteCard, response, endpoint=endpoint)


async def delete_card(
    config: BridgeConfig,
    transport: Transport,
    fleet: FleetToken,
    device_id: str,
    remote_id: str,
) -> None:
    endpoint = f"{cards_path(fleet.company_id, device_id)}/{remote_id}"
    await _send(config, transport, fleet, "DELETE", endpoint)
