"""Shared helpers for the Hub and Fleet endpoint modules.

This module centralizes the most repeated patterns:
- building bearer/JSON headers
- mapping non-success statuses onto the service's exception type
- validating success bodies into response models

Endpoint helpers never decide which statuses are acceptable; they raise and
let the calling flow interpret 401/404/409.  It is internal to tachobridge
and may change at any time.
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from tachobridge._constants import OUTDATED_CLIENT_STATUS
from tachobridge._redact import redact_for_log
from tachobridge._transport import HttpResponse
from tachobridge.exceptions import (
    BridgeTransportError,
    FleetRequestError,
    HubRequestError,
    MalformedResponseError,
    OutdatedClientError,
)

_logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def bearer_headers(token: str) -> dict[str, str]:
    return {"authorization": f"Bearer {token}"}


def unwrap_data(data: Any) -> Any:
    """Return ``data["data"]`` for enveloped JSON:API style bodies."""
    if isinstance(data, dict) and isinstance(data.get("data"), (dict, list)):
        return data["data"]
    return data


def _raise_for_status(
    response: HttpResponse,
    *,
    endpoint: str,
    error_cls: type[BridgeTransportError],
    service: str,
) -> None:
    if response.ok:
        return
    _logger.warning(
        "%s request %s failed: HTTP %s %s",
        service,
        endpoint,
        response.status,
        redact_for_log(response.data if response.data is not None else response.text[:200]),
    )
    raise error_cls(
        f"{service} request {endpoint} failed with HTTP {response.status}",
        status_code=response.status,
        endpoint=endpoint,
        payload=response.data,
    )


def raise_for_hub_status(response: HttpResponse, *, endpoint: str) -> None:
    if response.status == OUTDATED_CLIENT_STATUS:
        message = "This version of the application is outdated. Install the latest version to continue."
        if isinstance(response.data, dict) and isinstance(response.data.get("message"), str):
            message = response.data["message"]
        raise OutdatedClientError(
            message,
            status_code=response.status,
            endpoint=endpoint,
            payload=response.data,
        )
    _raise_for_status(response, endpoint=endpoint, error_cls=HubRequestError, service="Hub")


def raise_for_fleet_status(response: HttpResponse, *, endpoint: str) -> None:
    _raise_for_status(response, endpoint=endpoint, error_cls=FleetRequestError, service="Fleet")


def parse_model(model_cls: type[M], response: HttpResponse, *, endpoint: str) -> M:
    """Validate a success body, raising :class:`MalformedResponseError`."""
    data = unwrap_data(response.data)
    if not isinstance(data, dict):
        raise MalformedResponseError(f"{endpoint} returned no JSON object", endpoint=endpoint)
    try:
        return model_cls.model_validate(data)
    except ValidationError as exc:
        missing = sorted({".".join(str(part) for part in err["loc"]) for err in exc.errors()})
        raise MalformedResponseError(
            f"{endpoint} response is missing or has invalid fields: {', '.join(missing)}",
            endpoint=endpoint,
        ) from exc
