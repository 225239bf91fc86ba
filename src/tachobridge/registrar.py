"""Idempotent registration of this device as a Fleet bridge client."""

from __future__ import annotations

import logging

from tachobridge._api import fleet as _fleet_api
from tachobridge._transport import Transport
from tachobridge.config import BridgeConfig
from tachobridge.exceptions import BridgeClientResolutionError, FleetRequestError, VerificationError
from tachobridge.models.token import FleetToken
from tachobridge.token_chain import TokenChainManager

_logger = logging.getLogger(__name__)

_NOT_FOUND = 404
_CONFLICT = 409


class BridgeClientRegistrar:
    """Ensure a verified Fleet registration exists for this device.

    The remote ``device_id`` is assigned by the server and cannot be derived
    from the client identifier, and a previous run of the same device may
    already have registered it.  :meth:`ensure` therefore runs a bounded
    verify → create → re-verify loop.
    """

    MAX_ATTEMPTS = 2

    def __init__(self, config: BridgeConfig, transport: Transport, chain: TokenChainManager) -> None:
        self._config = config
        self._transport = transport
        self._chain = chain

    @property
    def device_id(self) -> str | None:
        return self._chain.store.current.bridge_device_id

    async def verify(self, device_id: str) -> bool:
        """Return whether *device_id* exists remotely.

        404 means absent; any other non-success status raises
        :class:`VerificationError`.
        """

        async def _call(fleet: FleetToken) -> object:
            return await _fleet_api.get_bridge_client(self._config, self._transport, fleet, device_id)

        try:
            await self._chain.call_fleet(_call)
        except FleetRequestError as exc:
            if exc.status_code == _NOT_FOUND:
                return False
            if exc.status_code is None:
                raise
            raise VerificationError("Unable to verify the bridge client registration") from exc
        return True

    async def _create(self) -> tuple[str | None, bool]:
        """Create the registration; returns ``(device_id, conflicted)``."""
        identifier = self._chain.store.bridge_client_identifier

        async def _call(fleet: FleetToken) -> str | None:
            return await _fleet_api.create_bridge_client(self._config, self._transport, fleet, identifier)

        try:
            return await self._chain.call_fleet(_call), False
        except FleetRequestError as exc:
            if exc.status_code != _CONFLICT:
                raise
            _logger.info("Bridge client %s already registered", identifier)
            return _fleet_api.extract_device_id(exc.payload), True

    def _discard(self, device_id: str) -> None:
        _logger.info("Discarding stale bridge device id %s", device_id)
        self._chain.store.forget("bridge_device_id")

    async def ensure(self) -> str:
        """Return a verified bridge ``device_id``, creating it if needed.

        Raises
        ------
        BridgeClientResolutionError
            If no verified id is obtained within :attr:`MAX_ATTEMPTS`
            attempts, or a conflict leaves no usable id.
        VerificationError
            If a verification answers with an unexpected status.
        """
        store = self._chain.store
        candidate = store.current.bridge_device_id
        remembered = candidate

        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            if candidate:
                if await self.verify(candidate):
                    store.save(bridge_device_id=candidate)
                    _logger.debug("Bridge client %s verified (attempt %d)", candidate, attempt)
                    return candidate
                self._discard(candidate)
                candidate = None

            created, conflicted = await self._create()
            if created:
                store.save(bridge_device_id=created)
                if await self.verify(created):
                    _logger.info("Bridge client %s registered", created)
                    return created
                self._discard(created)
                continue

            if conflicted and remembered:
                # Registered by an earlier run; re-verify the id we had cached.
                candidate = remembered
                continue

            raise BridgeClientResolutionError("Unable to determine the bridge client device id")

        raise BridgeClientResolutionError("Unable to create or verify the bridge client")

    async def remove(self) -> None:
        """Delete the registration from Fleet and forget the cached id."""
        device_id = self.device_id
        if not device_id:
            return

        async def _call(fleet: FleetToken) -> None:
            await _fleet_api.delete_bridge_client(self._config, self._transport, fleet, device_id)

        try:
            await self._chain.call_fleet(_call)
        except FleetRequestError as exc:
            if exc.status_code != _NOT_FOUND:
                raise
        self._chain.store.forget("bridge_device_id")
        _logger.info("Removed bridge client %s", device_id)
