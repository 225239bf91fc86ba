"""Local card registry and its reconciliation with the Fleet card directory.

:func:`reconcile` is a pure diff over two snapshots.  The
:class:`CardSynchronizer` fetches the remote snapshot, applies the plan to
the local registry and propagates user edits (create/update/delete) to
Fleet.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Protocol

from tachobridge._api import fleet as _fleet_api
from tachobridge._transport import Transport
from tachobridge.config import BridgeConfig
from tachobridge.exceptions import FleetRequestError
from tachobridge.models.card import LocalCard, ReconcilePlan, RemoteCard
from tachobridge.models.token import FleetToken
from tachobridge.registrar import BridgeClientRegistrar
from tachobridge.token_chain import TokenChainManager

_logger = logging.getLogger(__name__)

_NOT_FOUND = 404


class CardRegistry(Protocol):
    """Local card configuration keyed by card number."""

    def snapshot(self) -> Mapping[str, LocalCard]:
        ...

    def upsert(self, card_number: str, record: LocalCard) -> None:
        ...

    def remove(self, card_number: str) -> None:
        ...


class InMemoryCardRegistry:
    """Dict-backed :class:`CardRegistry`."""

    def __init__(self, cards: Mapping[str, LocalCard] | None = None) -> None:
        self._cards: dict[str, LocalCard] = dict(cards or {})

    def snapshot(self) -> dict[str, LocalCard]:
        return dict(self._cards)

    def upsert(self, card_number: str, record: LocalCard) -> None:
        self._cards[card_number] = record

    def remove(self, card_number: str) -> None:
        self._cards.pop(card_number, None)


def _merge_remote(local: LocalCard, remote: RemoteCard) -> LocalCard:
    # Remote wins for identity metadata; a reader-observed iccid survives
    # only when the directory has none.
    return local.model_copy(
        update={
            "display_name": remote.display_name,
            "iccid": remote.iccid or local.iccid,
            "remote_id": remote.remote_id or local.remote_id,
        }
    )


def _from_remote(remote: RemoteCard) -> LocalCard:
    return LocalCard(
        card_number=remote.card_number,
        display_name=remote.display_name,
        iccid=remote.iccid,
        remote_id=remote.remote_id,
    )


def reconcile(
    local_cards: Mapping[str, LocalCard],
    remote_cards: Mapping[str, RemoteCard],
) -> ReconcilePlan:
    """Diff the local registry against the remote directory.

    Both mappings are keyed by card number.  Remote-only cards end up in
    ``missing_local_cards``; cards whose remote name, iccid or id differ from
    the local record end up in ``updated_local_cards``.  Local-only cards
    are left alone.  Neither input is mutated.
    """
    missing: dict[str, LocalCard] = {}
    updated: dict[str, LocalCard] = {}

    for number, remote in remote_cards.items():
        local = local_cards.get(number)
        if local is None:
            missing[number] = _from_remote(remote)
            continue
        merged = _merge_remote(local, remote)
        if merged != local:
            updated[number] = merged

    return ReconcilePlan(missing_local_cards=missing, updated_local_cards=updated)


def apply_plan(local_cards: Mapping[str, LocalCard], plan: ReconcilePlan) -> dict[str, LocalCard]:
    """Return a new local snapshot with *plan* applied."""
    merged = dict(local_cards)
    merged.update(plan.missing_local_cards)
    merged.update(plan.updated_local_cards)
    return merged


class CardSynchronizer:
    """Keeps a :class:`CardRegistry` aligned with the Fleet card directory.

    Only one :meth:`sync` pass runs at a time; callers arriving while a pass
    is in flight receive that pass's result.
    """

    def __init__(
        self,
        config: BridgeConfig,
        transport: Transport,
        chain: TokenChainManager,
        registrar: BridgeClientRegistrar,
        registry: CardRegistry,
    ) -> None:
        self._config = config
        self._transport = transport
        self._chain = chain
        self._registrar = registrar
        self._registry = registry
        self._inflight: asyncio.Future[ReconcilePlan] | None = None

    @property
    def registry(self) -> CardRegistry:
        return self._registry

    @property
    def is_syncing(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def _device_id(self) -> str:
        device_id = self._registrar.device_id
        if device_id:
            return device_id
        return await self._registrar.ensure()

    async def fetch_remote_cards(self) -> dict[str, RemoteCard]:
        device_id = await self._device_id()

        async def _call(fleet: FleetToken) -> list[RemoteCard]:
            return await _fleet_api.list_cards(self._config, self._transport, fleet, device_id)

        cards = await self._chain.call_fleet(_call)
        return {card.card_number: card for card in cards}

    async def _sync_once(self) -> ReconcilePlan:
        remote = await self.fetch_remote_cards()
        plan = reconcile(self._registry.snapshot(), remote)
        for number, card in plan.missing_local_cards.items():
            self._registry.upsert(number, card)
        for number, card in plan.updated_local_cards.items():
            self._registry.upsert(number, card)
        if not plan.is_empty:
            _logger.info(
                "Card sync imported %d and updated %d cards",
                len(plan.missing_local_cards),
                len(plan.updated_local_cards),
            )
        return plan

    def _clear_inflight(self, future: asyncio.Future[ReconcilePlan]) -> None:
        if self._inflight is future:
            self._inflight = None

    async def sync(self) -> ReconcilePlan:
        """Reconcile the local registry with Fleet, joining a running pass."""
        inflight = self._inflight
        if inflight is None or inflight.done():
            inflight = asyncio.ensure_future(self._sync_once())
            inflight.add_done_callback(self._clear_inflight)
            self._inflight = inflight
        else:
            _logger.debug("Card sync already running; joining it")
        return await asyncio.shield(inflight)

    # ------------------------------------------------------------------
    # User edits
    # ------------------------------------------------------------------

    def _require_local(self, card_number: str) -> LocalCard:
        card = self._registry.snapshot().get(card_number)
        if card is None:
            raise KeyError(f"Unknown card {card_number}")
        return card

    async def create_card(self, card_number: str, display_name: str, *, iccid: str | None = None) -> LocalCard:
        """Create a card in Fleet and then store it locally."""
        local = LocalCard(card_number=card_number, display_name=display_name, iccid=iccid)
        device_id = await self._device_id()
        outgoing = RemoteCard(card_number=local.card_number, display_name=local.display_name, iccid=local.iccid)

        async def _call(fleet: FleetToken) -> RemoteCard:
            return await _fleet_api.create_card(self._config, self._transport, fleet, device_id, outgoing)

        created = await self._chain.call_fleet(_call)
        stored = _merge_remote(local, created)
        self._registry.upsert(stored.card_number, stored)
        return stored

    async def update_card(
        self,
        card_number: str,
        *,
        display_name: str | None = None,
        iccid: str | None = None,
    ) -> LocalCard:
        """Push an edited card to Fleet and then store it locally.

        Cards that never reached Fleet are created there instead.
        """
        current = self._require_local(card_number)
        changes: dict[str, str] = {}
        if display_name is not None:
            changes["display_name"] = display_name
        if iccid is not None:
            changes["iccid"] = iccid
        local = current.model_copy(update=changes)

        if not local.remote_id:
            return await self.create_card(local.card_number, local.display_name, iccid=local.iccid)

        device_id = await self._device_id()
        outgoing = RemoteCard(
            card_number=local.card_number,
            display_name=local.display_name,
            iccid=local.iccid,
            remote_id=local.remote_id,
        )

        async def _call(fleet: FleetToken) -> RemoteCard:
            return await _fleet_api.update_card(self._config, self._transport, fleet, device_id, outgoing)

        updated = await self._chain.call_fleet(_call)
        stored = _merge_remote(local, updated)
        self._registry.upsert(stored.card_number, stored)
        return stored

    async def delete_card(self, card_number: str) -> None:
        """Delete a card from Fleet (when it exists there) and locally."""
        local = self._require_local(card_number)
        remote_id = local.remote_id
        if remote_id:
            device_id = await self._device_id()

            async def _call(fleet: FleetToken) -> None:
                await _fleet_api.delete_card(self._config, self._transport, fleet, device_id, remote_id)

            try:
                await self._chain.call_fleet(_call)
            except FleetRequestError as exc:
                if exc.status_code != _NOT_FOUND:
                    raise
                _logger.info("Card %s was already gone from Fleet", card_number)
        self._registry.remove(card_number)

    def observe_card(self, card_number: str, iccid: str) -> LocalCard | None:
        """Record the iccid a reader saw for a known card (local only)."""
        card = self._registry.snapshot().get(card_number)
        if card is None or card.iccid == iccid:
            return card
        observed = card.model_copy(update={"iccid": iccid})
        self._registry.upsert(card_number, observed)
        return observed
