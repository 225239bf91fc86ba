"""High-level async client for the tachograph bridge."""

from __future__ import annotations

import logging
from typing import Any

import aiohttp

from tachobridge._transport import AiohttpTransport, Transport
from tachobridge.cards import CardRegistry, CardSynchronizer, InMemoryCardRegistry
from tachobridge.config import BridgeConfig
from tachobridge.credentials import CredentialStore
from tachobridge.device_auth import AuthState, DeviceAuthorizationFlow, StateListener, UrlOpener
from tachobridge.exceptions import TachoBridgeError
from tachobridge.models.card import LocalCard, ReconcilePlan
from tachobridge.models.token import DeviceAuthorization
from tachobridge.models.user import HubUser
from tachobridge.registrar import BridgeClientRegistrar
from tachobridge.storage import JsonFileStorage, KeyValueStorage, MemoryStorage
from tachobridge.token_chain import TokenChainManager

_logger = logging.getLogger(__name__)


class BridgeClient:
    """Async client wiring the authorization flow, token chain, registrar and card sync.

    Usage::

        async with BridgeClient(config) as client:
            await client.initialize()
            if not client.is_connected:
                await client.connect()
                await client.flow.wait_for_polling()
            await client.sync_cards()
    """

    def __init__(
        self,
        config: BridgeConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        transport: Transport | None = None,
        storage: KeyValueStorage | None = None,
        registry: CardRegistry | None = None,
        open_url: UrlOpener | None = None,
        on_state_change: StateListener | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._external_transport = transport
        self._storage = storage
        self._registry = registry if registry is not None else InMemoryCardRegistry()
        self._open_url = open_url
        self._on_state_change = on_state_change

        self._store: CredentialStore | None = None
        self._chain: TokenChainManager | None = None
        self._registrar: BridgeClientRegistrar | None = None
        self._flow: DeviceAuthorizationFlow | None = None
        self._cards: CardSynchronizer | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> BridgeClient:
        transport = self._external_transport
        if transport is None:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            transport = AiohttpTransport(self._http_session, timeout=self._config.request_timeout)
        self._build(transport)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._flow is not None:
            self._flow.pause_polling()
            await self._flow.wait_for_polling()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    def _default_storage(self) -> KeyValueStorage:
        if self._config.credentials_path:
            return JsonFileStorage(self._config.credentials_path)
        return MemoryStorage()

    def _build(self, transport: Transport) -> None:
        storage = self._storage if self._storage is not None else self._default_storage()
        self._store = CredentialStore(storage)
        self._chain = TokenChainManager(self._config, transport, self._store)
        self._registrar = BridgeClientRegistrar(self._config, transport, self._chain)
        flow_kwargs: dict[str, Any] = {}
        if self._open_url is not None:
            flow_kwargs["open_url"] = self._open_url
        self._flow = DeviceAuthorizationFlow(
            self._config,
            transport,
            self._chain,
            post_login=self._ensure_fleet_setup,
            on_disconnect=self._registrar.remove,
            on_state_change=self._on_state_change,
            **flow_kwargs,
        )
        self._cards = CardSynchronizer(self._config, transport, self._chain, self._registrar, self._registry)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require(self, component: Any) -> Any:
        if component is None:
            raise TachoBridgeError("Client not initialized. Use 'async with BridgeClient(...) as client:'")
        return component

    async def _ensure_fleet_setup(self) -> None:
        await self.chain.ensure_fleet_token()
        await self.registrar.ensure()

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @property
    def store(self) -> CredentialStore:
        store: CredentialStore = self._require(self._store)
        return store

    @property
    def chain(self) -> TokenChainManager:
        chain: TokenChainManager = self._require(self._chain)
        return chain

    @property
    def registrar(self) -> BridgeClientRegistrar:
        registrar: BridgeClientRegistrar = self._require(self._registrar)
        return registrar

    @property
    def flow(self) -> DeviceAuthorizationFlow:
        flow: DeviceAuthorizationFlow = self._require(self._flow)
        return flow

    @property
    def cards(self) -> CardSynchronizer:
        cards: CardSynchronizer = self._require(self._cards)
        return cards

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    @property
    def state(self) -> AuthState:
        return self.flow.state

    @property
    def is_connected(self) -> bool:
        return self.flow.is_connected

    @property
    def user(self) -> HubUser | None:
        return self.flow.user

    async def initialize(self) -> None:
        """Resume a pending sign-in and validate stored credentials."""
        await self.flow.initialize()

    async def connect(self) -> DeviceAuthorization:
        """Start the browser sign-in; polling continues in the background."""
        return await self.flow.request_device_authorization()

    async def disconnect(self) -> None:
        await self.flow.disconnect()

    async def check_status_on_focus(self) -> None:
        """Re-check the connection and, when connected, the card directory."""
        await self.flow.check_status_on_focus()
        if self.flow.is_connected:
            try:
                await self.cards.sync()
            except TachoBridgeError:
                _logger.warning("Card sync on focus failed", exc_info=True)

    # ------------------------------------------------------------------
    # Cards
    # ------------------------------------------------------------------

    async def sync_cards(self) -> ReconcilePlan:
        return await self.cards.sync()

    async def create_card(self, card_number: str, display_name: str, *, iccid: str | None = None) -> LocalCard:
        return await self.cards.create_card(card_number, display_name, iccid=iccid)

    async def update_card(
        self,
        card_number: str,
        *,
        display_name: str | None = None,
        iccid: str | None = None,
    ) -> LocalCard:
        return await self.cards.update_card(card_number, display_name=display_name, iccid=iccid)

    async def delete_card(self, card_number: str) -> None:
        await self.cards.delete_card(card_number)
