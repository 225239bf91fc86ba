"""Credential derivation chain: device → session → fleet token.

The :class:`TokenChainManager` guarantees that every authenticated request
carries a bearer token, deriving missing tokens on demand and recovering
from one expired token per call.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tachobridge._api import hub as _hub_api
from tachobridge._redact import redact_token
from tachobridge._transport import Transport
from tachobridge.config import BridgeConfig
from tachobridge.credentials import CredentialStore
from tachobridge.exceptions import FleetRequestError, HubRequestError, NotAuthenticatedError
from tachobridge.models.token import FleetToken
from tachobridge.models.user import HubUser, LoginAccepted, LoginOutcome, LoginRejected

_logger = logging.getLogger(__name__)

T = TypeVar("T")

_UNAUTHORIZED = 401

ROLE_NOT_ALLOWED_MESSAGE = "Employee accounts are not allowed to use the tachograph bridge."


class TokenChainManager:
    """Owns the multi-stage credential derivation.

    Hub calls go through :meth:`call_hub` and Fleet calls through
    :meth:`call_fleet`.  Both take a callable that receives the bearer
    credential, so the same request can be replayed after a refresh.
    Each call is retried at most once, and only after an HTTP 401.
    """

    def __init__(self, config: BridgeConfig, transport: Transport, store: CredentialStore) -> None:
        self._config = config
        self._transport = transport
        self._store = store

    @property
    def store(self) -> CredentialStore:
        return self._store

    @property
    def has_credentials(self) -> bool:
        """Whether a Hub call could be attempted without signing in again."""
        current = self._store.current
        return bool(current.session_token or current.device_token)

    # ------------------------------------------------------------------
    # Hub chain
    # ------------------------------------------------------------------

    async def register_device(self, approval_token: str) -> str:
        """Exchange an approved authorization token for a device token."""
        result = await _hub_api.register_device(self._config, self._transport, approval_token)
        self._store.save(device_token=result.token)
        _logger.info("Registered device, device token %s", redact_token(result.token))
        return result.token

    async def create_session(self) -> str:
        """Derive a fresh Hub session from the stored device token."""
        device_token = self._store.current.device_token
        if not device_token:
            raise NotAuthenticatedError("Device token missing, sign in again")
        result = await _hub_api.create_session(self._config, self._transport, device_token)
        self._store.save(session_token=result.token)
        _logger.debug("Derived Hub session %s", redact_token(result.token))
        return result.token

    async def _session_token(self) -> str:
        current = self._store.current
        if current.session_token:
            return current.session_token
        if current.device_token:
            return await self.create_session()
        raise NotAuthenticatedError("Not signed in to the Hub")

    async def call_hub(self, fn: Callable[[str], Awaitable[T]]) -> T:
        """Run a Hub request, refreshing the session once on HTTP 401.

        A 401 on the retried request propagates as
        :class:`~tachobridge.exceptions.HubRequestError`.
        """
        token = await self._session_token()
        try:
            return await fn(token)
        except HubRequestError as exc:
            if exc.status_code != _UNAUTHORIZED or not self._store.current.device_token:
                raise
            _logger.info("Hub rejected the session on %s; deriving a new one", exc.endpoint)

        token = await self.create_session()
        return await fn(token)

    async def fetch_current_user(self) -> HubUser:
        async def _call(token: str) -> HubUser:
            return await _hub_api.fetch_current_user(self._config, self._transport, token)

        return await self.call_hub(_call)

    async def validate_login(self) -> LoginOutcome:
        """Fetch the current user and apply the role gate.

        A rejected account has its credential set cleared before the
        :class:`~tachobridge.models.user.LoginRejected` value is returned.
        """
        user = await self.fetch_current_user()
        if user.is_employee:
            _logger.warning("Rejecting login for role %r", user.current_role)
            self._store.clear()
            return LoginRejected(user=user, reason=ROLE_NOT_ALLOWED_MESSAGE)
        return LoginAccepted(user=user)

    async def complete_device_login(self, approval_token: str) -> LoginOutcome:
        """Device token → session token → user → role gate."""
        await self.register_device(approval_token)
        await self.create_session()
        return await self.validate_login()

    # ------------------------------------------------------------------
    # Fleet chain
    # ------------------------------------------------------------------

    async def ensure_fleet_token(self, *, force: bool = False) -> FleetToken:
        """Return the cached Fleet token or have the Hub mint a new one."""
        current = self._store.current
        if not force and current.fleet_token and current.fleet_company_id:
            return FleetToken(token=current.fleet_token, company_id=current.fleet_company_id)

        async def _call(token: str) -> FleetToken:
            return await _hub_api.create_fleet_token(self._config, self._transport, token)

        fleet = await self.call_hub(_call)
        self._store.save(fleet_token=fleet.token, fleet_company_id=fleet.company_id)
        _logger.info("Derived Fleet token %s for company %s", redact_token(fleet.token), fleet.company_id)
        return fleet

    async def call_fleet(self, fn: Callable[[FleetToken], Awaitable[T]]) -> T:
        """Run a Fleet request, re-minting the Fleet token once on HTTP 401."""
        fleet = await self.ensure_fleet_token()
        try:
            return await fn(fleet)
        except FleetRequestError as exc:
            if exc.status_code != _UNAUTHORIZED:
                raise
            _logger.info("Fleet rejected the token on %s; requesting a new one", exc.endpoint)

        fleet = await self.ensure_fleet_token(force=True)
        return await fn(fleet)
