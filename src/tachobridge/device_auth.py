"""Browser-based device authorization flow.

The user asks for a sign-in, approves this device on a Hub web page and
the flow polls the Hub until the approval arrives, then finalizes the
credential chain.  :class:`DeviceAuthorizationFlow` is the single owner of
that state; UI surfaces read its properties and call its commands.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import webbrowser
from collections.abc import Awaitable, Callable
from enum import StrEnum
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from tachobridge._api import hub as _hub_api
from tachobridge._transport import Transport
from tachobridge.config import BridgeConfig
from tachobridge.exceptions import (
    AuthorizationExpiredError,
    AuthorizationStartError,
    BridgeTransportError,
    HubRequestError,
    MalformedResponseError,
    OutdatedClientError,
    RoleNotAllowedError,
    TachoBridgeError,
    VerificationError,
)
from tachobridge.models.token import DeviceAuthorization
from tachobridge.models.user import HubUser, LoginOutcome, LoginRejected
from tachobridge.token_chain import TokenChainManager

_logger = logging.getLogger(__name__)

_NOT_FOUND = 404


class AuthState(StrEnum):
    IDLE = "idle"
    AWAITING_USER_CONFIRMATION = "awaiting_user_confirmation"
    VERIFYING = "verifying"
    FINALIZING = "finalizing"
    READY = "ready"
    FAILED = "failed"
    EXPIRED = "expired"


StateListener = Callable[[AuthState, str], None]
PostLoginHook = Callable[[], Awaitable[None]]
UrlOpener = Callable[[str], object]


def with_redirect(url: str, redirect_uri: str | None) -> str:
    """Add ``redirect=<redirect_uri>`` to *url*; malformed URLs pass unchanged."""
    if not redirect_uri:
        return url
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        _logger.warning("Approval URL %r is not absolute; opening it unchanged", url)
        return url
    query = [(key, value) for key, value in parse_qsl(parts.query, keep_blank_values=True) if key != "redirect"]
    query.append(("redirect", redirect_uri))
    return urlunsplit(parts._replace(query=urlencode(query)))


class DeviceAuthorizationFlow:
    """Login state machine: request → confirm in browser → poll → finalize.

    Parameters
    ----------
    config : BridgeConfig
        Supplies the Hub URL, redirect URI, poll interval and ceiling.
    transport : Transport
        Used for the unauthenticated authorization endpoints.
    chain : TokenChainManager
        Derives and persists the device/session credentials.
    open_url : callable
        Opens the approval page; defaults to :func:`webbrowser.open`.
    post_login : coroutine function, optional
        Runs after the role gate passed and before the flow reports
        ``READY`` (e.g. Fleet token and bridge client setup).
    on_disconnect : coroutine function, optional
        Best-effort remote cleanup run by :meth:`disconnect` before the
        credentials are cleared.
    on_state_change : callable, optional
        ``(state, status_message)`` listener called on every transition.
    clock, sleep
        Time sources, replaceable in tests.
    """

    def __init__(
        self,
        config: BridgeConfig,
        transport: Transport,
        chain: TokenChainManager,
        *,
        open_url: UrlOpener = webbrowser.open,
        post_login: PostLoginHook | None = None,
        on_disconnect: PostLoginHook | None = None,
        on_state_change: StateListener | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._transport = transport
        self._chain = chain
        self._open_url = open_url
        self._post_login = post_login
        self._on_disconnect = on_disconnect
        self._on_state_change = on_state_change
        self._clock = clock
        self._sleep = sleep

        self._state = AuthState.IDLE
        self._status_message = "Not connected."
        self._user: HubUser | None = None
        self._error: TachoBridgeError | None = None
        self._approval_url: str | None = None
        self._is_outdated = False
        self._is_checking = False

        self._poll_task: asyncio.Task[None] | None = None
        self._poll_started_at: float | None = None
        self._poll_sleeping = False
        self._focus_check: asyncio.Future[None] | None = None

    # ------------------------------------------------------------------
    # Read interface
    # ------------------------------------------------------------------

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def status_message(self) -> str:
        return self._status_message

    @property
    def user(self) -> HubUser | None:
        return self._user

    @property
    def error(self) -> TachoBridgeError | None:
        """The error behind the last ``FAILED``/``EXPIRED`` transition."""
        return self._error

    @property
    def approval_url(self) -> str | None:
        return self._approval_url

    @property
    def pending_token(self) -> str | None:
        return self._chain.store.current.pending_authorization_token

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    @property
    def poll_started_at(self) -> float | None:
        return self._poll_started_at

    @property
    def is_connected(self) -> bool:
        return self._state is AuthState.READY

    @property
    def is_checking(self) -> bool:
        return self._is_checking

    @property
    def is_outdated(self) -> bool:
        return self._is_outdated

    # ------------------------------------------------------------------
    # State bookkeeping
    # ------------------------------------------------------------------

    def _transition(self, state: AuthState, message: str) -> None:
        if state is not self._state:
            _logger.debug("Authorization state %s -> %s", self._state, state)
        self._state = state
        self._status_message = message
        if self._on_state_change is not None:
            try:
                self._on_state_change(state, message)
            except Exception:
                _logger.debug("on_state_change callback failed", exc_info=True)

    def _fail(self, error: TachoBridgeError, message: str | None = None) -> None:
        _logger.warning("Device authorization failed: %s", error)
        self._error = error
        self._transition(AuthState.FAILED, message or str(error))

    def _mark_outdated(self, error: TachoBridgeError, message: str | None = None) -> None:
        self._is_outdated = True
        self._stop_polling()
        self._fail(error, message)

    def _discard_pending(self) -> None:
        self._chain.store.forget("pending_authorization_token")

    # ------------------------------------------------------------------
    # Starting an authorization
    # ------------------------------------------------------------------

    async def request_device_authorization(self) -> DeviceAuthorization:
        """Request an authorization token, open the approval page and poll.

        Raises
        ------
        AuthorizationStartError
            If the Hub answers with a non-success status or without
            ``token``/``url``.  Nothing is persisted in that case.  An
            outdated client (HTTP 426) also sets :attr:`is_outdated`.
        """
        self._stop_polling()
        self._error = None
        self._transition(AuthState.IDLE, "Requesting an authorization token...")

        try:
            authorization = await _hub_api.request_device_authorization(self._config, self._transport)
        except OutdatedClientError as exc:
            error = AuthorizationStartError(str(exc))
            self._mark_outdated(error)
            raise error from exc
        except (BridgeTransportError, MalformedResponseError) as exc:
            error = AuthorizationStartError("Could not start the device sign-in.")
            self._fail(error)
            raise error from exc

        self._chain.store.save(pending_authorization_token=authorization.token)
        self._approval_url = with_redirect(authorization.approval_url, self._config.redirect_uri)
        self._transition(
            AuthState.AWAITING_USER_CONFIRMATION,
            "Complete the sign-in in your browser; the connection is checked automatically.",
        )
        await self._open_approval_page(self._approval_url)
        self.begin_polling()
        return authorization

    async def _open_approval_page(self, url: str) -> None:
        try:
            opened = await asyncio.to_thread(self._open_url, url)
        except Exception:
            _logger.warning("Could not open the approval page %s", url, exc_info=True)
            return
        if opened is False:
            _logger.warning("No browser available to open %s", url)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def begin_polling(self) -> bool:
        """Start the poll loop for the pending token.

        Returns ``False`` when nothing is pending or a loop is already
        running.
        """
        token = self.pending_token
        if not token or self.is_polling:
            return False
        self._poll_started_at = self._clock()
        self._poll_task = asyncio.create_task(
            self._poll_loop(token, self._poll_started_at),
            name="tachobridge-authorization-poll",
        )
        return True

    def _stop_polling(self) -> None:
        task = self._poll_task
        self._poll_task = None
        self._poll_started_at = None
        if task is None or task.done() or task is asyncio.current_task():
            return
        # A loop waiting for its next tick is cancelled right away; one in the
        # middle of a request notices on return and discards the answer.
        if self._poll_sleeping:
            task.cancel()

    def _owns_poll(self, token: str) -> bool:
        return self._poll_task is asyncio.current_task() and self.pending_token == token

    async def _poll_loop(self, token: str, started: float) -> None:
        while self._owns_poll(token):
            self._poll_sleeping = True
            try:
                await self._sleep(self._config.poll_interval)
            finally:
                self._poll_sleeping = False

            if not self._owns_poll(token):
                return
            if self._clock() - started >= self._config.max_poll_duration:
                self._expire()
                return
            if await self._poll_once(token):
                return

    def _expire(self) -> None:
        self._stop_polling()
        self._discard_pending()
        self._error = AuthorizationExpiredError("Authorization expired, connect again.")
        self._transition(AuthState.EXPIRED, str(self._error))

    async def check_authorization_status(self, token: str) -> bool:
        """Return whether *token* was approved; ``False`` while pending (404).

        Raises
        ------
        VerificationError
            On any other non-success status, chained from the
            :class:`~tachobridge.exceptions.HubRequestError`.
        """
        try:
            check = await _hub_api.check_authorization_status(self._config, self._transport, token)
        except HubRequestError as exc:
            if exc.status_code == _NOT_FOUND:
                return False
            raise VerificationError("Unable to verify the authorization token.") from exc
        return check.success

    async def _poll_once(self, token: str) -> bool:
        """One poll tick; returns ``True`` when polling should stop."""
        if self._state in (AuthState.FINALIZING, AuthState.READY):
            return True
        self._transition(AuthState.VERIFYING, "Checking the authorization...")
        try:
            approved = await self.check_authorization_status(token)
        except VerificationError as exc:
            if self.pending_token != token:
                return True
            self._stop_polling()
            self._discard_pending()
            if isinstance(exc.__cause__, OutdatedClientError):
                self._mark_outdated(exc, str(exc.__cause__))
            else:
                self._fail(exc)
            return True
        except BridgeTransportError as exc:
            if self.pending_token != token:
                return True
            _logger.warning("Authorization check failed, retrying on next tick: %s", exc)
            self._transition(AuthState.AWAITING_USER_CONFIRMATION, "Cannot reach the Hub, retrying...")
            return False

        if self.pending_token != token or self._state in (AuthState.FINALIZING, AuthState.READY):
            # Disconnected or finalized elsewhere while the check was in flight.
            return True
        if not approved:
            self._transition(AuthState.AWAITING_USER_CONFIRMATION, "Waiting for confirmation in the browser...")
            return False

        self._stop_polling()
        with contextlib.suppress(TachoBridgeError):
            # Failure is recorded in `error` and the FAILED state.
            await self.finalize(token)
        return True

    async def wait_for_polling(self) -> None:
        """Wait until the current poll loop ends (expired, finalized, stopped)."""
        task = self._poll_task
        if task is None:
            return
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def pause_polling(self) -> None:
        """Stop the poll loop but keep the pending token for later."""
        self._stop_polling()

    def resume_polling_if_pending(self) -> bool:
        return self.begin_polling()

    def resume(self) -> bool:
        """Resume polling a token persisted by an earlier run."""
        if not self.pending_token:
            return False
        self._transition(AuthState.AWAITING_USER_CONFIRMATION, "Checking a previously requested authorization...")
        return self.begin_polling()

    # ------------------------------------------------------------------
    # Finalizing
    # ------------------------------------------------------------------

    async def _accept(self, outcome: LoginOutcome) -> HubUser:
        if isinstance(outcome, LoginRejected):
            error = RoleNotAllowedError(outcome.reason)
            self._user = None
            self._fail(error)
            raise error

        if self._post_login is not None:
            try:
                await self._post_login()
            except TachoBridgeError as exc:
                self._fail(exc)
                raise

        self._user = outcome.user
        self._error = None
        self._transition(AuthState.READY, "Connected to Hub and Fleet.")
        _logger.info("Signed in as %s", outcome.user.display_name or outcome.user.id)
        return outcome.user

    async def finalize(self, token: str) -> HubUser:
        """Exchange an approved token for credentials and apply the role gate.

        Raises
        ------
        RoleNotAllowedError
            If the account is an employee account.  All credentials except
            the bridge client identifier are cleared.
        """
        self._stop_polling()
        self._transition(AuthState.FINALIZING, "Confirmation received, creating a session...")
        try:
            outcome = await self._chain.complete_device_login(token)
        except OutdatedClientError as exc:
            self._discard_pending()
            self._mark_outdated(exc)
            raise
        except TachoBridgeError as exc:
            self._discard_pending()
            self._fail(exc)
            raise

        self._discard_pending()
        return await self._accept(outcome)

    async def refresh_session(self) -> HubUser | None:
        """Validate stored credentials; returns ``None`` when signed out."""
        if not self._chain.has_credentials:
            if self._state is not AuthState.AWAITING_USER_CONFIRMATION:
                self._transition(AuthState.IDLE, "Sign in to connect.")
            return None

        self._is_checking = True
        self._transition(self._state, "Validating the stored session...")
        try:
            outcome = await self._chain.validate_login()
            return await self._accept(outcome)
        except OutdatedClientError as exc:
            self._mark_outdated(exc)
            raise
        except TachoBridgeError as exc:
            if self._error is not exc:
                self._fail(exc)
            raise
        finally:
            self._is_checking = False

    # ------------------------------------------------------------------
    # Lifecycle commands
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Resume a pending authorization and validate stored credentials.

        Errors are recorded in :attr:`error` and the state, not raised.
        """
        self.resume()
        if not self._chain.has_credentials:
            if not self.pending_token:
                self._transition(AuthState.IDLE, "Sign in to connect.")
            return
        with contextlib.suppress(TachoBridgeError):
            await self.refresh_session()

    async def _check_status(self) -> None:
        token = self.pending_token
        if token:
            self.resume_polling_if_pending()
            await self._poll_once(token)
            return
        with contextlib.suppress(TachoBridgeError):
            await self.refresh_session()

    def _clear_focus_check(self, future: asyncio.Future[None]) -> None:
        if self._focus_check is future:
            self._focus_check = None

    async def check_status_on_focus(self) -> None:
        """Re-check the connection when the application regains focus.

        Concurrent calls share one check.  Errors are recorded in
        :attr:`error` and the state, not raised.
        """
        check = self._focus_check
        if check is None or check.done():
            check = asyncio.ensure_future(self._check_status())
            check.add_done_callback(self._clear_focus_check)
            self._focus_check = check
        await asyncio.shield(check)

    async def disconnect(self) -> None:
        """Stop polling, drop the remote registration and clear credentials."""
        self._stop_polling()
        self._discard_pending()
        self._user = None
        self._approval_url = None
        try:
            if self._on_disconnect is not None:
                self._transition(self._state, "Disconnecting...")
                await self._on_disconnect()
        except TachoBridgeError:
            _logger.error("Could not remove the bridge client while disconnecting", exc_info=True)
        finally:
            self._chain.store.clear()
            self._error = None
            self._transition(AuthState.IDLE, "Not connected.")
