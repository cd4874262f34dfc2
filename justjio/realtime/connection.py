"""Streaming connection manager.

Keeps zero or one live WebSocket to the push server, matching the currently
authenticated user:

    DISCONNECTED -> CONNECTING -> OPEN -> DISCONNECTED
    CONNECTING or OPEN -> LOST   (only when max_retries is set and exhausted)

Lifecycle rules:
    - A change of user identity tears down the current connection and, if the
      new identity is a real user, opens a new one with the current token.
      Changing to the logged-out sentinel only closes.
    - The access token is read from the token provider at connect time and
      sent as the ``token`` query parameter. It is not refreshed while the
      connection is open.
    - A supervisor task checks liveness every ``poll_interval`` seconds (and
      immediately when the reader sees the socket close). If a user is logged
      in and the socket is closed, it reconnects.
    - Consecutive failed attempts are spaced by exponential backoff. A
      connection that closes before it delivered an event and before
      ``stable_after`` seconds passed counts as a failed attempt too (e.g. the
      server rejecting an expired token). Once a connection proved healthy,
      the first attempt after it drops is not delayed.

The manager also owns the ChannelRegistry/MessageRouter pair, so one object
is created at application start and handed to every view that needs
realtime events.

Thread Safety:
    Designed for a single asyncio event loop. An asyncio.Lock serialises
    open/teardown so two code paths can never leave two sockets alive.
"""
import asyncio
import logging
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional, Protocol, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from websockets.asyncio.client import connect as websockets_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from justjio.auth.token_store import NO_USER, UserIdentity
from justjio.config import RealtimeSettings

from .channels import ChannelCallback, ChannelKey, ChannelRegistry, Subscription
from .dispatch import MessageRouter

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    """Lifecycle state of the streaming connection."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    LOST = "lost"


class Transport(Protocol):
    """What the manager needs from a connected socket."""

    def __aiter__(self) -> AsyncIterator[Union[str, bytes]]: ...

    async def close(self) -> None: ...


Connector = Callable[[str], Awaitable[Transport]]
TokenProvider = Callable[[], Optional[str]]
StateListener = Callable[[ConnectionState], Any]

# Errors that mean "could not connect", as opposed to programming errors
CONNECT_ERRORS = (OSError, WebSocketException, asyncio.TimeoutError)


def build_stream_url(ws_url: str, token: str) -> str:
    """Append the bearer token to the streaming endpoint URL."""
    parts = urlsplit(ws_url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.append(("token", token))
    return urlunsplit(parts._replace(query=urlencode(query)))


class ConnectionManager:
    """Owns the single process-wide streaming connection."""

    def __init__(
        self,
        ws_url: str,
        token_provider: TokenProvider,
        *,
        registry: Optional[ChannelRegistry] = None,
        poll_interval: float = 5.0,
        backoff_base: float = 1.0,
        backoff_max: float = 30.0,
        max_retries: Optional[int] = None,
        connect_timeout: float = 10.0,
        stable_after: float = 10.0,
        connector: Optional[Connector] = None,
    ) -> None:
        self.ws_url = ws_url
        self.token_provider = token_provider
        self.registry = registry if registry is not None else ChannelRegistry()
        self.router = MessageRouter(self.registry)

        self.poll_interval = poll_interval
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.max_retries = max_retries
        self.connect_timeout = connect_timeout
        self.stable_after = stable_after
        self._connector: Connector = connector or self._open_websocket

        self._user: UserIdentity = NO_USER
        self._state = ConnectionState.DISCONNECTED
        self._transport: Optional[Transport] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._supervisor_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self._wakeup = asyncio.Event()
        self._listeners: List[StateListener] = []

        # consecutive failed connect attempts
        self._failures = 0
        self._next_attempt_at = 0.0
        self._opened_at = 0.0
        self.connect_attempts = 0

    @classmethod
    def from_settings(
        cls, settings: RealtimeSettings, token_provider: TokenProvider, **kwargs: Any
    ) -> "ConnectionManager":
        return cls(
            settings.ws_url,
            token_provider,
            poll_interval=settings.poll_interval_seconds,
            backoff_base=settings.backoff_base_seconds,
            backoff_max=settings.backoff_max_seconds,
            max_retries=settings.max_retries,
            connect_timeout=settings.connect_timeout_seconds,
            stable_after=settings.stable_after_seconds,
            **kwargs,
        )

    # =========================================================================
    # Public API
    # =========================================================================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def user(self) -> UserIdentity:
        return self._user

    def subscribe(self, key: ChannelKey, callback: ChannelCallback) -> Subscription:
        return self.registry.subscribe(key, callback)

    def unsubscribe(self, key: ChannelKey) -> None:
        self.registry.unsubscribe(key)

    def add_state_listener(self, listener: StateListener) -> None:
        """Register a callback invoked with the new state on every transition."""
        self._listeners.append(listener)

    async def set_user(self, identity: UserIdentity) -> None:
        """React to the authenticated user changing.

        No-op if the user id did not change; a new username is just recorded.
        """
        if identity.user_id == self._user.user_id:
            self._user = identity
            return
        if identity.is_authenticated:
            await self.connect(identity)
        else:
            await self.disconnect()

    async def connect(self, identity: UserIdentity) -> bool:
        """Replace any current connection with one for ``identity``.

        Returns:
            True if the new connection opened.
        """
        async with self._lock:
            self._user = identity
            self._reset_retries()
            await self._teardown()
            if not identity.is_authenticated:
                return False
            return await self._open()

    async def disconnect(self) -> None:
        """Log out: close the connection and stop reconnecting."""
        async with self._lock:
            self._user = NO_USER
            self._reset_retries()
            await self._teardown()

    def start(self) -> None:
        """Start the liveness supervisor (idempotent)."""
        if self._supervisor_task is None or self._supervisor_task.done():
            self._supervisor_task = asyncio.create_task(self._supervise())
            logger.info(f"[WS] Supervisor started (poll every {self.poll_interval}s)")

    async def close(self) -> None:
        """Stop the supervisor and close the connection."""
        if self._supervisor_task is not None:
            self._supervisor_task.cancel()
            await asyncio.gather(self._supervisor_task, return_exceptions=True)
            self._supervisor_task = None
        await self.disconnect()

    async def __aenter__(self) -> "ConnectionManager":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def check_connection(self) -> bool:
        """Run one liveness check, reconnecting if the socket is closed.

        Returns:
            True if a reconnect was attempted.
        """
        if not self._should_reconnect():
            return False
        async with self._lock:
            # state may have changed while waiting for the lock
            if not self._should_reconnect():
                return False
            logger.info(f"[WS] Reconnecting WS connection for user {self._user.user_id}")
            await self._open()
            return True

    # =========================================================================
    # Internals
    # =========================================================================

    def _should_reconnect(self) -> bool:
        if not self._user.is_authenticated:
            return False
        if self._state is not ConnectionState.DISCONNECTED:
            return False
        return asyncio.get_running_loop().time() >= self._next_attempt_at

    def _reset_retries(self) -> None:
        self._failures = 0
        self._next_attempt_at = 0.0

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        logger.debug(f"[WS] State {self._state.value} -> {state.value}")
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("[WS] State listener raised")

    async def _open_websocket(self, url: str) -> Transport:
        return await websockets_connect(url, open_timeout=self.connect_timeout)

    async def _open(self) -> bool:
        """Open a connection for the current user. Caller holds the lock."""
        token = self.token_provider() or ""
        url = build_stream_url(self.ws_url, token)

        self._set_state(ConnectionState.CONNECTING)
        self.connect_attempts += 1
        logger.info(f"[WS] Connecting to {self.ws_url} as user {self._user.user_id}")

        try:
            transport = await self._connector(url)
        except CONNECT_ERRORS as e:
            self._record_failure(e)
            return False

        self._transport = transport
        self._opened_at = asyncio.get_running_loop().time()
        self._set_state(ConnectionState.OPEN)
        logger.info("[WS] Opened WS connection")
        self._reader_task = asyncio.create_task(self._read_loop(transport))
        return True

    def _record_failure(self, error: BaseException) -> None:
        self._failures += 1
        if self.max_retries is not None and self._failures >= self.max_retries:
            logger.error(
                f"[WS] Giving up after {self._failures} failed connection attempts: {error}"
            )
            self._set_state(ConnectionState.LOST)
            return

        delay = min(self.backoff_base * 2 ** (self._failures - 1), self.backoff_max)
        self._next_attempt_at = asyncio.get_running_loop().time() + delay
        logger.warning(
            f"[WS] Connection attempt {self._failures} failed ({error!r}); "
            f"next attempt in >= {delay:.1f}s"
        )
        self._set_state(ConnectionState.DISCONNECTED)

    async def _read_loop(self, transport: Transport) -> None:
        healthy = False
        try:
            async for frame in transport:
                envelope = self.router.decode(frame)
                if envelope is None:
                    continue
                if not healthy:
                    healthy = True
                    self._reset_retries()
                self.router.deliver(envelope)
        except ConnectionClosed as e:
            logger.warning(f"[WS] Connection closed with error: {e}")
        except OSError as e:
            logger.warning(f"[WS] Transport error: {e}")
        except Exception:
            logger.exception("[WS] Reader failed")
        finally:
            # Only report closure for the connection that is still current;
            # teardown clears _transport before cancelling us.
            if self._transport is transport:
                self._transport = None
                self._reader_task = None
                logger.info("[WS] Closed WS connection")
                uptime = asyncio.get_running_loop().time() - self._opened_at
                if healthy or uptime >= self.stable_after:
                    self._reset_retries()
                    self._set_state(ConnectionState.DISCONNECTED)
                else:
                    self._record_failure(ConnectionError(f"closed after {uptime:.1f}s without events"))
                self._wakeup.set()

    async def _teardown(self) -> None:
        """Close the current connection, if any. Caller holds the lock."""
        transport, reader = self._transport, self._reader_task
        self._transport = None
        self._reader_task = None

        current = asyncio.current_task()
        if reader is not None and reader is not current:
            reader.cancel()

        if transport is not None:
            try:
                await transport.close()
            except CONNECT_ERRORS as e:
                logger.debug(f"[WS] Error while closing transport: {e}")
            logger.info("[WS] Closed WS connection")

        if reader is not None and reader is not current:
            await asyncio.gather(reader, return_exceptions=True)

        self._set_state(ConnectionState.DISCONNECTED)

    async def _supervise(self) -> None:
        while True:
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
            self._wakeup.clear()
            await self.check_connection()
