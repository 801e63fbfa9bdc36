"""
Socket.IO transport session for live chat events.

One session exists per authenticated login. It owns the connection
lifecycle (connect, bounded exponential-backoff reconnect, disconnect) and
fans inbound events out to any number of independent subscribers.
"""

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

import socketio

from discuss.events import ConnectionState, SocketEvent
from discuss.settings import Settings, get_settings

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Any]


class TransportError(Exception):
    """Base exception for transport failures surfaced to callers."""
    pass


class TransportNotConnected(TransportError):
    """The session is not connected; the request was not sent."""
    pass


class TransportTimeout(TransportError):
    """The server did not acknowledge the request in time."""
    pass


def event_name(event: SocketEvent | str) -> str:
    if isinstance(event, SocketEvent):
        return event.value
    return event


class Subscription:
    """Handle for one registered handler; closing it removes only that handler."""

    def __init__(self, dispose: Callable[[], None]):
        self._dispose = dispose
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._dispose()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class SubscriptionGroup:
    """Several subscriptions released with a single ``close()``."""

    def __init__(self, subscriptions: list["Subscription | SubscriptionGroup"] | None = None):
        self._subscriptions: list[Subscription | SubscriptionGroup] = list(subscriptions or [])

    def add(self, subscription: "Subscription | SubscriptionGroup") -> "Subscription | SubscriptionGroup":
        """Track a handle or a nested group; both are released by ``close()``."""
        self._subscriptions.append(subscription)
        return subscription

    def close(self) -> None:
        while self._subscriptions:
            self._subscriptions.pop().close()

    def __len__(self) -> int:
        return len(self._subscriptions)

    def __enter__(self) -> "SubscriptionGroup":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class TransportSession:
    """Manage the single Socket.IO connection of the logged-in user."""

    def __init__(
        self,
        settings: Settings | None = None,
        client_factory: Callable[[], Any] | None = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.settings = settings or get_settings()
        self._client_factory = client_factory or self._default_client
        self._sleep = sleep
        self._client: Any = None
        self._credential: str | None = None
        self._state = ConnectionState.DISCONNECTED
        self._closing = False
        self._retry_task: asyncio.Task | None = None
        self._pending: set[asyncio.Task] = set()
        # event name -> list of (token, handler)
        self._handlers: dict[str, list[tuple[object, Handler]]] = defaultdict(list)
        self._state_listeners: list[tuple[object, Callable[[ConnectionState], Any]]] = []

    def _default_client(self) -> socketio.AsyncClient:
        # Reconnection is driven by this session so the state machine stays explicit
        return socketio.AsyncClient(reconnection=False, logger=False)

    # -------------------------------------------------------------------------
    # Connection state
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    def watch_state(self, listener: Callable[[ConnectionState], Any]) -> Subscription:
        """Call ``listener`` with every new connection state."""
        token = object()
        self._state_listeners.append((token, listener))

        def dispose() -> None:
            self._state_listeners[:] = [e for e in self._state_listeners if e[0] is not token]

        return Subscription(dispose)

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        logger.debug(f"Transport state {self._state.value} -> {state.value}")
        self._state = state
        for _, listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("State listener failed")

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self, credential: str) -> None:
        """Start a session authenticated by a bearer credential.

        Never raises on network or auth errors: failures feed the retry loop
        and callers observe ``state`` instead.
        """
        if credential == self._credential and (
            self.connected or (self._retry_task and not self._retry_task.done())
        ):
            return
        if self._client is not None and credential != self._credential:
            # New identity: drop the old socket before authenticating again
            self._closing = True
            await self._cancel_retry()
            await self._close_client()

        self._credential = credential
        self._closing = False
        if self._client is None:
            self._client = self._client_factory()
            self._register_client_handlers(self._client)
        self._start_retry_loop()

    async def disconnect(self) -> None:
        """Tear the session down on logout. Safe to call repeatedly."""
        self._closing = True
        await self._cancel_retry()

        for task in list(self._pending):
            task.cancel()
        self._pending.clear()

        await self._close_client()
        self._handlers.clear()
        self._credential = None
        self._set_state(ConnectionState.DISCONNECTED)

    async def _cancel_retry(self) -> None:
        task, self._retry_task = self._retry_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _close_client(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.disconnect()
        except Exception as e:
            logger.warning(f"Error while closing socket: {e}")

    async def wait_connected(self, timeout: float | None = None) -> bool:
        """Wait until the session is connected or ``timeout`` elapses."""
        if self.connected:
            return True
        ready = asyncio.Event()
        with self.watch_state(lambda s: s == ConnectionState.CONNECTED and ready.set()):
            try:
                await asyncio.wait_for(ready.wait(), timeout)
            except asyncio.TimeoutError:
                return False
        return True

    def _register_client_handlers(self, client: Any) -> None:
        client.on("connect", self._on_connect)
        client.on("disconnect", self._on_disconnect)
        client.on("connect_error", self._on_connect_error)
        client.on("*", self._dispatch)

    def _start_retry_loop(self) -> None:
        if self._retry_task and not self._retry_task.done():
            return
        self._retry_task = asyncio.create_task(self._connect_with_retry())

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based), capped."""
        delay = self.settings.reconnection_delay * (2 ** (attempt - 1))
        return min(delay, self.settings.reconnection_delay_max)

    async def _connect_with_retry(self) -> None:
        attempts = self.settings.reconnection_attempts
        for attempt in range(1, attempts + 1):
            if self._closing or self._client is None:
                return
            self._set_state(ConnectionState.CONNECTING)
            try:
                await self._client.connect(
                    self.settings.socket_url,
                    auth={"token": self._credential},
                    transports=self.settings.transports,
                    socketio_path=self.settings.socket_path,
                )
            except (socketio.exceptions.ConnectionError, ValueError) as e:
                logger.warning(f"Socket connection attempt {attempt}/{attempts} failed: {e}")
            else:
                logger.info("Socket connected")
                self._set_state(ConnectionState.CONNECTED)
                return

            if attempt < attempts:
                await self._sleep(self.backoff_delay(attempt))

        logger.error(f"Socket connection failed after {attempts} attempts, idling until next connect()")
        self._set_state(ConnectionState.DISCONNECTED)

    async def _on_connect(self) -> None:
        self._set_state(ConnectionState.CONNECTED)

    async def _on_disconnect(self, *args) -> None:
        if self._closing:
            self._set_state(ConnectionState.DISCONNECTED)
            return
        reason = args[0] if args else "transport closed"
        logger.warning(f"Socket disconnected: {reason}")
        self._set_state(ConnectionState.CONNECTING)
        self._start_retry_loop()

    async def _on_connect_error(self, data: Any = None) -> None:
        logger.error(f"Socket connection error: {data}")

    # -------------------------------------------------------------------------
    # Publish / subscribe
    # -------------------------------------------------------------------------

    def emit(
        self,
        event: SocketEvent | str,
        payload: Any = None,
        ack: Callable[..., Any] | None = None,
    ) -> bool:
        """Fire-and-forget emit. Dropped (returns False) when not connected."""
        name = event_name(event)
        if not self.connected or self._client is None:
            logger.debug(f"Dropping {name}: transport not connected")
            return False
        task = asyncio.create_task(self._client.emit(name, payload, callback=ack))
        self._pending.add(task)
        task.add_done_callback(self._emit_done)
        return True

    def _emit_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Socket emit failed: {exc}")

    async def flush(self) -> None:
        """Wait for emits already handed to the socket."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def call(self, event: SocketEvent | str, payload: Any = None, timeout: float | None = None) -> Any:
        """Emit and wait for the server acknowledgement payload."""
        name = event_name(event)
        if not self.connected or self._client is None:
            raise TransportNotConnected(f"Cannot send {name}: not connected")
        try:
            return await self._client.call(name, payload, timeout=timeout or self.settings.ack_timeout)
        except socketio.exceptions.TimeoutError:
            raise TransportTimeout(f"No acknowledgement for {name}")
        except socketio.exceptions.BadNamespaceError as e:
            raise TransportNotConnected(str(e))

    def subscribe(self, event: SocketEvent | str, handler: Handler) -> Subscription:
        """Register ``handler`` for ``event``; returns its disposal handle."""
        name = event_name(event)
        token = object()
        self._handlers[name].append((token, handler))

        def dispose() -> None:
            entries = self._handlers.get(name)
            if entries is None:
                return
            entries[:] = [e for e in entries if e[0] is not token]
            if not entries:
                del self._handlers[name]

        return Subscription(dispose)

    def handler_count(self, event: SocketEvent | str) -> int:
        return len(self._handlers.get(event_name(event), []))

    async def _dispatch(self, event: str, *args) -> None:
        """Deliver one inbound event to every subscriber of that name."""
        payload = args[0] if args else None
        for _, handler in list(self._handlers.get(event, [])):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Handler for {event} failed")
