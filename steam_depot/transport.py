"""
Platform connection: transport interface, event pump and single-flight slots

The connection owns one background pump thread. Every transport call is
queued to that thread and its outcome is delivered through a Future; events
polled from the transport are dispatched to subscribers on the same thread.
Callers never touch the wire library directly.
"""

import itertools
import logging
import queue
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from typing import Any, Callable, Dict, Hashable, List, Optional

from steam_depot import constants
from steam_depot.exceptions import ConnectionFailedError, TransportError
from steam_depot.messages import DisconnectedEvent, LogOnDetails


class Transport(ABC):
    """
    Wire-level access to the platform.

    Implementations are only ever called from the connection's pump thread.
    """

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether the underlying connection is up."""

    @abstractmethod
    def connect(self) -> bool:
        """Connect, returning True on success."""

    @abstractmethod
    def disconnect(self) -> None:
        """Close the connection."""

    @abstractmethod
    def send_log_on(self, details: LogOnDetails) -> None:
        """Send a logon; the outcome arrives as a LoggedOnEvent."""

    @abstractmethod
    def send(self, message: Any) -> None:
        """Send a message whose response arrives as an event."""

    @abstractmethod
    def request(self, message: Any) -> Any:
        """Perform a request and return its response message."""

    @abstractmethod
    def poll(self, timeout: float) -> List[Any]:
        """Wait up to ``timeout`` seconds and return events received meanwhile."""


class SingleFlightSlot:
    """
    Holds at most one pending request future.

    Arming the slot replaces any pending future; only one request of a kind
    is tracked at a time. A response carrying a key resolves the slot only if
    it matches the key the slot was armed with.
    """

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger("steam_depot.transport")
        self._lock = threading.Lock()
        self._future: Optional[Future] = None
        self._key: Optional[Hashable] = None

    def arm(self, key: Optional[Hashable] = None) -> Future:
        """Start tracking a new request and return the future it resolves."""
        future: Future = Future()
        if self.pending:
            self.logger.warning(f"{self.name}: replacing pending request {self._key}")
        with self._lock:
            self._future = future
            self._key = key
        return future

    def _current(self, key: Optional[Hashable]) -> Optional[Future]:
        with self._lock:
            if self._future is None:
                return None
            if key is not None and self._key is not None and key != self._key:
                return None
            return self._future

    def resolve(self, value: Any, key: Optional[Hashable] = None) -> bool:
        """Set the pending future's result. Returns False if nothing matched."""
        future = self._current(key)
        if future is None or future.done():
            self.logger.debug(f"{self.name}: no pending request for {key}, dropping response")
            return False
        future.set_result(value)
        return True

    def fail(self, error: BaseException, key: Optional[Hashable] = None) -> bool:
        """Set the pending future's exception. Returns False if nothing matched."""
        future = self._current(key)
        if future is None or future.done():
            self.logger.debug(f"{self.name}: no pending request for {key}, dropping error")
            return False
        future.set_exception(error)
        return True

    def clear(self, future: Future) -> None:
        """Stop tracking ``future`` if it is still the one held."""
        with self._lock:
            if self._future is future:
                self._future = None
                self._key = None

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._future is not None and not self._future.done()


class PlatformConnection:
    """
    Connection client running the transport on a single event pump.
    """

    def __init__(self, transport: Transport, poll_interval: float = constants.POLL_INTERVAL):
        """
        Initialize the connection.

        Args:
            transport: Wire-level transport implementation
            poll_interval: Seconds the pump waits for events per iteration
        """
        self.transport = transport
        self.poll_interval = poll_interval
        self.logger = logging.getLogger("steam_depot.transport")

        self._commands: "queue.Queue" = queue.Queue()
        self._handlers: Dict[type, List[Callable[[Any], None]]] = defaultdict(list)
        self._handlers_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._job_ids = itertools.count(1)
        self._job_lock = threading.Lock()

    # ========== Pump ==========

    def start(self) -> None:
        """Start the event pump if it is not running."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="steam-depot-pump", daemon=True)
        self._thread.start()
        self.logger.debug("Event pump started")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the event pump and fail any commands still queued."""
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self._thread = None
        self._fail_pending_commands()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop.is_set():
            self._drain_commands()
            try:
                events = self.transport.poll(self.poll_interval)
            except TransportError as e:
                self.logger.warning(f"Transport poll failed: {e}")
                events = [DisconnectedEvent(user_initiated=False)]
            for event in events:
                self._dispatch(event)
        self.logger.debug("Event pump stopped")

    def _drain_commands(self) -> None:
        while True:
            try:
                future, fn, args = self._commands.get_nowait()
            except queue.Empty:
                return
            if not future.set_running_or_notify_cancel():
                continue
            try:
                result = fn(*args)
            except Exception as e:
                future.set_exception(e)
            else:
                future.set_result(result)

    def _fail_pending_commands(self) -> None:
        while True:
            try:
                future, _, _ = self._commands.get_nowait()
            except queue.Empty:
                return
            if future.set_running_or_notify_cancel():
                future.set_exception(TransportError("Connection closed"))

    def _dispatch(self, event: Any) -> None:
        with self._handlers_lock:
            handlers = list(self._handlers.get(type(event), []))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                self.logger.exception(f"Handler for {type(event).__name__} failed")

    def subscribe(self, event_type: type, handler: Callable[[Any], None]) -> None:
        """Call ``handler`` on the pump thread for every event of ``event_type``."""
        with self._handlers_lock:
            self._handlers[event_type].append(handler)

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        """Run ``fn(*args)`` on the pump thread."""
        self.start()
        future: Future = Future()
        self._commands.put((future, fn, args))
        return future

    def next_job_id(self) -> int:
        """Return a fresh correlation id for a request."""
        with self._job_lock:
            return next(self._job_ids)

    # ========== Operations ==========

    @property
    def is_connected(self) -> bool:
        return self.transport.is_connected

    def connect(self, timeout: float = constants.CONNECT_TIMEOUT) -> None:
        """
        Connect the transport.

        Raises:
            ConnectionFailedError: If the connection could not be established
        """
        self.logger.info("Connecting...")
        future = self.submit(self.transport.connect)
        try:
            connected = future.result(timeout=timeout)
        except FutureTimeoutError:
            raise ConnectionFailedError(f"Timed out connecting after {timeout} seconds")
        except TransportError as e:
            raise ConnectionFailedError(str(e)) from e

        if not connected:
            raise ConnectionFailedError("Could not connect to the platform")
        self.logger.info("Connected")

    def disconnect(self, timeout: float = 5.0) -> None:
        """Disconnect the transport and stop the pump."""
        if self.running:
            try:
                self.submit(self.transport.disconnect).result(timeout=timeout)
            except FutureTimeoutError:
                self.logger.warning("Timed out while disconnecting")
        self.stop()

    def send_log_on(self, details: LogOnDetails) -> Future:
        return self.submit(self.transport.send_log_on, details)

    def send(self, message: Any) -> Future:
        return self.submit(self.transport.send, message)

    def request(self, message: Any) -> Future:
        """Queue a request; the future resolves to the response message."""
        return self.submit(self.transport.request, message)

    def call(self, message: Any, timeout: Optional[float] = None) -> Any:
        """Perform a request and wait for its response."""
        try:
            return self.request(message).result(timeout=timeout)
        except FutureTimeoutError:
            raise TransportError(f"Timed out waiting for {type(message).__name__}")
