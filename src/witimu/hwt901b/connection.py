from __future__ import annotations

import enum
import logging
from typing import Any, Callable, Dict, List, Optional

import serial

from .config import DeviceConfig, HostRuntime
from .errors import LinkIoError, LinkOpenFailure
from .frames import FrameSplitter
from .scheduler import Scheduler, TimerHandle
from .status import StatusReporter


class LinkState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECT_PENDING = "reconnect_pending"


class LinkEvent(str, enum.Enum):
    OPENED = "opened"
    DATA = "data"
    ERROR = "error"
    CLOSED = "closed"


class Backoff:
    """Reconnect delay in whole milliseconds, grown multiplicatively up to a cap."""

    def __init__(self, initial_ms: int = 1000, max_ms: int = 60000, factor: float = 1.5):
        if initial_ms <= 0:
            raise ValueError("initial_ms must be positive")
        self.initial_ms = int(initial_ms)
        self.max_ms = max(int(max_ms), self.initial_ms)
        self.factor = factor
        self.delay_ms = self.initial_ms

    def grow(self) -> int:
        self.delay_ms = min(int(self.delay_ms * self.factor), self.max_ms)
        return self.delay_ms

    def reset(self) -> None:
        self.delay_ms = self.initial_ms


class ConnectionManager:
    """
    Owns the serial link of one device.

    All transitions go through :meth:`handle_event`; ``connect``/``poll``/``write``
    only translate pyserial outcomes into :class:`LinkEvent` values. Failures are
    never fatal: an error schedules a reconnect on the shared scheduler using
    this device's own backoff.
    """

    def __init__(
        self,
        index: int,
        device: DeviceConfig,
        host: HostRuntime,
        scheduler: Scheduler,
        status: StatusReporter,
        pipeline: Callable[[bytes], None],
        splitter: Optional[FrameSplitter] = None,
    ):
        self.index = index
        self.device = device
        self.host = host
        self.scheduler = scheduler
        self.status = status
        self.pipeline = pipeline
        self.splitter = splitter or FrameSplitter()
        self.backoff = Backoff(host.reconnect_initial_ms, host.reconnect_max_ms, host.reconnect_factor)
        self.state = LinkState.DISCONNECTED
        self._handle: Any = None
        self._retry: Optional[TimerHandle] = None
        self._callbacks: Dict[LinkEvent, List[Callable[[], None]]] = {
            LinkEvent.OPENED: [],
            LinkEvent.CLOSED: [],
        }
        self._stats: Dict[str, int] = {"opens": 0, "reconnects": 0, "io_errors": 0}
        self._log = logging.getLogger(__name__)

    @property
    def name(self) -> str:
        return f"{self.device.port}:{self.index}"

    @property
    def connected(self) -> bool:
        return self.state is LinkState.CONNECTED

    def register_callback(self, event: LinkEvent, callback: Callable[[], None]) -> None:
        """Run ``callback`` when the link opens (OPENED) or is lost (CLOSED)."""
        if event not in self._callbacks:
            raise ValueError(f"Callbacks are only supported for {list(self._callbacks)}")
        self._callbacks[event].append(callback)

    def connect(self) -> None:
        if self.state in (LinkState.CONNECTING, LinkState.CONNECTED):
            return
        self._retry = None
        self.state = LinkState.CONNECTING
        self._log.info("Connecting to %s", self.name)
        try:
            handle = serial.Serial(
                port=self.device.port,
                baudrate=self.host.baudrate,
                timeout=0,
            )
        except (serial.SerialException, OSError, ValueError) as exc:
            self.handle_event(LinkEvent.ERROR, LinkOpenFailure(self.device.port, exc))
            return
        self._handle = handle
        self.handle_event(LinkEvent.OPENED)

    def poll(self) -> int:
        """Read whatever is buffered on the link and feed it to the pipeline."""
        if self.state is not LinkState.CONNECTED or self._handle is None:
            return 0
        try:
            if not self._handle.is_open:
                self.handle_event(LinkEvent.CLOSED)
                return 0
            data = self._handle.read(self.host.read_chunk_size)
        except (serial.SerialException, OSError) as exc:
            self.handle_event(LinkEvent.ERROR, LinkIoError(self.device.port, exc))
            return 0
        if data:
            self.handle_event(LinkEvent.DATA, data)
        return len(data or b"")

    def write(self, data: bytes) -> None:
        if self.state is not LinkState.CONNECTED or self._handle is None:
            raise LinkIoError(self.device.port, "link not connected")
        try:
            self._handle.write(data)
        except (serial.SerialException, OSError) as exc:
            error = LinkIoError(self.device.port, exc)
            self.handle_event(LinkEvent.ERROR, error)
            raise error from exc

    def handle_event(self, event: LinkEvent, payload: Any = None) -> None:
        if event is LinkEvent.OPENED:
            self.backoff.reset()
            self.splitter.reset()
            self._stats["opens"] += 1
            if self._stats["opens"] > 1:
                self._stats["reconnects"] += 1
            self.state = LinkState.CONNECTED
            self.status.set_status(f"connected to {self.name}")
            self._fire(LinkEvent.OPENED)
        elif event is LinkEvent.DATA:
            if self.state is not LinkState.CONNECTED:
                return
            for buffer in self.splitter.feed(payload):
                self.pipeline(buffer)
        elif event is LinkEvent.ERROR:
            self._stats["io_errors"] += 1
            self.status.set_error(str(payload))
            self._lose_link()
            self._schedule_reconnect()
        elif event is LinkEvent.CLOSED:
            self._log.info("Link %s closed", self.name)
            self._lose_link()
            if self.host.reconnect_on_close:
                self._schedule_reconnect()
            else:
                self.state = LinkState.DISCONNECTED

    def close(self) -> None:
        """Tear down for shutdown: cancel the pending retry and close the link."""
        if self._retry is not None:
            self._retry.cancel()
            self._retry = None
        self._discard_handle()
        self.state = LinkState.DISCONNECTED

    def stats(self) -> Dict[str, int]:
        stats = self.splitter.stats()
        stats.update(self._stats)
        return stats

    def _lose_link(self) -> None:
        was_connected = self.state is LinkState.CONNECTED
        self._discard_handle()
        if was_connected:
            self._fire(LinkEvent.CLOSED)

    def _schedule_reconnect(self) -> None:
        if self._retry is not None and not self._retry.cancelled:
            return
        self.state = LinkState.RECONNECT_PENDING
        delay_ms = self.backoff.grow()
        self.status.set_error(f"Not connected (retry delay {delay_ms / 1000:.0f} s)")
        self._retry = self.scheduler.call_later(delay_ms / 1000.0, self.connect, label=f"reconnect {self.name}")

    def _discard_handle(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            handle.close()
        except (serial.SerialException, OSError) as exc:
            self._log.debug("Error closing %s: %s", self.name, exc)

    def _fire(self, event: LinkEvent) -> None:
        for callback in list(self._callbacks[event]):
            callback()
