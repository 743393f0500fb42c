from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from functools import partial
from typing import Any, BinaryIO, Callable, Dict, Iterable, Optional

import serial

from .commands import describe
from .config import DecoderConfig, DeviceConfig, ImuConfig
from .connection import ConnectionManager, LinkEvent
from .decoder import DatasetDecoder, lead_record_for_marker
from .frames import FrameSplitter, iterate_binary_stream
from .publisher import TelemetryPublisher, source_label
from .scheduler import Scheduler
from .sequencer import ConfigurationSequencer, Phase
from .status import StatusReporter

logger = logging.getLogger(__name__)


@dataclass
class DeviceRuntime:
    """Everything owned by one configured device."""

    index: int
    device: DeviceConfig
    source: str
    decoder: DatasetDecoder
    link: ConnectionManager
    sequencer: ConfigurationSequencer
    receiving: bool = False


def build_decoder(device: DeviceConfig, config: DecoderConfig) -> DatasetDecoder:
    return DatasetDecoder(
        heading_offset=device.heading_offset,
        enforce_checksum=config.enforce_checksum,
        pressure_unit=config.pressure_unit,
        lead=lead_record_for_marker(config.marker_bytes),
    )


class ImuHost:
    """
    Single-threaded host loop for all configured devices.

    Each iteration fires due timers (reconnects, configuration steps) and then
    polls every connected link once, so frames of a device are decoded and
    published strictly in arrival order.
    """

    def __init__(
        self,
        config: ImuConfig,
        publisher: TelemetryPublisher,
        *,
        scheduler: Optional[Scheduler] = None,
        status: Optional[StatusReporter] = None,
        on_options_changed: Optional[Callable[[ImuConfig, int], None]] = None,
    ):
        self.config = config
        self.publisher = publisher
        self.scheduler = scheduler or Scheduler()
        self.status = status or StatusReporter()
        self.runtimes: Dict[int, DeviceRuntime] = {}
        self._on_options_changed = on_options_changed
        self._stop_event = threading.Event()

    def start(self) -> None:
        if not self.config.devices:
            raise ValueError("No devices configured")
        for index, device in enumerate(self.config.devices):
            runtime = self._build_runtime(index, device)
            self.runtimes[index] = runtime
            runtime.link.connect()
            runtime.sequencer.schedule(device)

    def step(self) -> int:
        self.scheduler.run_due()
        received = 0
        for runtime in self.runtimes.values():
            received += runtime.link.poll()
        return received

    def run(self) -> None:
        self.start()
        interval_sec = max(float(self.config.host.stats_log_interval), 5.0)
        next_log = time.monotonic() + interval_sec
        try:
            while not self._stop_event.is_set():
                if not self.step():
                    self._stop_event.wait(self.config.host.poll_interval_sec)
                if time.monotonic() >= next_log:
                    self._emit_stats("stats")
                    next_log = time.monotonic() + interval_sec
        except KeyboardInterrupt:
            logger.info("Stopping host (Ctrl+C)")
        finally:
            self.stop()
            self._emit_stats("Final stats")

    def stop(self) -> None:
        self._stop_event.set()
        for runtime in self.runtimes.values():
            runtime.sequencer.cancel()
            runtime.link.close()
        self.scheduler.cancel_all()
        self.publisher.close()

    def stats(self) -> Dict[str, Dict[str, int]]:
        result: Dict[str, Dict[str, int]] = {}
        for runtime in self.runtimes.values():
            stats = runtime.link.stats()
            stats.update(runtime.decoder.stats())
            result[runtime.source] = stats
        return result

    def _build_runtime(self, index: int, device: DeviceConfig) -> DeviceRuntime:
        link = ConnectionManager(
            index,
            device,
            self.config.host,
            self.scheduler,
            self.status,
            pipeline=partial(self._on_dataset, index),
            splitter=FrameSplitter(self.config.decoder.marker_bytes),
        )
        sequencer = ConfigurationSequencer(
            link,
            self.scheduler,
            self.status,
            self.config.sequencer,
            on_options_changed=partial(self._options_changed, index),
        )
        runtime = DeviceRuntime(
            index=index,
            device=device,
            source=source_label(index),
            decoder=build_decoder(device, self.config.decoder),
            link=link,
            sequencer=sequencer,
        )
        link.register_callback(LinkEvent.OPENED, partial(self._on_link_opened, runtime))
        return runtime

    def _on_link_opened(self, runtime: DeviceRuntime) -> None:
        runtime.receiving = False

    def _on_dataset(self, index: int, buffer: bytes) -> None:
        runtime = self.runtimes[index]
        measurements = runtime.decoder.decode(buffer)
        if measurements is None:
            return
        self.publisher.publish(runtime.source, measurements)
        if not runtime.receiving:
            runtime.receiving = True
            self.status.set_status("Connected and receiving data")

    def _options_changed(self, index: int) -> None:
        if self._on_options_changed is not None:
            self._on_options_changed(self.config, index)

    def _emit_stats(self, label: str) -> None:
        for source, stats in self.stats().items():
            logger.info(
                "%s %s: datasets=%d too_short=%d checksum_errors=%d marker_errors=%d "
                "io_errors=%d reconnects=%d published=%d",
                label,
                source,
                stats.get("datasets", 0),
                stats.get("too_short", 0),
                stats.get("checksum_errors", 0),
                stats.get("marker_errors", 0),
                stats.get("io_errors", 0),
                stats.get("reconnects", 0),
                self.publisher.published,
            )


def replay(
    chunks: Iterable[bytes],
    device: DeviceConfig,
    config: DecoderConfig,
    publisher: TelemetryPublisher,
    source: str = "WIT.1",
) -> Dict[str, int]:
    """Decode a recorded raw byte stream and publish every dataset."""
    splitter = FrameSplitter(config.marker_bytes)
    decoder = build_decoder(device, config)
    try:
        for buffer in splitter.split(chunks):
            measurements = decoder.decode(buffer)
            if measurements is not None:
                publisher.publish(source, measurements)
    finally:
        publisher.close()
    stats = splitter.stats()
    stats.update(decoder.stats())
    return stats


def replay_stream(handle: BinaryIO, device: DeviceConfig, config: DecoderConfig, publisher: TelemetryPublisher) -> Dict[str, int]:
    return replay(iterate_binary_stream(handle), device, config, publisher)


class SerialCommandClient:
    """Blocking command writer for one-off configuration outside the host loop."""

    def __init__(self, port: str, baudrate: int = 9600, sleep: Callable[[float], Any] = time.sleep):
        self._serial = serial.Serial(port=port, baudrate=baudrate, timeout=1.0)
        self._sleep = sleep
        self.port = port

    def run_phase(self, phase: Phase) -> None:
        for step in phase.steps:
            if step.delay_ms:
                self._sleep(step.delay_ms / 1000.0)
            self._serial.write(step.command)
            self._serial.flush()
            logger.debug("command sent to %s: %s (%s)", self.port, describe(step.command), step.label)
        logger.info("WIT config saved on %s: %s", self.port, phase.name)

    def close(self) -> None:
        self._serial.close()
