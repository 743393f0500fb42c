from __future__ import annotations

import io
from typing import Any, Dict, List, Tuple

import pytest

from witimu.hwt901b.config import DecoderConfig, DeviceConfig, ImuConfig, SequencerConfig
from witimu.hwt901b.publisher import TelemetryPublisher
from witimu.hwt901b.runner import ImuHost, SerialCommandClient, replay, replay_stream
from witimu.hwt901b.scheduler import Scheduler
from witimu.hwt901b.sequencer import plan_sequence
from witimu.hwt901b.status import StatusReporter


def make_host(clock, devices: List[DeviceConfig], on_options_changed=None):
    deltas: List[Dict[str, Any]] = []
    publisher = TelemetryPublisher([deltas.append])
    host = ImuHost(
        ImuConfig(devices=devices),
        publisher,
        scheduler=Scheduler(clock),
        status=StatusReporter(),
        on_options_changed=on_options_changed,
    )
    return host, deltas


def test_host_publishes_datasets_in_order(fake_serial, clock, stream) -> None:
    fake_serial.chunks = [stream]
    host, deltas = make_host(clock, [DeviceConfig(port="/dev/ttyFAKE")])
    host.start()
    assert host.status.message == "connected to /dev/ttyFAKE:0"

    assert host.step() == len(stream)
    assert len(deltas) == 2
    update = deltas[0]["updates"][0]
    assert update["$source"] == "WIT.1"
    paths = [value["path"] for value in update["values"]]
    assert paths[0] == "navigation.datetime"
    assert "navigation.headingMagnetic" in paths
    assert host.status.message == "Connected and receiving data"

    stats = host.stats()["WIT.1"]
    assert stats["datasets"] == 2
    assert stats["opens"] == 1
    assert host.publisher.published == 2


def test_each_device_gets_its_own_source(fake_serial, clock, stream) -> None:
    fake_serial.chunks = [stream]
    host, deltas = make_host(clock, [DeviceConfig(port="/dev/ttyA"), DeviceConfig(port="/dev/ttyB")])
    host.start()
    host.step()
    sources = [delta["updates"][0]["$source"] for delta in deltas]
    assert sources == ["WIT.1", "WIT.1", "WIT.2", "WIT.2"]
    assert set(host.stats()) == {"WIT.1", "WIT.2"}


def test_one_shot_flags_are_persisted_on_start(fake_serial, clock) -> None:
    saved: List[Tuple[ImuConfig, int]] = []
    devices = [DeviceConfig(port="/dev/ttyA"), DeviceConfig(port="/dev/ttyB", acc_cal=True)]
    host, _ = make_host(clock, devices, on_options_changed=lambda cfg, index: saved.append((cfg, index)))
    host.start()
    assert len(saved) == 1
    cfg, index = saved[0]
    assert index == 1
    assert cfg.devices[1].acc_cal is False


def test_configuration_runs_through_the_link(fake_serial, clock) -> None:
    host, _ = make_host(clock, [DeviceConfig(port="/dev/ttyFAKE", rate="5Hz")])
    host.start()
    clock.advance(10.0)
    host.step()
    clock.advance(0.2)
    host.step()
    written = fake_serial.instances[0].written
    assert written == [b"\xff\xaa\x69\x88\xb5", b"\xff\xaa\x03\x05\x00"]


def test_stop_closes_links_and_timers(fake_serial, clock) -> None:
    host, _ = make_host(clock, [DeviceConfig(port="/dev/ttyFAKE")])
    host.start()
    assert host.scheduler.pending() == 1
    host.stop()
    assert host.scheduler.pending() == 0
    assert fake_serial.instances[0].is_open is False
    assert not host.runtimes[0].link.connected


def test_start_requires_devices(clock) -> None:
    host, _ = make_host(clock, [])
    with pytest.raises(ValueError, match="No devices"):
        host.start()


def test_replay_reports_stats(stream) -> None:
    deltas: List[Dict[str, Any]] = []
    chunks = [b"\x00\x01" + stream[:30], stream[30:]]
    stats = replay(chunks, DeviceConfig(port="capture"), DecoderConfig(), TelemetryPublisher([deltas.append]))
    assert stats["datasets"] == 2
    assert stats["discarded"] == 2
    assert stats["too_short"] == 0
    assert len(deltas) == 2


def test_replay_stream_reads_file_handle(stream) -> None:
    deltas: List[Dict[str, Any]] = []
    stats = replay_stream(
        io.BytesIO(stream),
        DeviceConfig(port="capture", heading_offset=10.0),
        DecoderConfig(enforce_checksum=True),
        TelemetryPublisher([deltas.append]),
    )
    assert stats["datasets"] == 2
    assert stats["checksum_errors"] == 0


def test_serial_command_client_writes_phase(fake_serial) -> None:
    sleeps: List[float] = []
    phase = plan_sequence(DeviceConfig(port="/dev/ttyFAKE", angle_ref=True), SequencerConfig())[-1]
    client = SerialCommandClient("/dev/ttyFAKE", sleep=sleeps.append)
    client.run_phase(phase)
    client.close()
    assert fake_serial.instances[0].written == phase.commands()
    assert sleeps == [0.2, 0.2, 0.2]
    assert fake_serial.instances[0].is_open is False
