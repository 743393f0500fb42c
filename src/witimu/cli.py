"""Command line interface for the witimu package."""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import List, Optional

import serial
import typer

from .hwt901b.commands import OUTPUT_RATES, SAVE_CONFIG, UNLOCK
from .hwt901b.config import DeviceConfig, ImuConfig, SequencerConfig, clear_one_shot_flags, config_from_mapping, load_config
from .hwt901b.publisher import CsvRecorder, JsonLinesPublisher, TelemetryPublisher
from .hwt901b.runner import ImuHost, SerialCommandClient, replay_stream
from .hwt901b.sequencer import Phase, Step, plan_sequence

logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False, context_settings={"help_option_names": ["-h", "--help"]}, help="WIT HWT901B host utilities.")
device_app = typer.Typer(help="One-shot configuration commands (unlock, write, save).")
app.add_typer(device_app, name="device")


def _setup_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        raise typer.BadParameter(f"Unknown log level '{level}'", param_hint="--log-level")
    logging.basicConfig(level=numeric, format="%(asctime)s %(levelname)s %(name)s: %(message)s", stream=sys.stderr)


def _check_rate(rate: str) -> str:
    if rate not in OUTPUT_RATES:
        raise typer.BadParameter(f"Expected one of {list(OUTPUT_RATES)}", param_hint="--rate")
    return rate


@app.command()
def run(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to host config JSON."),
    override: Optional[List[str]] = typer.Option(
        None, "--set", help="Override config keys, e.g. --set devices.0.rate=10Hz --set host.baudrate=115200"
    ),
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Add a device on this serial port."),
    rate: str = typer.Option("2Hz", "--rate", help="Output rate for --port."),
    heading_offset: float = typer.Option(0.0, "--heading-offset", help="Heading offset (degrees) for --port."),
    calibrate: bool = typer.Option(False, "--calibrate", help="Run accelerometer calibration on --port."),
    reset_angle: bool = typer.Option(False, "--reset-angle", help="Level roll/pitch reference on --port."),
    output_csv: Optional[Path] = typer.Option(None, "--output-csv", help="Record decoded datasets to CSV."),
    enforce_checksum: Optional[bool] = typer.Option(
        None, "--enforce-checksum/--no-enforce-checksum", help="Drop datasets with bad sub-record checksums."
    ),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level."),
) -> None:
    """Connect to every configured device and publish decoded datasets as JSON lines."""

    _setup_logging(log_level)
    if override and config_path is None:
        raise typer.BadParameter("--set requires --config", param_hint="--set")
    try:
        cfg = load_config(config_path, override) if config_path else ImuConfig()
    except (OSError, ValueError) as exc:
        raise typer.BadParameter(str(exc), param_hint="--config") from exc
    if port:
        cfg.devices.append(
            DeviceConfig(
                port=port,
                rate=_check_rate(rate),
                heading_offset=heading_offset,
                acc_cal=calibrate,
                angle_ref=reset_angle,
            )
        )
    if not cfg.devices:
        raise typer.BadParameter("Provide --port or a config file with devices")
    if output_csv is not None:
        cfg.output_csv = output_csv
    if enforce_checksum is not None:
        cfg.decoder.enforce_checksum = enforce_checksum

    def persist(updated: ImuConfig, index: int) -> None:
        if config_path is None:
            return
        # Devices added by --port or --set have no entry in the file
        if clear_one_shot_flags(config_path, [index]):
            logger.debug("Device options saved to %s", config_path)

    recorder = CsvRecorder(cfg.output_csv) if cfg.output_csv else None
    publisher = TelemetryPublisher([JsonLinesPublisher(sys.stdout)], recorder=recorder)
    host = ImuHost(cfg, publisher, on_options_changed=persist)
    host.run()


@app.command()
def decode(
    input_path: Path = typer.Option(..., "--in", help="Raw serial capture. Use '-' for stdin."),
    heading_offset: float = typer.Option(0.0, "--heading-offset", help="Heading offset in degrees."),
    enforce_checksum: bool = typer.Option(False, "--enforce-checksum", help="Drop datasets with bad checksums."),
    pressure_unit: str = typer.Option("Pa", "--pressure-unit", help="Pa or hPa."),
    marker: str = typer.Option("5550", "--marker", help="Dataset marker as hex."),
    output_csv: Optional[Path] = typer.Option(None, "--output-csv", help="Also record datasets to CSV."),
) -> None:
    """Decode a recorded byte stream and print one delta per dataset."""

    try:
        cfg = config_from_mapping(
            {
                "devices": [{"port": str(input_path), "heading_offset": heading_offset}],
                "decoder": {"enforce_checksum": enforce_checksum, "pressure_unit": pressure_unit, "marker": marker},
            }
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    device, config = cfg.devices[0], cfg.decoder
    recorder = CsvRecorder(output_csv) if output_csv else None
    publisher = TelemetryPublisher([JsonLinesPublisher(sys.stdout)], recorder=recorder)
    if str(input_path) == "-":
        stats = replay_stream(sys.stdin.buffer, device, config, publisher)
    else:
        with input_path.open("rb") as handle:
            stats = replay_stream(handle, device, config, publisher)
    typer.echo(
        "datasets={datasets} too_short={too_short} checksum_errors={checksum_errors} "
        "marker_errors={marker_errors} discarded={discarded}".format(**stats),
        err=True,
    )


def _planned(device: DeviceConfig, name: str) -> Phase:
    return {phase.name: phase for phase in plan_sequence(device, SequencerConfig())}[name]


def _run_phase(port: str, baudrate: int, phase: Phase) -> None:
    try:
        client = SerialCommandClient(port, baudrate)
    except serial.SerialException as exc:
        typer.echo(f"Cannot open {port}: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    try:
        client.run_phase(phase)
    finally:
        client.close()
    typer.echo(f"{phase.name} written to {port}")


@device_app.command("rate")
def device_rate(
    port: str = typer.Option("/dev/ttyUSB0", "--port", "-p", help="Serial device"),
    rate: str = typer.Option(..., "--rate", help=f"One of {', '.join(OUTPUT_RATES)}"),
    baudrate: int = typer.Option(9600, "--baud", help="Serial baudrate"),
) -> None:
    _run_phase(port, baudrate, _planned(DeviceConfig(port=port, rate=_check_rate(rate)), "output rate"))


@device_app.command("output-set")
def device_output_set(
    port: str = typer.Option("/dev/ttyUSB0", "--port", "-p", help="Serial device"),
    baudrate: int = typer.Option(9600, "--baud", help="Serial baudrate"),
) -> None:
    _run_phase(port, baudrate, _planned(DeviceConfig(port=port), "output set"))


@device_app.command("calibrate")
def device_calibrate(
    port: str = typer.Option("/dev/ttyUSB0", "--port", "-p", help="Serial device"),
    baudrate: int = typer.Option(9600, "--baud", help="Serial baudrate"),
) -> None:
    """Accelerometer calibration; keep the sensor level and still."""
    _run_phase(port, baudrate, _planned(DeviceConfig(port=port, acc_cal=True), "acc calibration"))


@device_app.command("reset-angle")
def device_reset_angle(
    port: str = typer.Option("/dev/ttyUSB0", "--port", "-p", help="Serial device"),
    baudrate: int = typer.Option(9600, "--baud", help="Serial baudrate"),
) -> None:
    _run_phase(port, baudrate, _planned(DeviceConfig(port=port, angle_ref=True), "angle reference"))


@device_app.command("save")
def device_save(
    port: str = typer.Option("/dev/ttyUSB0", "--port", "-p", help="Serial device"),
    baudrate: int = typer.Option(9600, "--baud", help="Serial baudrate"),
) -> None:
    """Persist the current register values in the sensor flash."""
    gap = SequencerConfig().step_gap_ms
    _run_phase(port, baudrate, Phase("save", 0, [Step(0, UNLOCK, "unlock"), Step(gap, SAVE_CONFIG, "save")]))


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
