"""
Host-side support for the WIT HWT901B serial IMU/GNSS sensor.

The subpackage splits the serial byte stream into datasets, decodes the
fixed-offset sub-records into physical units, keeps each device's link alive
with exponential backoff and replays the configuration command script after a
link opens.
"""

from .config import DecoderConfig, DeviceConfig, HostRuntime, ImuConfig, SequencerConfig, clear_one_shot_flags, load_config, save_config
from .connection import Backoff, ConnectionManager, LinkEvent, LinkState
from .decoder import DatasetDecoder, MeasurementSet, RecordType, decode_dataset, heading_rad, to_rad
from .errors import (
    ChecksumMismatch,
    FrameTooShort,
    Hwt901bError,
    LinkIoError,
    LinkOpenFailure,
    UnknownSubRecordMarker,
)
from .frames import FrameSplitter
from .publisher import CsvRecorder, JsonLinesPublisher, TelemetryPublisher, build_delta
from .runner import ImuHost
from .scheduler import Scheduler
from .sequencer import ConfigurationSequencer, plan_sequence
from .status import StatusReporter

__all__ = [
    "DecoderConfig",
    "DeviceConfig",
    "HostRuntime",
    "ImuConfig",
    "SequencerConfig",
    "load_config",
    "save_config",
    "clear_one_shot_flags",
    "Backoff",
    "ConnectionManager",
    "LinkEvent",
    "LinkState",
    "DatasetDecoder",
    "MeasurementSet",
    "RecordType",
    "decode_dataset",
    "heading_rad",
    "to_rad",
    "ChecksumMismatch",
    "FrameTooShort",
    "Hwt901bError",
    "LinkIoError",
    "LinkOpenFailure",
    "UnknownSubRecordMarker",
    "FrameSplitter",
    "CsvRecorder",
    "JsonLinesPublisher",
    "TelemetryPublisher",
    "build_delta",
    "ImuHost",
    "Scheduler",
    "ConfigurationSequencer",
    "plan_sequence",
    "StatusReporter",
]
