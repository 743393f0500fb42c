"""
Timed device-configuration script.

After a device is activated the sensor is sent, in order: the output rate,
the output record set, and optionally an accelerometer calibration and an
angle-reference reset. Every write is preceded by the unlock command and each
phase ends with a save. Phases start at fixed offsets from the moment the
link opens; steps inside a phase are chained, so a step is only scheduled once
the previous write went out.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from . import commands
from .config import DeviceConfig, SequencerConfig
from .connection import ConnectionManager, LinkEvent
from .errors import LinkIoError
from .scheduler import Scheduler, TimerHandle
from .status import StatusReporter

logger = logging.getLogger(__name__)


@dataclass
class Step:
    delay_ms: int
    command: bytes
    label: str


@dataclass
class Phase:
    name: str
    start_ms: int
    steps: List[Step] = field(default_factory=list)

    def commands(self) -> List[bytes]:
        return [step.command for step in self.steps]


class SequenceState(str, enum.Enum):
    IDLE = "idle"
    PLANNED = "planned"
    RUNNING = "running"
    INTERRUPTED = "interrupted"
    DONE = "done"
    CANCELLED = "cancelled"


def _unlocked_write(command: bytes, label: str, gap_ms: int, delay_ms: int = 0) -> List[Step]:
    return [Step(delay_ms, commands.UNLOCK, "unlock"), Step(gap_ms, command, label)]


def _save(gap_ms: int) -> List[Step]:
    return _unlocked_write(commands.SAVE_CONFIG, "save", gap_ms, delay_ms=gap_ms)


def plan_sequence(device: DeviceConfig, config: SequencerConfig) -> List[Phase]:
    gap = config.step_gap_ms
    phases = [
        Phase(
            "output rate",
            config.rate_at_ms,
            _unlocked_write(commands.set_output_rate(device.rate), f"rate {device.rate}", gap) + _save(gap),
        ),
        Phase(
            "output set",
            config.output_set_at_ms,
            _unlocked_write(commands.select_output_set(config.output_mask), "output set", gap) + _save(gap),
        ),
    ]
    if device.acc_cal:
        # The stop command itself goes out hold_ms after the start command
        hold_to_unlock = max(config.calibration_hold_ms - gap, 0)
        phases.append(
            Phase(
                "acc calibration",
                config.calibration_at_ms,
                _unlocked_write(commands.CALIBRATION_START, "calibration start", gap)
                + _unlocked_write(commands.CALIBRATION_STOP, "calibration stop", gap, delay_ms=hold_to_unlock)
                + _save(gap),
            )
        )
    if device.angle_ref:
        phases.append(
            Phase(
                "angle reference",
                config.angle_reset_at_ms,
                _unlocked_write(commands.RESET_ANGLE_REFERENCE, "angle reset", gap) + _save(gap),
            )
        )
    return phases


class ConfigurationSequencer:
    def __init__(
        self,
        link: ConnectionManager,
        scheduler: Scheduler,
        status: StatusReporter,
        config: SequencerConfig,
        on_options_changed: Optional[Callable[[], None]] = None,
    ):
        self.link = link
        self.scheduler = scheduler
        self.status = status
        self.config = config
        self.phases: List[Phase] = []
        self.state = SequenceState.IDLE
        self._on_options_changed = on_options_changed
        self._phase_idx = 0
        self._step_idx = 0
        self._anchor = 0.0
        self._timer: Optional[TimerHandle] = None
        link.register_callback(LinkEvent.OPENED, self._on_link_opened)
        link.register_callback(LinkEvent.CLOSED, self._on_link_lost)

    @property
    def current_phase(self) -> Optional[Phase]:
        if self._phase_idx < len(self.phases):
            return self.phases[self._phase_idx]
        return None

    def schedule(self, device: DeviceConfig) -> List[Phase]:
        """
        Plan the script for ``device`` and clear its one-shot flags right away.

        Execution waits for the link to open; if it is already open the script
        starts immediately.
        """
        self.phases = plan_sequence(device, self.config)
        self._phase_idx = 0
        self._step_idx = 0
        self.state = SequenceState.PLANNED
        changed = device.acc_cal or device.angle_ref
        device.acc_cal = False
        device.angle_ref = False
        if changed and self._on_options_changed is not None:
            self._on_options_changed()
        logger.debug("Planned %s for %s", [phase.name for phase in self.phases], self.link.name)
        if self.link.connected:
            self._start()
        return self.phases

    def cancel(self) -> None:
        self._cancel_timer()
        if self.state is not SequenceState.DONE:
            self.state = SequenceState.CANCELLED

    def _on_link_opened(self) -> None:
        if self.state in (SequenceState.PLANNED, SequenceState.INTERRUPTED):
            self._start()

    def _on_link_lost(self) -> None:
        if self.state is not SequenceState.RUNNING:
            return
        self._cancel_timer()
        self.state = SequenceState.INTERRUPTED
        phase = self.current_phase
        logger.info(
            "Configuration of %s interrupted during '%s'; resuming after reconnect",
            self.link.name,
            phase.name if phase else "?",
        )

    def _start(self) -> None:
        self.state = SequenceState.RUNNING
        self._anchor = self.scheduler.now()
        self._schedule_phase()

    def _schedule_phase(self) -> None:
        phase = self.current_phase
        if phase is None:
            self.state = SequenceState.DONE
            self.status.set_status(f"configuration complete for {self.link.name}")
            return
        self._step_idx = 0
        elapsed = self.scheduler.now() - self._anchor
        delay = max(phase.start_ms / 1000.0 - elapsed, 0.0) + phase.steps[0].delay_ms / 1000.0
        self._timer = self.scheduler.call_later(delay, self._run_step, label=f"{phase.name} {self.link.name}")

    def _run_step(self) -> None:
        self._timer = None
        phase = self.current_phase
        if phase is None or self.state is not SequenceState.RUNNING:
            return
        step = phase.steps[self._step_idx]
        try:
            self.link.write(step.command)
        except LinkIoError as exc:
            self.status.set_error(f"configuration write failed ({phase.name}, {step.label}): {exc}")
            self._on_link_lost()
            return
        logger.debug("command sent to %s: %s (%s)", self.link.name, commands.describe(step.command), step.label)
        self._step_idx += 1
        if self._step_idx < len(phase.steps):
            delay = phase.steps[self._step_idx].delay_ms / 1000.0
            self._timer = self.scheduler.call_later(delay, self._run_step, label=f"{phase.name} {self.link.name}")
            return
        logger.info("WIT config saved on %s: %s", self.link.name, phase.name)
        self._phase_idx += 1
        self._schedule_phase()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
