"""Perturbation / recovery tracking over periodic snapshots.

RecoveryMonitor is a three-state machine fed one scalar divergence per
sample (typically mean |base - meta| between a field and its redundant
copy):

    PRE_PERTURBATION
        Each sample before the scheduled step is pushed into a rolling
        buffer of the last 3 values. On the first sample whose step reaches
        the scheduled step, the baseline is the buffer mean (that sample
        itself excluded; it is used alone if the buffer is empty), the target
        is max(baseline, floor), the perturbation callback fires exactly
        once, and the machine moves on.

    PERTURBATION_APPLIED
        The first sample with divergence <= target * (1 + tolerance)
        records recovery_steps = step - perturb_step.

    RECOVERED (terminal)
        Later samples are ignored.

A run that ends in PERTURBATION_APPLIED never recovered: recovery_steps
is math.inf. A run that ends in PRE_PERTURBATION was never perturbed --
the schedule lay beyond the run horizon -- and is reported as such
(perturbed=False) rather than as a slow recovery.

Deadline classification lives outside the state machine in
missed_deadline(). DeadlineTracker handles the repeated-event variant:
a schedule of perturbations, each of which must recover within a fixed
deadline.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from ratchetkit.statistics import mean

logger = logging.getLogger(__name__)

NEVER = math.inf
DEFAULT_TOLERANCE = 0.10
DEFAULT_FLOOR = 0.5
BASELINE_WINDOW = 3


class MonitorState(Enum):
    PRE_PERTURBATION = "pre_perturbation"
    PERTURBATION_APPLIED = "perturbation_applied"
    RECOVERED = "recovered"


@dataclass(frozen=True)
class RecoveryOutcome:
    state: MonitorState
    perturbed: bool
    baseline: float | None
    baseline_target: float | None
    recovery_steps: float

    @property
    def recovered(self) -> bool:
        return self.state is MonitorState.RECOVERED


class RecoveryMonitor:
    """Detects the scheduled perturbation and times the recovery.

    Args:
        perturb_step: Step at which the perturbation is injected. The
            caller must make sure the run reaches it.
        on_perturb: Zero-argument callable that injects the perturbation.
            Called exactly once.
        floor: Minimum baseline target, so a zero baseline still leaves a
            reachable target.
        tolerance: Relative slack above the target that counts as
            recovered.
        window: Number of trailing pre-perturbation samples averaged into
            the baseline.

    Example:
        monitor = RecoveryMonitor(500_000, lambda: handle.perturb(request))
        for step in range(100_000, 1_000_001, 100_000):
            handle.advance(100_000)
            monitor.observe(step, base_meta_divergence(handle))
        outcome = monitor.finish()
    """

    def __init__(
        self,
        perturb_step: int,
        on_perturb: Callable[[], None] | None = None,
        floor: float = DEFAULT_FLOOR,
        tolerance: float = DEFAULT_TOLERANCE,
        window: int = BASELINE_WINDOW,
    ):
        self.perturb_step = perturb_step
        self._on_perturb = on_perturb
        self.floor = floor
        self.tolerance = tolerance
        self._pre = deque(maxlen=max(1, window))
        self.state = MonitorState.PRE_PERTURBATION
        self.baseline = None
        self.baseline_target = None
        self._recovery_steps = None

    @property
    def perturbed(self) -> bool:
        return self.state is not MonitorState.PRE_PERTURBATION

    @property
    def recovery_steps(self) -> float:
        if self._recovery_steps is None:
            return NEVER
        return self._recovery_steps

    def observe(self, step: int, divergence: float) -> MonitorState:
        """Feed one sample and return the state after it."""
        if self.state is MonitorState.PRE_PERTURBATION:
            if step < self.perturb_step:
                self._pre.append(divergence)
            else:
                # baseline excludes the trigger sample; it stands in only
                # when no earlier sample was seen
                self.baseline = mean(self._pre) if self._pre else divergence
                if self.baseline is None:
                    self.baseline = 0.0
                self.baseline_target = max(self.baseline, self.floor)
                if self._on_perturb is not None:
                    self._on_perturb()
                self.state = MonitorState.PERTURBATION_APPLIED
                logger.debug(
                    "perturbation at step %d, baseline %.4g, target %.4g",
                    step, self.baseline, self.baseline_target,
                )
        elif self.state is MonitorState.PERTURBATION_APPLIED:
            if divergence <= self.baseline_target * (1.0 + self.tolerance):
                self._recovery_steps = step - self.perturb_step
                self.state = MonitorState.RECOVERED
        return self.state

    def finish(self) -> RecoveryOutcome:
        """Close out the run and report its outcome."""
        if self.state is MonitorState.PRE_PERTURBATION:
            logger.warning(
                "perturbation step %d was never reached; run was not perturbed",
                self.perturb_step,
            )
        return RecoveryOutcome(
            state=self.state,
            perturbed=self.perturbed,
            baseline=self.baseline,
            baseline_target=self.baseline_target,
            recovery_steps=self.recovery_steps,
        )


def missed_deadline(recovery_steps: float, deadline: float) -> bool:
    """True when recovery never happened or took longer than deadline."""
    return math.isinf(recovery_steps) or recovery_steps > deadline


def schedule_events(every: int, deadline: int, steps: int) -> list[int]:
    """Event times every ``every`` steps that leave a full deadline window."""
    if every <= 0:
        return []
    return list(range(every, steps - deadline + 1, every))


@dataclass
class DeadlineEvent:
    t_event: int
    fired: bool = False
    recovered: bool = False
    missed: bool = False
    recovery: int | None = None


@dataclass
class DeadlineTracker:
    """Scores a schedule of perturbation events against a deadline.

    On each sample, every event time already reached is fired (the
    callback receives the event time). Each fired, unresolved event is
    then checked: more than ``deadline`` steps elapsed is a miss,
    otherwise a "good" sample recovers it. Events left unresolved when
    the run ends count as misses.
    """

    event_times: list[int]
    deadline: int
    on_event: Callable[[int], None] | None = None
    events: list[DeadlineEvent] = field(init=False)
    good_samples: int = field(init=False, default=0)
    samples: int = field(init=False, default=0)

    def __post_init__(self):
        self.events = [DeadlineEvent(t) for t in sorted(self.event_times)]

    def observe(self, step: int, good: bool) -> None:
        for event in self.events:
            if not event.fired and event.t_event <= step:
                event.fired = True
                if self.on_event is not None:
                    self.on_event(event.t_event)

        self.samples += 1
        self.good_samples += 1 if good else 0

        for event in self.events:
            if not event.fired or event.recovered or event.missed:
                continue
            elapsed = step - event.t_event
            if elapsed > self.deadline:
                event.missed = True
            elif good:
                event.recovered = True
                event.recovery = elapsed

    def finish(self) -> dict:
        for event in self.events:
            if not event.recovered:
                event.missed = True
        recoveries = [e.recovery for e in self.events if e.recovered]
        misses = sum(1 for e in self.events if e.missed)
        n_events = len(self.events)
        return {
            "events": n_events,
            "misses": misses,
            "miss_frac": misses / n_events if n_events else 0.0,
            "recoveries": recoveries,
            "recovery_mean": mean(recoveries),
            "uptime": self.good_samples / self.samples if self.samples else 0.0,
        }
