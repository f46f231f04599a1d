"""
Time-stepping simulator.

Drives externally owned particle lists forward (prediction) or backward
(reconstruction) in time, captures snapshots at a fixed interval and
interpolates positions between snapshots for timeline scrubbing.

Backward runs reuse the forward physics with the displacement subtracted.
This approximates drift reconstruction; it is not an inverse integrator.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Sequence

import numpy as np

from .environment import EnvironmentalManager
from .particle import Particle
from .simulator import (
    DEFAULT_TIME_STEP,
    PROGRESS_INTERVAL_STEPS,
    CancellationToken,
    PhysicsModels,
    ProgressEvent,
    Snapshot,
    SnapshotParticle,
    advance_particles,
    capture_snapshot,
)

DEFAULT_SNAPSHOT_INTERVAL = 3600.0  # seconds


@dataclass(frozen=True)
class TimelineRun:
    snapshots: List[Snapshot]
    particles: List[Particle]


@dataclass(frozen=True)
class InterpolatedFrame:
    hour: float
    time: float
    particles: List[SnapshotParticle]
    interpolated: bool


@dataclass(frozen=True)
class TimeSlice:
    time: float
    hour: float
    label: str


def format_elapsed(seconds: float) -> str:
    """Label like '3h' or '3h 15m'."""
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    return f"{hours}h" if minutes == 0 else f"{hours}h {minutes}m"


class TimeSteppingSimulator:
    """Forward/backward stepping driver over caller-supplied particles."""

    def __init__(
        self,
        time_step: float = DEFAULT_TIME_STEP,
        snapshot_interval: float = DEFAULT_SNAPSHOT_INTERVAL,
        rng: Optional[np.random.Generator] = None,
        history_interval: int = 1,
    ):
        """
        Initialize time-stepping simulator.

        Args:
            time_step: Step length (seconds)
            snapshot_interval: Seconds between captured snapshots
            rng: Random generator for ensemble member selection
            history_interval: Steps between trajectory points (0 disables)
        """
        if time_step <= 0 or snapshot_interval <= 0:
            raise ValueError("Time step and snapshot interval must be positive")
        if history_interval < 0:
            raise ValueError(f"History interval must be non-negative, got {history_interval}")
        self.history_interval = history_interval
        self.time_step = time_step
        self.snapshot_interval = snapshot_interval
        self.rng = rng if rng is not None else np.random.default_rng()

        self.current_time = 0.0
        self.snapshots: List[Snapshot] = []

        logging.info("Time-stepping simulator initialized: %.0f s step, %.0f s snapshots",
                     time_step, snapshot_interval)

    def _iter_run(
        self,
        particles: Sequence[Particle],
        duration_hours: float,
        environmental_manager: EnvironmentalManager,
        physics: PhysicsModels,
        direction: int,
        cancel_token: Optional[CancellationToken],
    ) -> Iterator[ProgressEvent]:
        self.current_time = 0.0
        self.snapshots = []
        phase = "forward" if direction > 0 else "backward"

        total_steps = int(round(duration_hours * 3600.0 / self.time_step))
        self._capture(particles)

        for step in range(total_steps):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            elapsed = (step + 1) * self.time_step
            previous = step * self.time_step
            self.current_time = direction * elapsed

            record = self.history_interval > 0 and (step + 1) % self.history_interval == 0
            advance_particles(particles, self.current_time, self.time_step,
                              environmental_manager, physics, self.rng, direction=direction,
                              record_history=record)

            if int(elapsed // self.snapshot_interval) > int(previous // self.snapshot_interval):
                self._capture(particles)

            if step % PROGRESS_INTERVAL_STEPS == 0:
                yield ProgressEvent(phase, step, total_steps, step / total_steps * 100.0,
                                    int(elapsed // 3600))

        yield ProgressEvent(phase, total_steps, total_steps, 100.0,
                            int(total_steps * self.time_step // 3600))
        logging.info("%s simulation complete: %d snapshots", phase.capitalize(), len(self.snapshots))

    def iter_forward(self, particles, duration_hours, environmental_manager, physics,
                     cancel_token: Optional[CancellationToken] = None) -> Iterator[ProgressEvent]:
        logging.info("Running forward simulation: %.1f hours", duration_hours)
        return self._iter_run(particles, duration_hours, environmental_manager, physics, 1, cancel_token)

    def iter_backward(self, particles, duration_hours, environmental_manager, physics,
                      cancel_token: Optional[CancellationToken] = None) -> Iterator[ProgressEvent]:
        logging.info("Running backward simulation: %.1f hours", duration_hours)
        return self._iter_run(particles, duration_hours, environmental_manager, physics, -1, cancel_token)

    def run_forward_simulation(
        self,
        particles: Sequence[Particle],
        duration_hours: float,
        environmental_manager: EnvironmentalManager,
        physics: PhysicsModels,
        progress_callback: Optional[Callable[[ProgressEvent], None]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> TimelineRun:
        """
        Predict future drift of the given particles.

        Args:
            particles: Particles to advance in place
            duration_hours: Simulation duration (hours)
            environmental_manager: Environmental data manager
            physics: Physics models
            progress_callback: Optional callback function(ProgressEvent)
            cancel_token: Optional cancellation token

        Returns:
            TimelineRun with snapshots and the advanced particles
        """
        for event in self.iter_forward(particles, duration_hours, environmental_manager,
                                       physics, cancel_token):
            if progress_callback:
                progress_callback(event)
        return TimelineRun(snapshots=list(self.snapshots), particles=list(particles))

    def run_backward_simulation(
        self,
        particles: Sequence[Particle],
        duration_hours: float,
        environmental_manager: EnvironmentalManager,
        physics: PhysicsModels,
        progress_callback: Optional[Callable[[ProgressEvent], None]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> TimelineRun:
        """Reconstruct prior positions; snapshot hours and times are negative."""
        for event in self.iter_backward(particles, duration_hours, environmental_manager,
                                        physics, cancel_token):
            if progress_callback:
                progress_callback(event)
        return TimelineRun(snapshots=list(self.snapshots), particles=list(particles))

    def _capture(self, particles: Sequence[Particle]):
        hour = int(abs(self.current_time) // 3600)
        if self.current_time < 0:
            hour = -hour
        snapshot = capture_snapshot(hour, self.current_time, particles)
        self.snapshots.append(snapshot)
        logging.debug("Snapshot %dh: %d active particles", hour, snapshot.active)

    def get_snapshot_at_hour(self, hour: int) -> Optional[Snapshot]:
        for snapshot in self.snapshots:
            if snapshot.hour == hour:
                return snapshot
        return None

    def get_snapshots_in_range(self, start_hour: int, end_hour: int) -> List[Snapshot]:
        return [s for s in self.snapshots if start_hour <= s.hour <= end_hour]

    def interpolate_at_time(self, target_time: float) -> Optional[InterpolatedFrame]:
        """
        Linearly interpolate particle positions between bracketing snapshots.

        Particles are matched by index, so ordering and count must be the
        same in both snapshots. Status is taken from the later snapshot.
        Outside the captured range the nearest snapshot is returned as is.
        """
        if not self.snapshots:
            return None

        before = max((s for s in self.snapshots if s.time <= target_time),
                     key=lambda s: s.time, default=None)
        after = min((s for s in self.snapshots if s.time >= target_time),
                    key=lambda s: s.time, default=None)

        if before is None or after is None or before.time == after.time:
            nearest = before or after
            return InterpolatedFrame(nearest.hour, nearest.time, list(nearest.particles), False)

        if len(before.particles) != len(after.particles):
            raise ValueError("Cannot interpolate between snapshots with different particle counts")

        ratio = (target_time - before.time) / (after.time - before.time)
        particles = [
            SnapshotParticle(
                id=b.id,
                lat=b.lat + (a.lat - b.lat) * ratio,
                lng=b.lng + (a.lng - b.lng) * ratio,
                status=a.status,
            )
            for b, a in zip(before.particles, after.particles)
        ]
        return InterpolatedFrame(target_time / 3600.0, target_time, particles, True)

    def generate_time_slices(self, duration_hours: float, interval: float = 60.0) -> List[TimeSlice]:
        total = duration_hours * 3600.0
        slices = []
        t = 0.0
        while t <= total:
            slices.append(TimeSlice(time=t, hour=t / 3600.0, label=format_elapsed(t)))
            t += interval
        return slices

    def export_snapshots(self) -> List[dict]:
        return [
            {
                "hour": s.hour,
                "time": s.time,
                "particle_count": s.total,
                "active_count": s.active,
                "beached_count": s.beached,
            }
            for s in self.snapshots
        ]

    def get_statistics(self) -> dict:
        return {
            "total_snapshots": len(self.snapshots),
            "current_time": self.current_time,
            "current_hour": int(self.current_time / 3600),
            "time_step": self.time_step,
            "snapshot_interval": self.snapshot_interval,
        }

    def reset(self):
        self.current_time = 0.0
        self.snapshots = []
        logging.info("Time-stepping simulator reset")
