"""
Idle backoff for the worker loop.

Two states:
- BUSY: the last cycle leased at least one term
- IDLE: the last cycle found nothing to do

The delay between cycles shrinks toward the floor while there is work and
grows (bounded by the ceiling) once more than `threshold` consecutive cycles
come back empty. Driven purely by record(), so it can be tested without timers.
"""

from enum import Enum

from ..config.monitoring import MonitoringConfig


class WorkerState(str, Enum):
    IDLE = "idle"
    BUSY = "busy"


class IdleBackoff:
    def __init__(
        self,
        initial: float,
        floor: float,
        ceiling: float,
        threshold: int = 3,
        growth: float = 1.5,
        decay: float = 0.9,
        adaptive: bool = True,
    ):
        if floor > ceiling:
            raise ValueError("floor must be <= ceiling")
        self.floor = floor
        self.ceiling = ceiling
        self.threshold = threshold
        self.growth = growth
        self.decay = decay
        self.adaptive = adaptive
        self.initial = min(max(initial, floor), ceiling)

        self.delay = self.initial
        self.state = WorkerState.IDLE
        self.consecutive_empty = 0

    @classmethod
    def from_config(cls, config: MonitoringConfig) -> "IdleBackoff":
        return cls(
            initial=config.worker_polling_interval,
            floor=config.idle_delay_floor,
            ceiling=config.idle_delay_ceiling,
            threshold=config.max_consecutive_empty_batches,
            growth=config.idle_backoff_factor,
            decay=config.busy_decay_factor,
            adaptive=config.enable_adaptive_delays,
        )

    def mark_busy(self) -> None:
        """Called when a non-empty batch starts processing."""
        self.state = WorkerState.BUSY

    def record(self, items_leased: int) -> float:
        """Record the outcome of one cycle and return the delay before the next."""
        self.state = WorkerState.IDLE
        if items_leased > 0:
            self.consecutive_empty = 0
            if self.adaptive:
                self.delay = max(self.floor, self.delay * self.decay)
        else:
            self.consecutive_empty += 1
            if self.adaptive and self.consecutive_empty > self.threshold:
                self.delay = min(self.ceiling, self.delay * self.growth)
        return self.delay

    def reset(self) -> None:
        self.delay = self.initial
        self.state = WorkerState.IDLE
        self.consecutive_empty = 0
