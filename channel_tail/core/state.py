"""Process-wide service context and its lifecycle state machine."""

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from channel_tail.core.history import DEFAULT_CAPACITY, HistoryStore


class ServicePhase(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


_TRANSITIONS: dict[ServicePhase, frozenset[ServicePhase]] = {
    ServicePhase.IDLE: frozenset({ServicePhase.STARTING}),
    # failed startups go straight to cleanup
    ServicePhase.STARTING: frozenset({ServicePhase.RUNNING, ServicePhase.SHUTTING_DOWN}),
    ServicePhase.RUNNING: frozenset({ServicePhase.SHUTTING_DOWN}),
    ServicePhase.SHUTTING_DOWN: frozenset({ServicePhase.STOPPED}),
    ServicePhase.STOPPED: frozenset(),
}


@dataclass(slots=True)
class ServiceState:
    """Context shared by the subscription pipeline and the HTTP handlers."""

    started_at: datetime
    pid: int
    history: HistoryStore
    phase: ServicePhase = field(default=ServicePhase.IDLE)

    @classmethod
    def create(cls, capacity: int = DEFAULT_CAPACITY) -> "ServiceState":
        """Record process start metadata around an empty history."""

        return cls(
            started_at=datetime.now(timezone.utc),
            pid=os.getpid(),
            history=HistoryStore(capacity=capacity),
        )

    def advance(self, phase: ServicePhase) -> bool:
        """Move to ``phase``; returns False when already there, raises on illegal moves."""

        if phase == self.phase:
            return False
        if phase not in _TRANSITIONS[self.phase]:
            raise RuntimeError(f"illegal phase transition {self.phase.value} -> {phase.value}")
        self.phase = phase
        return True
