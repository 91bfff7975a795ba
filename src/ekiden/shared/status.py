"""Lifecycle states for a single VM iteration."""

from enum import Enum


class LifecycleState(Enum):
    """Phases a worker's VM instance moves through during one iteration."""

    IDLE = "idle"
    CLONED = "cloned"
    BOOTING = "booting"
    HAS_ADDRESS = "has_address"
    CONFIGURED = "configured"
    JOB_RUNNING = "job_running"
    STOPPING = "stopping"
    DELETED = "deleted"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is LifecycleState.DELETED


_ORDER = [
    LifecycleState.IDLE,
    LifecycleState.CLONED,
    LifecycleState.BOOTING,
    LifecycleState.HAS_ADDRESS,
    LifecycleState.CONFIGURED,
    LifecycleState.JOB_RUNNING,
    LifecycleState.STOPPING,
    LifecycleState.DELETED,
]


def can_transition(current: LifecycleState, target: LifecycleState) -> bool:
    """Return True when ``current -> target`` is a legal lifecycle move.

    Forward moves along the happy path may skip phases (cleanup jumps straight
    to STOPPING). FAILED is reachable from any non-terminal state and only
    leads on to STOPPING or DELETED.
    """
    if current.is_terminal:
        return False
    if target is LifecycleState.FAILED:
        return current is not LifecycleState.FAILED
    if current is LifecycleState.FAILED:
        return target in (LifecycleState.STOPPING, LifecycleState.DELETED)
    return _ORDER.index(target) > _ORDER.index(current)


__all__ = ["LifecycleState", "can_transition"]
