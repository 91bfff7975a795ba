"""Iteration result data structures shared across layers."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class IterationResult:
    """Outcome of one worker iteration inside a slot."""

    slot: int
    success: bool
    instance_name: Optional[str] = None
    ip_address: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    started_at: Optional[str] = None  # ISO timestamp
    completed_at: Optional[str] = None  # ISO timestamp
    duration_seconds: Optional[float] = None
    runner_exit_code: Optional[int] = None
    status: str = "unknown"  # completed/failed/canceled

    @property
    def canceled(self) -> bool:
        return self.status == "canceled"


__all__ = ["IterationResult"]
