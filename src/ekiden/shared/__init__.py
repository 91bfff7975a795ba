"""
Shared types used across layers.

Kept separate so the runner and CLI layers can exchange results and
lifecycle states without importing each other.
"""

from ekiden.shared.results import IterationResult
from ekiden.shared.status import LifecycleState, can_transition

__all__ = ["IterationResult", "LifecycleState", "can_transition"]
