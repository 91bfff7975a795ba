"""Ekiden public API surface.

Only the stable entry points are exposed here; everything else should be
considered internal and may change.
"""

from .config import Config, load_config
from .runner import Dispatcher, run
from .shared import IterationResult, LifecycleState
from .version import __version__

__all__ = [
    "Config",
    "Dispatcher",
    "IterationResult",
    "LifecycleState",
    "load_config",
    "run",
    "__version__",
]
