"""Session counters: credits and processing statistics."""

from .credits import CreditBalance
from .progress_tracker import ProgressTracker

__all__ = ["CreditBalance", "ProgressTracker"]
