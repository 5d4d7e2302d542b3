"""Single-threaded runtime pieces shared by the tracking pipeline."""

from .dispatch import Dispatcher, Timer

__all__ = ["Dispatcher", "Timer"]
