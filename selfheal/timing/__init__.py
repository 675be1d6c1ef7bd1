"""Adaptive timing."""

from .adaptive import AdaptiveTimingController, TimedAction

__all__ = ["AdaptiveTimingController", "TimedAction"]
