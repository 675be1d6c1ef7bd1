"""Engine configuration."""

from .settings import OPTION_ALIASES, EngineSettings

__all__ = ["EngineSettings", "OPTION_ALIASES"]
