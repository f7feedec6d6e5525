"""Driver session lifecycle and the diagnostics HTTP service."""

from .browser import DriverSession, DriverSessionManager

__all__ = ["DriverSession", "DriverSessionManager"]
