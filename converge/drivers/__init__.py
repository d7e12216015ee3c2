"""Drivers — one per resource kind, resolved through the registry."""

from converge.drivers.base import Driver
from converge.drivers.registry import DriverRegistry, default_registry

__all__ = ["Driver", "DriverRegistry", "default_registry"]
