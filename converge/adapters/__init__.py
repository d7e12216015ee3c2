"""Adapters — bindings to the machine: commands, files, apt and the network.

Drivers never call ``subprocess`` or ``urllib`` directly; they go
through these collaborators so tests can swap in the mocks.
"""

from converge.adapters.network.fetch import Fetcher, UrlFetcher
from converge.adapters.packages.apt import AptPackageManager, PackageManager
from converge.adapters.shell.command import CommandResult, CommandRunner

__all__ = [
    "AptPackageManager",
    "CommandResult",
    "CommandRunner",
    "Fetcher",
    "PackageManager",
    "UrlFetcher",
]
