"""
Shared test fixtures and configuration.
"""

import textwrap
from pathlib import Path

import pytest

from converge.adapters.mock import MockFetcher, MockPackageManager, MockRunner
from converge.core.config.settings import Settings
from converge.core.models.resource import Manifest, ResourceDeclaration
from converge.drivers.registry import DriverRegistry, default_registry


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def tmp_state_dir(tmp_path: Path) -> Path:
    """Return a temporary directory for state files."""
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def packages() -> MockPackageManager:
    return MockPackageManager()


@pytest.fixture
def fetcher() -> MockFetcher:
    return MockFetcher()


@pytest.fixture
def runner() -> MockRunner:
    return MockRunner()


@pytest.fixture
def registry(packages, fetcher, runner) -> DriverRegistry:
    """Every built-in driver, wired to the mocks."""
    return default_registry(
        Settings(use_sudo=False),
        runner=runner,
        packages=packages,
        fetcher=fetcher,
    )


@pytest.fixture
def write_manifest(tmp_path: Path):
    """Write YAML text to ``tmp_path/<name>`` and return its path."""

    def _write(content: str, name: str = "converge.yml") -> Path:
        path = tmp_path / name
        path.write_text(textwrap.dedent(content))
        return path

    return _write


def decl(kind: str, name: str, depends_on=None, **parameters) -> ResourceDeclaration:
    """Shorthand for a declaration in tests."""
    return ResourceDeclaration(
        kind=kind,
        name=name,
        parameters=parameters,
        depends_on=depends_on or [],
    )


def manifest_of(*declarations: ResourceDeclaration, name: str = "test") -> Manifest:
    return Manifest(name=name, resources=list(declarations))
