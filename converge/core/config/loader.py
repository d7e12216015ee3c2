"""
Manifest loader — reads converge.yml into a validated Manifest.

Reads YAML, expands the ``names:`` shorthand, resolves ``extends:``
chains and validates against the Pydantic models. Every failure is a
``ManifestError``: a manifest that cannot be read is as malformed as
one with a cycle.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from converge.core.errors import ManifestError
from converge.core.models.resource import Manifest, make_resource_id

logger = logging.getLogger(__name__)

# Default manifest filename
MANIFEST_FILE = "converge.yml"


def find_manifest_file(start_dir: Path | None = None) -> Path | None:
    """Search for converge.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to converge.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / MANIFEST_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def load_manifest(path: Path) -> Manifest:
    """Load and validate a manifest file, following ``extends``.

    Args:
        path: Path to the manifest.

    Returns:
        Validated Manifest model.

    Raises:
        ManifestError: If the file is missing, unreadable or invalid.
    """
    data = _load_merged(path.resolve(), chain=[])

    try:
        manifest = Manifest.model_validate(data)
    except ValidationError as e:
        raise ManifestError(f"Invalid manifest {path}: {e}") from e

    logger.info("Loaded manifest '%s' with %d resources", manifest.name, len(manifest.resources))
    return manifest


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise ManifestError(f"Manifest not found: {path}")

    logger.debug("Loading manifest from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ManifestError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ManifestError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ManifestError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")
    return data


def _load_merged(path: Path, chain: list[Path]) -> dict[str, Any]:
    """Read one manifest file and fold its ``extends`` base underneath it."""
    if path in chain:
        loop = " -> ".join(str(p) for p in [*chain, path])
        raise ManifestError(f"Circular 'extends' chain: {loop}")

    data = _read_yaml(path)
    resources = _expand_resources(data.get("resources") or [], path)
    settings = data.get("settings") or {}
    if not isinstance(settings, dict):
        raise ManifestError(f"'settings' must be a mapping in {path}")

    base_ref = data.get("extends")
    if not base_ref:
        return {**data, "settings": settings, "resources": resources}

    base_path = (path.parent / str(base_ref)).resolve()
    base = _load_merged(base_path, [*chain, path])

    merged = {
        "version": data.get("version", base.get("version", 1)),
        "name": data.get("name", base.get("name", "")),
        "description": data.get("description", base.get("description", "")),
        "settings": {**base.get("settings", {}), **settings},
        "resources": _overlay(base["resources"], resources),
    }
    logger.debug("Manifest %s extends %s", path.name, base_path.name)
    return merged


def _expand_resources(entries: Any, path: Path) -> list[dict[str, Any]]:
    """Expand ``names: [...]`` records into one declaration per name."""
    if not isinstance(entries, list):
        raise ManifestError(f"'resources' must be a list in {path}")

    expanded: list[dict[str, Any]] = []
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ManifestError(f"Resource #{i} in {path} is not a mapping")

        if "names" not in entry:
            expanded.append(entry)
            continue

        names = entry["names"]
        if "name" in entry or not isinstance(names, list) or not names:
            raise ManifestError(
                f"Resource #{i} in {path}: 'names' must be a non-empty list used instead of 'name'"
            )
        template = {k: v for k, v in entry.items() if k != "names"}
        for name in names:
            expanded.append({**template, "name": str(name)})

    return expanded


def _overlay(
    base: list[dict[str, Any]],
    local: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Local declarations replace same-identity base ones in place; the rest append."""

    def _key(entry: dict[str, Any]) -> str:
        return make_resource_id(str(entry.get("kind", "")), str(entry.get("name", "")))

    base_keys = {_key(e) for e in base}
    replacements: dict[str, dict[str, Any]] = {}
    extras: list[dict[str, Any]] = []
    for entry in local:
        key = _key(entry)
        if key in base_keys and key not in replacements:
            replacements[key] = entry
        else:
            extras.append(entry)
    return [replacements.get(_key(e), e) for e in base] + extras


def manifest_root(manifest_path: Path) -> Path:
    """Get the directory a manifest lives in."""
    return manifest_path.parent.resolve()


def resolve_manifest(path: Path | None = None) -> tuple[Path, Manifest]:
    """Locate (when ``path`` is None) and load a manifest.

    Raises:
        ManifestError: If no manifest is found or it fails to load.
    """
    if path is None:
        path = find_manifest_file()
    if path is None:
        raise ManifestError(f"No {MANIFEST_FILE} found here or in any parent directory.")
    return path, load_manifest(path)
