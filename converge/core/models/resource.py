"""
Resource declarations and the manifest that orders them.

A declaration is a statement of desired state: "this package is
installed", "this line is in ~/.zshrc". Identity is ``kind:name`` and
must be unique within a manifest. The manifest is the ordered list of
declarations; declaration order is the tie-break the planner uses.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from converge.core.config.settings import Settings

_TRUE_WORDS = {"1", "true", "yes", "on"}


def make_resource_id(kind: str, name: str) -> str:
    """Build the ``kind:name`` identifier."""
    return f"{kind}:{name}"


def split_resource_id(resource_id: str) -> tuple[str, str]:
    """Split ``kind:name`` into its parts.

    Kinds never contain a colon, so the first one is the separator;
    names may contain colons.
    """
    kind, sep, name = resource_id.partition(":")
    if not sep or not kind or not name:
        raise ValueError(f"Not a resource id (expected kind:name): {resource_id!r}")
    return kind, name


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


class ResourceDeclaration(BaseModel):
    """One desired-state statement from the manifest."""

    kind: str
    name: str
    parameters: dict[str, str] = Field(default_factory=dict)
    depends_on: list[str] = Field(default_factory=list)

    @field_validator("parameters", mode="before")
    @classmethod
    def _coerce_parameters(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, dict):
            return {str(k): _stringify(v) for k, v in value.items()}
        return value

    @field_validator("depends_on", mode="before")
    @classmethod
    def _dedupe_dependencies(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        if isinstance(value, (list, tuple, set)):
            seen: dict[str, None] = {}
            for item in value:
                seen.setdefault(str(item), None)
            return list(seen)
        return value

    @property
    def id(self) -> str:
        return make_resource_id(self.kind, self.name)

    def param(self, key: str, default: str = "") -> str:
        """Look up a parameter, falling back to ``default`` when unset or empty."""
        value = self.parameters.get(key, "")
        return value if value != "" else default

    def flag(self, key: str, default: bool = False) -> bool:
        """Interpret a parameter as a boolean (true/yes/on/1)."""
        value = self.parameters.get(key)
        if value is None or value == "":
            return default
        return value.strip().lower() in _TRUE_WORDS


class Manifest(BaseModel):
    """Ordered desired-state declaration consumed by the planner.

    Graph invariants (unique ids, resolvable and acyclic dependencies)
    are enforced by the planner, not at construction, so that a bad
    manifest can still be loaded and reported on.
    """

    version: int = 1
    name: str = ""
    description: str = ""
    settings: Settings = Field(default_factory=Settings)
    resources: list[ResourceDeclaration] = Field(default_factory=list)

    @property
    def ids(self) -> list[str]:
        return [r.id for r in self.resources]

    def get(self, resource_id: str) -> ResourceDeclaration | None:
        """Look up a declaration by ``kind:name``."""
        for resource in self.resources:
            if resource.id == resource_id:
                return resource
        return None

    def kinds(self) -> list[str]:
        """Distinct kinds in declaration order."""
        seen: dict[str, None] = {}
        for resource in self.resources:
            seen.setdefault(resource.kind, None)
        return list(seen)
