"""
Tests for the dependency graph — structure checks, ordering, cycles.
"""

import pytest

from conftest import decl, manifest_of
from converge.core.engine.graph import check_structure, find_cycle, topological_order
from converge.core.errors import (
    CycleError,
    DanglingDependencyError,
    DuplicateResourceError,
    ManifestError,
)


class TestCheckStructure:
    def test_valid(self):
        check_structure(manifest_of(
            decl("package", "a"),
            decl("package", "b", depends_on=["package:a"]),
        ))

    def test_duplicates_reported_once_each(self):
        m = manifest_of(
            decl("package", "a"),
            decl("package", "a"),
            decl("package", "a"),
            decl("package", "b"),
            decl("package", "b"),
        )
        with pytest.raises(DuplicateResourceError) as exc:
            check_structure(m)
        assert exc.value.errors == ["Duplicate resource: package:a", "Duplicate resource: package:b"]

    def test_same_name_different_kind_is_fine(self):
        check_structure(manifest_of(decl("package", "docker"), decl("user-group", "docker")))

    def test_dangling(self):
        m = manifest_of(decl("package", "b", depends_on=["package:a"]))
        with pytest.raises(DanglingDependencyError, match="package:a"):
            check_structure(m)

    def test_errors_are_manifest_errors(self):
        m = manifest_of(decl("package", "b", depends_on=["package:a"]))
        with pytest.raises(ManifestError):
            check_structure(m)


class TestTopologicalOrder:
    def test_declaration_order_without_deps(self):
        m = manifest_of(decl("package", "c"), decl("package", "a"), decl("package", "b"))
        assert topological_order(m) == ["package:c", "package:a", "package:b"]

    def test_dependency_first(self):
        m = manifest_of(
            decl("package", "b", depends_on=["package:a"]),
            decl("package", "a"),
        )
        assert topological_order(m) == ["package:a", "package:b"]

    def test_tie_break_is_declaration_order(self):
        # x and y both become ready when root finishes; x was declared first
        m = manifest_of(
            decl("package", "x", depends_on=["package:root"]),
            decl("package", "z"),
            decl("package", "y", depends_on=["package:root"]),
            decl("package", "root"),
        )
        assert topological_order(m) == ["package:z", "package:root", "package:x", "package:y"]

    def test_every_resource_after_its_dependencies(self):
        m = manifest_of(
            decl("command", "app", depends_on=["package:lib", "symlink:/l"]),
            decl("symlink", "/l", depends_on=["package:lib"], target="/t"),
            decl("package", "lib", depends_on=["apt-repository:r"]),
            decl("apt-repository", "r", component="universe"),
        )
        order = topological_order(m)
        for d in m.resources:
            for dep in d.depends_on:
                assert order.index(dep) < order.index(d.id)

    def test_empty(self):
        assert topological_order(manifest_of()) == []


class TestCycles:
    def test_two_node_cycle_named(self):
        m = manifest_of(
            decl("package", "a", depends_on=["package:b"]),
            decl("package", "b", depends_on=["package:a"]),
        )
        with pytest.raises(CycleError) as exc:
            topological_order(m)
        assert exc.value.cycle == ["package:a", "package:b", "package:a"]
        assert "package:a -> package:b -> package:a" in str(exc.value)

    def test_self_dependency(self):
        m = manifest_of(decl("package", "a", depends_on=["package:a"]))
        with pytest.raises(CycleError) as exc:
            topological_order(m)
        assert exc.value.cycle == ["package:a", "package:a"]

    def test_cycle_excludes_nodes_merely_downstream(self):
        m = manifest_of(
            decl("package", "ok"),
            decl("package", "tail", depends_on=["package:b"]),
            decl("package", "a", depends_on=["package:c"]),
            decl("package", "b", depends_on=["package:a"]),
            decl("package", "c", depends_on=["package:b"]),
        )
        with pytest.raises(CycleError) as exc:
            topological_order(m)
        cycle = exc.value.cycle
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"package:a", "package:b", "package:c"}

    def test_cycle_error_is_manifest_error(self):
        assert issubclass(CycleError, ManifestError)

    def test_find_cycle_direct(self):
        deps = {"x": ["y"], "y": ["z"], "z": ["y"]}
        index = {"x": 0, "y": 1, "z": 2}
        assert find_cycle({"x", "y", "z"}, deps, index) == ["y", "z", "y"]
