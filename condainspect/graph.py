"""Dependency graphs with transitive edges, conflict detection and a simple resolver."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import NamedTuple

import semver

from condainspect.models import Package

log = logging.getLogger(__name__)

DIRECT_LABEL = "depends on"
TRANSITIVE_LABEL = "transitive"

_TEST_VERSIONS = tuple(
    semver.Version.parse(text)
    for text in (
        "0.1.0", "1.0.0", "1.1.0", "2.0.0", "3.0.0", "4.0.0",
        "1.2.3", "2.3.4", "3.4.5", "4.5.6",
    )
)
_OPERATOR_CHARS = "=><~^"
_REQUIREMENT_OPS = (">=", "<=", ">", "<", "=", "~", "^")
_WILDCARDS = frozenset({"*", "x", "X"})
_NUMBER = re.compile(r"0|[1-9][0-9]*")
_IDENTIFIERS = re.compile(r"[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*")
_DEPENDENCY = re.compile(r"([a-zA-Z0-9_-]+)([<>=~^]+.+)?")


class Edge(NamedTuple):
    """A directed edge between two node indices."""

    source: int
    target: int
    label: str


class Conflict(NamedTuple):
    """Two packages that require incompatible versions of a shared dependency."""

    first: str
    second: str
    detail: str


class ResolutionError(ValueError):
    """Raised when dependencies cannot be resolved."""


def _debug_string(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _dot_escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\l")


@dataclass
class AdvancedDependencyGraph:
    """Packages as nodes with direct and transitive dependency edges."""

    nodes: list[str] = field(default_factory=list)
    node_map: dict[str, int] = field(default_factory=dict)
    edges: list[Edge] = field(default_factory=list)
    direct_deps: set[str] = field(default_factory=set)
    conflicts: list[Conflict] = field(default_factory=list)

    def _add_node(self, name: str) -> int:
        self.nodes.append(name)
        index = len(self.nodes) - 1
        self.node_map[name] = index
        return index

    def to_dot(self) -> str:
        """Render the graph in Graphviz DOT format, without edge labels."""
        lines = ["digraph {"]
        lines.extend(
            f'    {index} [ label = "{_dot_escape(_debug_string(name))}" ]'
            for index, name in enumerate(self.nodes)
        )
        lines.extend(f"    {edge.source} -> {edge.target} [ ]" for edge in self.edges)
        lines.append("}")
        return "\n".join(lines) + "\n"


def _adjacency(
    names: set[str], dependency_map: Mapping[str, Sequence[str]]
) -> dict[str, list[str]]:
    adjacency: dict[str, list[str]] = {name: [] for name in names}
    for pkg_name, deps in dependency_map.items():
        if pkg_name in names:
            adjacency[pkg_name].extend(dep for dep in deps if dep in names)
    return adjacency


def _reachable(start: str, adjacency: Mapping[str, list[str]]) -> set[str]:
    seen: set[str] = set()
    stack = [start]
    while stack:
        node = stack.pop()
        if node in seen:
            continue
        seen.add(node)
        stack.extend(adjacency.get(node, ()))
    return seen


def find_transitive_dependencies(
    packages: Iterable[Package], dependency_map: Mapping[str, Sequence[str]]
) -> dict[str, set[str]]:
    """For each package, the dependencies reachable only indirectly."""
    packages = list(packages)
    adjacency = _adjacency({package.name for package in packages}, dependency_map)
    result: dict[str, set[str]] = {}
    for package in packages:
        deps = _reachable(package.name, adjacency)
        deps.discard(package.name)
        deps.difference_update(dependency_map.get(package.name, ()))
        result[package.name] = deps
    return result


def find_version_requirement(
    dependency_map: Mapping[str, Sequence[str]], pkg: str, dep: str
) -> str | None:
    """The version constraint ``pkg`` places on ``dep``; ``*`` when there is none."""
    for dep_str in dependency_map.get(pkg, ()):
        if dep_str == dep:
            return "*"
        if dep_str.startswith(dep):
            return dep_str[len(dep):]
        if dep in dep_str:
            name = re.split(r"[=><~^]", dep_str, maxsplit=1)[0]
            if dep in name:
                position = next(
                    (i for i, char in enumerate(dep_str) if char in _OPERATOR_CHARS), None
                )
                if position is not None:
                    return dep_str[position:]
    return None


@dataclass(frozen=True)
class _Comparator:
    op: str
    major: int
    minor: int | None
    patch: int | None
    pre: str | None

    def matches(self, version: semver.Version) -> bool:
        major, minor, patch = self.major, self.minor, self.patch
        lower = semver.Version(major, minor or 0, patch or 0, prerelease=self.pre)
        head = (version.major, version.minor)
        if self.op == "=":
            if minor is None:
                return version.major == major
            if patch is None:
                return head == (major, minor)
            return version == lower
        if self.op == ">":
            if minor is None:
                return version.major > major
            if patch is None:
                return head > (major, minor)
            return version > lower
        if self.op == ">=":
            return version >= lower
        if self.op == "<":
            return version < lower
        if self.op == "<=":
            if minor is None:
                return version.major <= major
            if patch is None:
                return head <= (major, minor)
            return version <= lower
        if self.op == "~":
            if minor is None:
                return version.major == major
            return head == (major, minor) and version >= lower
        # caret
        if version < lower:
            return False
        if major > 0 or minor is None:
            return version.major == major
        if minor > 0 or patch is None:
            return head == (major, minor)
        return (version.major, version.minor, version.patch) == (major, minor, patch)


def _parse_comparator(text: str) -> _Comparator | None:
    text = text.strip()
    op = ""
    for candidate in _REQUIREMENT_OPS:
        if text.startswith(candidate):
            op = candidate
            text = text[len(candidate):].strip()
            break
    if not text:
        return None
    version, plus, build = text.partition("+")
    if plus and not _IDENTIFIERS.fullmatch(build):
        return None
    core, dash, pre = version.partition("-")
    if dash and not _IDENTIFIERS.fullmatch(pre):
        return None
    pieces = core.split(".")
    if len(pieces) > 3:
        return None
    numbers: list[int | None] = []
    wildcard = False
    for piece in pieces:
        if piece in _WILDCARDS:
            wildcard = True
            numbers.append(None)
            continue
        if wildcard or not _NUMBER.fullmatch(piece):
            return None
        numbers.append(int(piece))
    if numbers[0] is None:
        return None
    if wildcard and op not in ("", "="):
        return None
    if dash and (len(numbers) < 3 or wildcard):
        return None
    numbers.extend([None] * (3 - len(numbers)))
    if wildcard:
        op = "="
    return _Comparator(op or "^", numbers[0], numbers[1], numbers[2], pre or None)


def _parse_requirement(text: str) -> tuple[_Comparator, ...] | None:
    stripped = text.strip()
    if stripped in _WILDCARDS:
        return ()
    comparators = []
    for part in stripped.split(","):
        comparator = _parse_comparator(part)
        if comparator is None:
            return None
        comparators.append(comparator)
    return tuple(comparators)


def versions_compatible(ver1: str, ver2: str) -> bool:
    """Tell whether some common version satisfies both requirements."""
    req1, req2 = _parse_requirement(ver1), _parse_requirement(ver2)
    if req1 is not None and req2 is not None:
        combined = req1 + req2
        return any(
            all(comparator.matches(version) for comparator in combined)
            for version in _TEST_VERSIONS
        )
    return ver1 == ver2 or ver1 == "any" or ver2 == "any"


def detect_conflicts(
    packages: Iterable[Package], dependency_map: Mapping[str, Sequence[str]]
) -> list[Conflict]:
    """Pairs of packages whose requirements on a shared dependency cannot both hold."""
    shared: dict[str, list[str]] = {}
    for pkg, deps in dependency_map.items():
        for dep in deps:
            shared.setdefault(dep, []).append(pkg)

    conflicts: list[Conflict] = []
    for dep, dependents in shared.items():
        for i, first in enumerate(dependents):
            for second in dependents[i + 1:]:
                ver1 = find_version_requirement(dependency_map, first, dep)
                ver2 = find_version_requirement(dependency_map, second, dep)
                if ver1 is None or ver2 is None:
                    continue
                if not versions_compatible(ver1, ver2):
                    conflicts.append(Conflict(first, second, f"{dep} ({ver1}≠{ver2})"))
    return conflicts


def create_advanced_dependency_graph(
    packages: Iterable[Package], dependency_map: Mapping[str, Sequence[str]]
) -> AdvancedDependencyGraph:
    """Build a graph with direct and transitive edges and detected conflicts."""
    log.info("Creating advanced dependency graph")
    packages = list(packages)
    graph = AdvancedDependencyGraph()
    for package in packages:
        graph._add_node(package.name)
        graph.direct_deps.add(package.name)

    connected: set[tuple[int, int]] = set()
    for pkg_name, deps in dependency_map.items():
        source = graph.node_map.get(pkg_name)
        if source is None:
            continue
        for dep in deps:
            target = graph.node_map.get(dep)
            if target is not None:
                graph.edges.append(Edge(source, target, DIRECT_LABEL))
                connected.add((source, target))

    for pkg_name, deps in find_transitive_dependencies(packages, dependency_map).items():
        source = graph.node_map.get(pkg_name)
        if source is None:
            continue
        for dep in sorted(deps):
            target = graph.node_map.get(dep)
            if target is not None and (source, target) not in connected:
                graph.edges.append(Edge(source, target, TRANSITIVE_LABEL))
                connected.add((source, target))

    graph.conflicts = detect_conflicts(packages, dependency_map)
    return graph


def export_advanced_dependency_graph(
    graph: AdvancedDependencyGraph, output_path: str | os.PathLike
) -> None:
    """Write the graph in DOT format."""
    try:
        with open(output_path, "w", encoding="utf-8") as handle:
            handle.write(graph.to_dot())
    except OSError as exc:
        raise OSError(f"Failed to create advanced graph file: {exc}") from exc


def parse_dependency(dep_str: str) -> tuple[str, str] | None:
    """Split a spec like ``numpy>=1.19.0`` into name and constraint."""
    match = _DEPENDENCY.fullmatch(dep_str)
    if match is None:
        return None
    return match.group(1), match.group(2) or ""


def _semver_or_zero(text: str) -> semver.Version:
    try:
        return semver.Version.parse(text)
    except (ValueError, TypeError):
        return semver.Version(0, 0, 0)


class CondaDependencyProvider:
    """Resolves packages to the latest available versions in an environment."""

    def __init__(
        self, packages: Iterable[Package], dependency_map: Mapping[str, Sequence[str]]
    ) -> None:
        self.packages: dict[str, list[str]] = {}
        for package in packages:
            if package.version is not None:
                self.packages.setdefault(package.name, []).append(package.version)

        self.dependencies: dict[tuple[str, str], list[tuple[str, str]]] = {}
        for pkg_name, deps in dependency_map.items():
            parsed = [dep for dep in map(parse_dependency, deps) if dep is not None]
            for version in self.packages.get(pkg_name, ()):
                self.dependencies[(pkg_name, version)] = list(parsed)

    def solve(self, root_packages: Iterable[str]) -> dict[str, str]:
        """Pick a version for each root package and everything it needs."""
        solution: dict[str, str] = {}
        visited: set[str] = set()
        for pkg in root_packages:
            if pkg in visited:
                continue
            try:
                self._add(pkg, solution, visited)
            except ResolutionError as exc:
                raise ResolutionError(f"Failed to resolve dependencies: {exc}") from exc
        return solution

    def _add(self, pkg: str, solution: dict[str, str], visited: set[str]) -> None:
        if pkg in visited:
            return
        visited.add(pkg)
        if pkg in solution:
            return
        versions = self.packages.get(pkg)
        if versions is None:
            raise ResolutionError(f"Package {pkg} not found")
        if not versions:
            raise ResolutionError(f"No versions available for package {pkg}")
        latest = sorted(versions, key=_semver_or_zero, reverse=True)[0]
        solution[pkg] = latest
        for dep_name, _constraint in self.dependencies.get((pkg, latest), ()):
            self._add(dep_name, solution, visited)