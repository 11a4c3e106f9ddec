"""Dependency discovery, simple dependency graphs and environment recommendations."""

from __future__ import annotations

import json
import logging
import os
import subprocess
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import requests

from condainspect.conda_api import ANACONDA_API_URL, DEFAULT_CHANNEL, PYPI_API_URL, CondaApiError
from condainspect.models import Package

log = logging.getLogger(__name__)

API_TIMEOUT = 10
PYPI_TIMEOUT = 15
LARGE_ENVIRONMENT_BYTES = 2_000_000_000

_COMMON_DEPENDENCIES: dict[str, tuple[str, ...]] = {
    "pandas": ("numpy", "python", "python-dateutil", "pytz"),
    "matplotlib": ("numpy", "python", "pillow", "cycler"),
    "scikit-learn": ("numpy", "scipy", "python", "joblib"),
    "tensorflow": ("numpy", "python", "protobuf", "absl-py"),
    "pytorch": ("python", "numpy"),
    "jupyterlab": ("python", "jupyter-core", "ipython"),
}

_DEV_PACKAGES = frozenset(
    {
        "pytest",
        "black",
        "flake8",
        "mypy",
        "isort",
        "pylint",
        "jupyter",
        "ipython",
        "notebook",
        "ipykernel",
        "jupyterlab",
    }
)


@dataclass
class DependencyGraph:
    """Packages as nodes and dependency relations as directed edges."""

    nodes: list[str] = field(default_factory=list)
    edges: list[tuple[str, str]] = field(default_factory=list)


def _get(obj: Any, key: str) -> Any:
    return obj.get(key) if isinstance(obj, dict) else None


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def extract_package_name(dep_str: str) -> str | None:
    """The package name of a conda dependency spec such as ``python >=3.8``."""
    tokens = dep_str.split()
    return tokens[0] if tokens else None


def extract_pypi_package_name(dep_str: str) -> str | None:
    """The package name of a PyPI requirement such as ``numpy (>=1.14.5) ; extra == 'test'``."""
    tokens = dep_str.split(";", 1)[0].split()
    if not tokens:
        return None
    name = tokens[0]
    if "(" in name:
        return name[: name.index("(")].strip()
    return name.strip()


def _names_from(entries: Any, extract: Callable[[str], str | None]) -> list[str]:
    if not isinstance(entries, list):
        return []
    return [
        name
        for entry in entries
        if isinstance(entry, str) and (name := extract(entry)) is not None
    ]


def _conda_json(*args: str) -> Any:
    try:
        completed = subprocess.run(["conda", *args], capture_output=True, check=False)
    except OSError as exc:
        raise CondaApiError(f"Failed to execute conda {' '.join(args)}: {exc}") from exc
    if completed.returncode != 0:
        raise CondaApiError(f"conda {' '.join(args)} command failed")
    try:
        return json.loads(completed.stdout)
    except ValueError as exc:
        raise CondaApiError(f"Failed to parse JSON output from conda {args[0]}") from exc


def _fetch_json(url: str, timeout: int) -> Any:
    try:
        response = requests.get(url, timeout=timeout)
    except requests.RequestException as exc:
        log.warning("Network error querying %s: %s", url, exc)
        raise CondaApiError(f"Network error: {exc}") from exc
    if not 200 <= response.status_code < 300:
        raise CondaApiError(f"API request failed with status: {response.status_code}")
    try:
        return response.json()
    except ValueError as exc:
        log.warning("Failed to parse API response: %s", exc)
        raise CondaApiError(f"Failed to parse response: {exc}") from exc


def _depends_via_conda_info(package_name: str) -> list[str]:
    log.info("Getting dependencies for %s via conda info", package_name)
    data = _conda_json("info", package_name, "--json")
    depends: list[str] = []
    packages = _get(data, "packages")
    if isinstance(packages, dict):
        for info in packages.values():
            depends.extend(_names_from(_get(info, "depends"), extract_package_name))
    return depends


def _depends_via_anaconda_api(package_name: str, channel: str | None) -> list[str]:
    log.info("Getting dependencies for %s via API", package_name)
    data = _fetch_json(
        f"{ANACONDA_API_URL}/{channel or DEFAULT_CHANNEL}/{package_name}", API_TIMEOUT
    )
    depends: list[str] = []
    files = _get(data, "files")
    if isinstance(files, list):
        latest = _str_or_none(_get(data, "latest_version"))
        match = next(
            (entry for entry in files if _str_or_none(_get(entry, "version")) == latest),
            None,
        )
        if match is not None:
            depends = _names_from(_get(match, "dependencies"), extract_package_name)
    log.debug("Retrieved %d dependencies for %s via API", len(depends), package_name)
    return depends


def _depends_via_pypi(package_name: str) -> list[str]:
    log.info("Getting dependencies for %s via PyPI API", package_name)
    data = _fetch_json(f"{PYPI_API_URL}/{package_name}/json", PYPI_TIMEOUT)
    return _names_from(_get(_get(data, "info"), "requires_dist"), extract_pypi_package_name)


def _depends_via_conda_meta(package_name: str) -> list[str]:
    log.info("Getting dependencies for %s via conda-meta files", package_name)
    data = _conda_json("info", "--json")
    prefix = _str_or_none(_get(data, "active_prefix"))
    if prefix is None:
        raise CondaApiError("Failed to get active conda environment")
    meta_dir = Path(prefix) / "conda-meta"
    try:
        with os.scandir(meta_dir) as entries:
            names = sorted(entry.name for entry in entries)
    except OSError as exc:
        raise CondaApiError(f"Failed to read conda-meta directory at {meta_dir}") from exc

    for filename in names:
        if filename.startswith(f"{package_name}-") and filename.endswith(".json"):
            path = meta_dir / filename
            try:
                meta = json.loads(path.read_text(encoding="utf-8"))
            except OSError as exc:
                raise CondaApiError(f"Failed to read meta file {path}") from exc
            except ValueError as exc:
                raise CondaApiError(f"Failed to parse meta file {path}") from exc
            return _names_from(_get(meta, "depends"), extract_package_name)
    raise CondaApiError(f"Could not find conda-meta file for {package_name}")


def get_common_package_dependencies(package_name: str) -> list[str] | None:
    """Known dependencies of a few well-known packages, or None."""
    deps = _COMMON_DEPENDENCIES.get(package_name)
    return list(deps) if deps is not None else None


def _lookups(package: Package) -> Iterable[tuple[str, Callable[[], list[str]]]]:
    name, channel = package.name, package.channel
    yield "conda info", lambda: _depends_via_conda_info(name)
    yield "Anaconda API", lambda: _depends_via_anaconda_api(name, channel)
    if channel == "pip":
        yield "PyPI API", lambda: _depends_via_pypi(name)
    yield "conda-meta", lambda: _depends_via_conda_meta(name)


def _dependencies_of(package: Package) -> list[str]:
    for label, lookup in _lookups(package):
        try:
            deps = lookup()
        except CondaApiError as exc:
            log.debug("%s failed for %s: %s", label, package.name, exc)
            continue
        log.debug("Found dependencies for %s via %s: %s", package.name, label, deps)
        return deps
    common = get_common_package_dependencies(package.name)
    if common is not None:
        log.debug("Using known dependencies for %s: %s", package.name, common)
        return common
    log.warning("Could not determine dependencies for %s", package.name)
    return []


def enhance_dependency_map(dependency_map: dict[str, list[str]]) -> None:
    """Fill in known dependencies for dependencies that have none recorded."""
    log.debug("Enhancing dependency map with transitive dependencies")
    for package in list(dependency_map):
        for dep in list(dependency_map.get(package, ())):
            if not dependency_map.get(dep):
                common = get_common_package_dependencies(dep)
                if common is not None:
                    dependency_map[dep] = common
    log.debug("Dependency map enhanced: %d total packages", len(dependency_map))


def get_real_package_dependencies(packages: Iterable[Package]) -> dict[str, list[str]]:
    """Map each package name to the names it depends on, trying several sources."""
    packages = list(packages)
    log.info("Getting real package dependencies for %d packages", len(packages))
    dependency_map = {package.name: _dependencies_of(package) for package in packages}
    enhance_dependency_map(dependency_map)
    return dependency_map


def create_dependency_graph(packages: Iterable[Package]) -> DependencyGraph:
    """Build a graph of the packages and the dependencies among them."""
    packages = list(packages)
    graph = DependencyGraph()
    for package in packages:
        if package.name not in graph.nodes:
            graph.nodes.append(package.name)

    dependency_map = get_real_package_dependencies(packages)
    known = set(graph.nodes)
    for package in packages:
        for dep in dependency_map.get(package.name, ()):
            if dep in known:
                log.debug("Adding dependency edge: %s -> %s", package.name, dep)
                graph.edges.append((package.name, dep))
    return graph


def export_dependency_graph(graph: DependencyGraph, output_path: str | os.PathLike) -> None:
    """Write the graph in Graphviz DOT format."""
    lines = [
        "digraph conda_dependencies {",
        "  node [shape=box, style=filled, fillcolor=lightblue];",
    ]
    lines.extend(f'  "{node}" [label="{node}"];' for node in graph.nodes)
    lines.extend(f'  "{src}" -> "{dst}";' for src, dst in graph.edges)
    lines.append("}")
    try:
        with open(output_path, "w", encoding="utf-8") as handle:
            handle.write("\n".join(lines) + "\n")
    except OSError as exc:
        raise OSError(f"Failed to create graph file: {exc}") from exc


def identify_redundant_packages(packages: Iterable[Package]) -> list[str]:
    """Packages no other package depends on, excluding common development tools."""
    packages = list(packages)
    dependency_map = get_real_package_dependencies(packages)
    depended_on = {dep for deps in dependency_map.values() for dep in deps}
    return [
        package.name
        for package in packages
        if package.name not in depended_on and package.name not in _DEV_PACKAGES
    ]


def generate_recommendations(packages: Iterable[Package], check_outdated: bool) -> list[str]:
    """Plain-text recommendations for improving an environment."""
    packages = list(packages)
    recommendations: list[str] = []

    outdated = [package for package in packages if package.is_outdated]
    if check_outdated and outdated:
        recommendations.append(
            f"Found {len(outdated)} outdated packages. Consider updating them for "
            "security and performance improvements."
        )
        for package in outdated[:3]:
            if package.latest_version is not None:
                version = package.version if package.version is not None else "unknown"
                recommendations.append(
                    f"Update {package.name} from {version} to {package.latest_version}"
                )

    pinned_count = sum(1 for package in packages if package.is_pinned)
    if pinned_count > 0:
        percentage = pinned_count / len(packages) * 100.0
        if percentage > 70.0:
            recommendations.append(
                f"{percentage:.1f}% of packages have pinned versions. This ensures "
                "reproducibility but may prevent updates."
            )
        elif percentage < 30.0:
            recommendations.append(
                f"Only {percentage:.1f}% of packages have pinned versions. Consider "
                "pinning more packages for better reproducibility."
            )

    total_size = sum(package.size for package in packages if package.size is not None)
    if total_size > LARGE_ENVIRONMENT_BYTES:
        recommendations.append(
            "Environment is quite large. Consider creating a minimal environment "
            "with only required packages."
        )

    redundant = identify_redundant_packages(packages)
    if redundant:
        recommendations.append(
            f"Found {len(redundant)} potentially redundant packages that might be "
            "removed to streamline your environment."
        )
        recommendations.extend(
            f"Consider removing unused package: {name}" for name in redundant[:3]
        )

    return recommendations