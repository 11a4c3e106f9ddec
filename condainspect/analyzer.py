"""Analysing an environment file: pinned and outdated packages, sizes and recommendations."""

from __future__ import annotations

import glob
import logging
import os
import stat
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import semver

from condainspect import analysis, conda_api
from condainspect.conda_api import CondaApiError
from condainspect.models import (
    ComplexDependency,
    CondaEnvironment,
    EnvironmentAnalysis,
    Package,
    Recommendation,
)
from condainspect.parsers import extract_packages, parse_environment_file

log = logging.getLogger(__name__)

DEFAULT_PACKAGE_SIZE = 5_000_000


def is_pinned_package(pkg_name: str, env: CondaEnvironment) -> bool:
    """Tell whether the first entry naming a package gives it a version."""
    for dependency in env.dependencies:
        specs: Iterable[str]
        if isinstance(dependency, ComplexDependency):
            specs = dependency.pip or ()
        else:
            specs = (dependency,)
        for spec in specs:
            parts = spec.split("=")
            if parts[0].strip() == pkg_name:
                return len(parts) > 1
    return False


def _parse_semver(text: str) -> semver.Version | None:
    try:
        return semver.Version.parse(text)
    except (ValueError, TypeError):
        return None


def check_outdated(pkg_name: str, current_version: str | None) -> tuple[bool, str | None]:
    """Whether a package is outdated, and its latest version when that is known."""
    if current_version is None:
        return False, None
    try:
        latest = conda_api.get_latest_version(pkg_name)
    except CondaApiError:
        return False, None
    current = _parse_semver(current_version)
    newest = _parse_semver(latest)
    if current is not None and newest is not None:
        return newest > current, latest
    return latest != current_version, latest


def _tree_size(path: Path) -> int:
    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                info = os.lstat(os.path.join(root, name))
            except OSError:
                continue
            if stat.S_ISREG(info.st_mode):
                total += info.st_size
    return total


def get_packages_sizes(packages: list[Package]) -> int | None:
    """Set each package's size from the active environment or the APIs; return the total."""
    total = 0
    env_path = os.environ.get("CONDA_PREFIX")
    if env_path is not None:
        for package in packages:
            for candidate in sorted(glob.glob(f"{env_path}/pkgs/{package.name}*")):
                path = Path(candidate)
                if path.is_dir() and package.name in path.name:
                    size = _tree_size(path)
                    package.size = size
                    total += size
                    break
            if package.size is None:
                try:
                    size = conda_api.get_package_size(package.name)
                except CondaApiError:
                    continue
                package.size = size
                total += size
    else:
        for package in packages:
            try:
                size = conda_api.get_package_size(package.name)
            except CondaApiError:
                size = DEFAULT_PACKAGE_SIZE
            package.size = size
            total += size
    return total if total > 0 else None


def generate_simple_recommendations(
    packages: list[Package], pinned_count: int, outdated_count: int
) -> list[Recommendation]:
    """Recommendations about outdated and pinned packages."""
    recommendations: list[Recommendation] = []
    if outdated_count > 0:
        percent = int(outdated_count / len(packages) * 100.0)
        recommendations.append(
            Recommendation(
                description=(
                    f"Found {outdated_count} outdated packages ({percent}%). Consider "
                    "updating them for security and performance improvements."
                ),
                value=str(outdated_count),
            )
        )
        for package in packages:
            if (
                package.is_outdated
                and package.version is not None
                and package.latest_version is not None
            ):
                recommendations.append(
                    Recommendation(
                        description=(
                            f"Update {package.name} from {package.version} "
                            f"to {package.latest_version}"
                        ),
                        value="1.0",
                    )
                )
    if pinned_count > 0:
        percent = int(pinned_count / len(packages) * 100.0)
        recommendations.append(
            Recommendation(
                description=(
                    f"{percent}% of packages have pinned versions. This ensures "
                    "reproducibility but may prevent updates."
                ),
                value=str(pinned_count),
            )
        )
    return recommendations


def _summarise(env: CondaEnvironment, packages: list[Package]) -> EnvironmentAnalysis:
    total_size = get_packages_sizes(packages)
    pinned_count = sum(1 for package in packages if package.is_pinned)
    outdated_count = sum(1 for package in packages if package.is_outdated)
    return EnvironmentAnalysis(
        name=env.name,
        packages=packages,
        total_size=total_size,
        pinned_count=pinned_count,
        outdated_count=outdated_count,
        recommendations=generate_simple_recommendations(
            packages, pinned_count, outdated_count
        ),
    )


def analyze_environment(
    file_path: str | os.PathLike, should_check_outdated: bool, flag_pinned: bool
) -> EnvironmentAnalysis:
    """Analyse an environment file."""
    env = parse_environment_file(file_path)
    packages = extract_packages(env)
    if flag_pinned:
        for package in packages:
            package.is_pinned = is_pinned_package(package.name, env)
    if should_check_outdated:
        for package in packages:
            package.is_outdated, package.latest_version = check_outdated(
                package.name, package.version
            )
    return _summarise(env, packages)


def analyze_environment_parallel(
    file_path: str | os.PathLike, should_check_outdated: bool, flag_pinned: bool
) -> EnvironmentAnalysis:
    """Analyse an environment file, checking packages concurrently."""
    env = parse_environment_file(file_path)
    packages = extract_packages(env)
    with ThreadPoolExecutor() as pool:
        if flag_pinned:
            pinned = pool.map(lambda p: is_pinned_package(p.name, env), packages)
            for package, is_pinned in zip(packages, pinned):
                package.is_pinned = is_pinned
        if should_check_outdated:
            results = pool.map(lambda p: check_outdated(p.name, p.version), packages)
            for package, (outdated, latest) in zip(packages, results):
                package.is_outdated, package.latest_version = outdated, latest
    return _summarise(env, packages)


def generate_dependency_graph(
    file_path: str | os.PathLike, output_path: str | os.PathLike
) -> None:
    """Build the dependency graph of an environment file and write it as DOT."""
    env = parse_environment_file(file_path)
    packages = extract_packages(env)
    graph = analysis.create_dependency_graph(packages)
    analysis.export_dependency_graph(graph, output_path)