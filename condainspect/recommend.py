"""Structured recommendations drawn from packages and their dependency graph."""

from __future__ import annotations

from collections.abc import Iterable

from condainspect.graph import AdvancedDependencyGraph
from condainspect.models import Package, Recommendation

DEPRECATED_PACKAGES = frozenset({"deprecated_pkg1", "deprecated_pkg2"})


def is_deprecated(package_name: str) -> bool:
    """Tell whether a package is on the list of known deprecated packages."""
    return package_name in DEPRECATED_PACKAGES


def find_unused_dependencies(graph: AdvancedDependencyGraph) -> list[str]:
    """Names of nodes that no other node depends on, in node order."""
    depended_on = {edge.target for edge in graph.edges}
    return [
        name for index, name in enumerate(graph.nodes) if index not in depended_on
    ]


def generate_recommendations(
    packages: Iterable[Package], dependency_graph: AdvancedDependencyGraph
) -> list[Recommendation]:
    """Recommendations about outdated, deprecated and unused packages."""
    recommendations: list[Recommendation] = []
    for package in packages:
        if package.is_outdated:
            current = package.version if package.version is not None else "unknown"
            latest = (
                package.latest_version if package.latest_version is not None else "unknown"
            )
            recommendations.append(
                Recommendation(
                    description=f"Package {package.name} is outdated",
                    details=f"Current version: {current}, Latest version: {latest}",
                    value="1.0",
                )
            )
        if package.is_outdated and package.latest_version is not None:
            recommendations.append(
                Recommendation(
                    description=f"Potential security vulnerabilities in {package.name}",
                    details=(
                        "Significantly outdated packages may contain security "
                        "vulnerabilities"
                    ),
                    value="2.0",
                )
            )
        if is_deprecated(package.name):
            recommendations.append(
                Recommendation(
                    description=f"Package {package.name} is deprecated",
                    details="Consider finding an alternative package",
                    value="1.0",
                )
            )

    unused = find_unused_dependencies(dependency_graph)
    if unused:
        recommendations.append(
            Recommendation(
                description="Unused dependencies detected",
                details=f"Consider removing: {', '.join(unused)}",
                value=f"{len(unused)}.0",
            )
        )
    return recommendations