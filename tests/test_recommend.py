from condainspect.graph import AdvancedDependencyGraph, create_advanced_dependency_graph
from condainspect.models import Package
from condainspect.recommend import (
    find_unused_dependencies,
    generate_recommendations,
    is_deprecated,
)


def test_is_deprecated():
    assert is_deprecated("deprecated_pkg1") is True
    assert is_deprecated("deprecated_pkg2") is True
    assert is_deprecated("numpy") is False


def test_find_unused_dependencies():
    packages = [Package("a"), Package("b"), Package("c")]
    graph = create_advanced_dependency_graph(packages, {"a": ["b"]})
    assert find_unused_dependencies(graph) == ["a", "c"]


def test_find_unused_on_empty_graph():
    assert find_unused_dependencies(AdvancedDependencyGraph()) == []


def test_generate_recommendations_full():
    packages = [
        Package("a", version="1.0", is_outdated=True, latest_version="2.0"),
        Package("deprecated_pkg1"),
    ]
    graph = create_advanced_dependency_graph(packages, {})
    recs = generate_recommendations(packages, graph)
    assert [r.description for r in recs] == [
        "Package a is outdated",
        "Potential security vulnerabilities in a",
        "Package deprecated_pkg1 is deprecated",
        "Unused dependencies detected",
    ]
    assert recs[0].details == "Current version: 1.0, Latest version: 2.0"
    assert recs[0].value == "1.0"
    assert recs[1].value == "2.0"
    assert recs[2].details == "Consider finding an alternative package"
    assert recs[3].details == "Consider removing: a, deprecated_pkg1"
    assert recs[3].value == "2.0"


def test_outdated_without_latest_has_unknown_and_no_security_note():
    packages = [Package("a", is_outdated=True), Package("b")]
    graph = create_advanced_dependency_graph(packages, {"a": ["b"]})
    recs = generate_recommendations(packages, graph)
    assert recs[0].details == "Current version: unknown, Latest version: unknown"
    assert not any("security" in r.description for r in recs)
    assert recs[-1].details == "Consider removing: a"
    assert recs[-1].value == "1.0"


def test_no_recommendations_when_everything_is_used():
    packages = [Package("a"), Package("b")]
    graph = create_advanced_dependency_graph(packages, {"a": ["b"], "b": ["a"]})
    assert generate_recommendations(packages, graph) == []