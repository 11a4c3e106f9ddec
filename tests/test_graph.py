import pytest

from condainspect.graph import (
    DIRECT_LABEL,
    TRANSITIVE_LABEL,
    CondaDependencyProvider,
    Conflict,
    ResolutionError,
    create_advanced_dependency_graph,
    detect_conflicts,
    export_advanced_dependency_graph,
    find_transitive_dependencies,
    find_version_requirement,
    parse_dependency,
    versions_compatible,
)
from condainspect.models import Package


def _pkgs(*names, version=None):
    return [Package(name=name, version=version) for name in names]


def _named_edges(graph):
    return {
        (graph.nodes[e.source], graph.nodes[e.target], e.label) for e in graph.edges
    }


def test_create_graph_has_direct_and_transitive_edges():
    graph = create_advanced_dependency_graph(
        _pkgs("a", "b", "c"), {"a": ["b"], "b": ["c"]}
    )
    assert graph.nodes == ["a", "b", "c"]
    assert graph.direct_deps == {"a", "b", "c"}
    assert _named_edges(graph) == {
        ("a", "b", DIRECT_LABEL),
        ("b", "c", DIRECT_LABEL),
        ("a", "c", TRANSITIVE_LABEL),
    }
    assert graph.conflicts == []


def test_transitive_edge_not_added_when_direct_exists():
    graph = create_advanced_dependency_graph(
        _pkgs("a", "b", "c"), {"a": ["b", "c"], "b": ["c"]}
    )
    labels = [e.label for e in graph.edges]
    assert TRANSITIVE_LABEL not in labels
    assert len(graph.edges) == 3


def test_unknown_dependencies_ignored():
    graph = create_advanced_dependency_graph(_pkgs("a"), {"a": ["ghost"], "x": ["a"]})
    assert graph.edges == []


def test_find_transitive_dependencies():
    result = find_transitive_dependencies(
        _pkgs("a", "b", "c"), {"a": ["b"], "b": ["c"]}
    )
    assert result == {"a": {"c"}, "b": set(), "c": set()}


def test_find_transitive_handles_cycles():
    result = find_transitive_dependencies(_pkgs("a", "b"), {"a": ["b"], "b": ["a"]})
    assert result == {"a": set(), "b": set()}


def test_find_version_requirement_variants():
    dep_map = {
        "a": ["numpy>=1.0"],
        "b": ["numpy"],
        "c": ["python-numpy>=1.0"],
        "d": ["scipy"],
    }
    assert find_version_requirement(dep_map, "a", "numpy") == ">=1.0"
    assert find_version_requirement(dep_map, "b", "numpy") == "*"
    assert find_version_requirement(dep_map, "c", "numpy") == ">=1.0"
    assert find_version_requirement(dep_map, "d", "numpy") is None
    assert find_version_requirement(dep_map, "missing", "numpy") is None


@pytest.mark.parametrize(
    "ver1, ver2, expected",
    [
        ("*", ">=1.0", True),
        (">=2.0", "<1.0", False),
        ("^1.2", "~1.2.3", True),
        ("^1.0", "^2.0", False),
        ("=1.1.0", "1.1", True),
        ("==1.0", "==1.0", True),
        ("==1.0", "==2.0", False),
        ("any", "==2.0", True),
        (">=1.0, <2.0", "1.2.3", True),
    ],
)
def test_versions_compatible(ver1, ver2, expected):
    assert versions_compatible(ver1, ver2) is expected


def test_versions_compatible_is_symmetric():
    pairs = [("^1.0", ">=2.0"), ("~2.3", "2"), ("<=1.1", ">1.0")]
    for a, b in pairs:
        assert versions_compatible(a, b) == versions_compatible(b, a)


def test_detect_conflicts_finds_incompatible_requirements():
    dep_map = {"a": ["numpy>=2.0", "numpy"], "b": ["numpy<1.0", "numpy"]}
    conflicts = detect_conflicts(_pkgs("a", "b"), dep_map)
    assert conflicts == [Conflict("a", "b", "numpy (>=2.0≠<1.0)")]


def test_detect_conflicts_none_when_compatible():
    dep_map = {"a": ["numpy"], "b": ["numpy"]}
    assert detect_conflicts(_pkgs("a", "b"), dep_map) == []


def test_parse_dependency():
    assert parse_dependency("numpy>=1.19.0") == ("numpy", ">=1.19.0")
    assert parse_dependency("python") == ("python", "")
    assert parse_dependency("python 3.8") is None


def test_solver_picks_latest_and_follows_dependencies():
    packages = [
        Package("a", version="1.0.0"),
        Package("a", version="2.0.0"),
        Package("b", version="1.0"),
    ]
    provider = CondaDependencyProvider(packages, {"a": ["b>=1.0"], "b": []})
    assert provider.solve(["a"]) == {"a": "2.0.0", "b": "1.0"}
    assert provider.solve(["b", "b"]) == {"b": "1.0"}


def test_solver_missing_dependency_raises():
    provider = CondaDependencyProvider([Package("a", version="1.0.0")], {"a": ["ghost"]})
    with pytest.raises(ResolutionError, match="Package ghost not found"):
        provider.solve(["a"])


def test_solver_package_without_version_is_unknown():
    provider = CondaDependencyProvider([Package("x")], {})
    with pytest.raises(ResolutionError, match="Failed to resolve dependencies"):
        provider.solve(["x"])


def test_to_dot_and_export(tmp_path):
    graph = create_advanced_dependency_graph(_pkgs("a", "b"), {"a": ["b"]})
    expected = (
        "digraph {\n"
        '    0 [ label = "\\"a\\"" ]\n'
        '    1 [ label = "\\"b\\"" ]\n'
        "    0 -> 1 [ ]\n"
        "}\n"
    )
    assert graph.to_dot() == expected
    out = tmp_path / "graph.dot"
    export_advanced_dependency_graph(graph, out)
    assert out.read_text(encoding="utf-8") == expected


def test_export_to_missing_directory_raises(tmp_path):
    graph = create_advanced_dependency_graph(_pkgs("a"), {})
    with pytest.raises(OSError, match="Failed to create advanced graph file"):
        export_advanced_dependency_graph(graph, tmp_path / "nope" / "g.dot")