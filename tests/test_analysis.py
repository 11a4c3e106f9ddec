import json
import subprocess

import pytest
import requests

from condainspect.analysis import (
    DependencyGraph,
    create_dependency_graph,
    enhance_dependency_map,
    export_dependency_graph,
    extract_package_name,
    extract_pypi_package_name,
    generate_recommendations,
    get_common_package_dependencies,
    get_real_package_dependencies,
    identify_redundant_packages,
)
from condainspect.models import Package

PANDAS_DEPS = ["numpy", "python", "python-dateutil", "pytz"]


class FakeResponse:
    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("no body")
        return self._payload


def _no_conda(*args, **kwargs):
    raise FileNotFoundError("conda")


def _no_network(*args, **kwargs):
    raise requests.ConnectionError("offline")


@pytest.fixture
def offline(monkeypatch):
    monkeypatch.setattr(subprocess, "run", _no_conda)
    monkeypatch.setattr(requests, "get", _no_network)


def _completed(args, returncode, payload=None):
    stdout = json.dumps(payload).encode() if payload is not None else b""
    return subprocess.CompletedProcess(args, returncode, stdout=stdout, stderr=b"")


def test_extract_package_name():
    assert extract_package_name("python >=3.8") == "python"
    assert extract_package_name("  numpy  ") == "numpy"
    assert extract_package_name("") is None
    assert extract_package_name("   ") is None


def test_extract_pypi_package_name():
    assert extract_pypi_package_name("numpy (>=1.14.5) ; extra == 'test'") == "numpy"
    assert extract_pypi_package_name("pytz") == "pytz"
    assert extract_pypi_package_name("six(>=1.0)") == "six"
    assert extract_pypi_package_name("") is None
    assert extract_pypi_package_name(" ; extra == 'x'") is None


def test_common_package_dependencies():
    assert get_common_package_dependencies("pandas") == PANDAS_DEPS
    assert get_common_package_dependencies("pytorch") == ["python", "numpy"]
    assert get_common_package_dependencies("not-a-known-package") is None


def test_common_dependencies_are_fresh_lists():
    first = get_common_package_dependencies("pandas")
    first.append("extra")
    assert get_common_package_dependencies("pandas") == PANDAS_DEPS


def test_enhance_fills_empty_and_missing_entries():
    deps = {"app": ["pandas", "matplotlib", "custom"], "pandas": [], "custom": ["x"]}
    enhance_dependency_map(deps)
    assert deps["pandas"] == PANDAS_DEPS
    assert deps["matplotlib"] == get_common_package_dependencies("matplotlib")
    assert deps["custom"] == ["x"]
    assert deps["app"] == ["pandas", "matplotlib", "custom"]


def test_enhance_keeps_existing_dependencies():
    deps = {"app": ["pandas"], "pandas": ["only-this"]}
    enhance_dependency_map(deps)
    assert deps == {"app": ["pandas"], "pandas": ["only-this"]}


def test_real_dependencies_offline_use_fallback(offline):
    packages = [Package(name="pandas"), Package(name="foo")]
    deps = get_real_package_dependencies(packages)
    assert set(deps) == {"pandas", "foo"}
    assert deps["pandas"] == PANDAS_DEPS
    assert deps["foo"] == []


def test_real_dependencies_from_conda_info(monkeypatch):
    payload = {"packages": {"foo-1.0": {"depends": ["python >=3.8", "libblas"]}}}

    def fake_run(args, **kwargs):
        return _completed(args, 0, payload)

    monkeypatch.setattr(subprocess, "run", fake_run)
    monkeypatch.setattr(requests, "get", _no_network)
    deps = get_real_package_dependencies([Package(name="foo")])
    assert deps["foo"] == ["python", "libblas"]


def test_real_dependencies_from_anaconda_api(monkeypatch):
    payload = {
        "latest_version": "2.0",
        "files": [
            {"version": "1.0", "dependencies": ["old"]},
            {"version": "2.0", "dependencies": ["zlib >=1.2", "openssl"]},
        ],
    }
    monkeypatch.setattr(subprocess, "run", _no_conda)
    monkeypatch.setattr(requests, "get", lambda url, **kw: FakeResponse(200, payload))
    deps = get_real_package_dependencies([Package(name="foo")])
    assert deps["foo"] == ["zlib", "openssl"]


def test_real_dependencies_from_pypi(monkeypatch):
    def fake_get(url, **kwargs):
        if "pypi.org" in url:
            return FakeResponse(
                200, {"info": {"requires_dist": ["idna (>=2.5)", "certifi ; extra == 'x'"]}}
            )
        return FakeResponse(404)

    monkeypatch.setattr(subprocess, "run", _no_conda)
    monkeypatch.setattr(requests, "get", fake_get)
    deps = get_real_package_dependencies([Package(name="foo", channel="pip")])
    assert deps["foo"] == ["idna", "certifi"]


def test_pypi_not_used_for_conda_channel(monkeypatch):
    def fake_get(url, **kwargs):
        if "pypi.org" in url:
            return FakeResponse(200, {"info": {"requires_dist": ["idna"]}})
        return FakeResponse(404)

    monkeypatch.setattr(subprocess, "run", _no_conda)
    monkeypatch.setattr(requests, "get", fake_get)
    deps = get_real_package_dependencies([Package(name="foo", channel="conda-forge")])
    assert deps["foo"] == []


def test_real_dependencies_from_conda_meta(monkeypatch, tmp_path):
    meta_dir = tmp_path / "conda-meta"
    meta_dir.mkdir()
    (meta_dir / "foo-1.0-0.json").write_text(
        json.dumps({"depends": ["bar >=1", "baz"]}), encoding="utf-8"
    )
    (meta_dir / "other-1.0-0.json").write_text(
        json.dumps({"depends": ["wrong"]}), encoding="utf-8"
    )

    def fake_run(args, **kwargs):
        if args == ["conda", "info", "--json"]:
            return _completed(args, 0, {"active_prefix": str(tmp_path)})
        return _completed(args, 1)

    monkeypatch.setattr(subprocess, "run", fake_run)
    monkeypatch.setattr(requests, "get", _no_network)
    deps = get_real_package_dependencies([Package(name="foo")])
    assert deps["foo"] == ["bar", "baz"]


def test_create_dependency_graph_offline(offline):
    packages = [
        Package(name="pandas"),
        Package(name="numpy"),
        Package(name="python"),
        Package(name="numpy"),
        Package(name="requests"),
    ]
    graph = create_dependency_graph(packages)
    assert graph.nodes == ["pandas", "numpy", "python", "requests"]
    assert graph.edges == [("pandas", "numpy"), ("pandas", "python")]
    for src, dst in graph.edges:
        assert src in graph.nodes and dst in graph.nodes


def test_export_dependency_graph(tmp_path):
    graph = DependencyGraph(nodes=["a", "b"], edges=[("a", "b")])
    out = tmp_path / "graph.dot"
    export_dependency_graph(graph, out)
    lines = out.read_text(encoding="utf-8").splitlines()
    assert lines == [
        "digraph conda_dependencies {",
        "  node [shape=box, style=filled, fillcolor=lightblue];",
        '  "a" [label="a"];',
        '  "b" [label="b"];',
        '  "a" -> "b";',
        "}",
    ]


def test_export_dependency_graph_bad_path(tmp_path):
    graph = DependencyGraph(nodes=["a"])
    with pytest.raises(OSError, match="Failed to create graph file"):
        export_dependency_graph(graph, tmp_path / "missing" / "graph.dot")


def test_identify_redundant_packages(offline):
    packages = [
        Package(name="pandas"),
        Package(name="numpy"),
        Package(name="pytest"),
        Package(name="foo"),
    ]
    assert identify_redundant_packages(packages) == ["pandas", "foo"]


def test_recommendations_outdated(offline):
    packages = [
        Package(name="numpy", version="1.0", is_outdated=True, latest_version="2.0"),
        Package(name="python", version="3.8", is_outdated=True),
        Package(name="pytest"),
    ]
    recs = generate_recommendations(packages, check_outdated=True)
    assert recs[0].startswith("Found 2 outdated packages.")
    assert "Update numpy from 1.0 to 2.0" in recs
    assert not any(rec.startswith("Update python") for rec in recs)


def test_recommendations_outdated_only_when_requested(offline):
    packages = [Package(name="numpy", version="1.0", is_outdated=True, latest_version="2.0")]
    recs = generate_recommendations(packages, check_outdated=False)
    assert not any("outdated" in rec for rec in recs)
    assert not any(rec.startswith("Update") for rec in recs)


def test_recommendations_outdated_limited_to_three(offline):
    packages = [
        Package(name=f"pytest{i}", version="1", is_outdated=True, latest_version="2")
        for i in range(5)
    ]
    recs = generate_recommendations(packages, check_outdated=True)
    assert len([rec for rec in recs if rec.startswith("Update ")]) == 3


def test_recommendations_pinned_percentages(offline):
    all_pinned = [Package(name="pytest", is_pinned=True), Package(name="black", is_pinned=True)]
    recs = generate_recommendations(all_pinned, check_outdated=False)
    assert any(rec.startswith("100.0% of packages have pinned versions.") for rec in recs)

    few_pinned = [Package(name="pytest", is_pinned=True)] + [
        Package(name=name) for name in ("black", "flake8", "mypy", "isort")
    ]
    recs = generate_recommendations(few_pinned, check_outdated=False)
    assert any(rec.startswith("Only 20.0% of packages have pinned versions.") for rec in recs)

    half_pinned = [Package(name="pytest", is_pinned=True), Package(name="black")]
    recs = generate_recommendations(half_pinned, check_outdated=False)
    assert not any("pinned versions" in rec for rec in recs)


def test_recommendations_large_environment(offline):
    packages = [Package(name="pytest", size=1_500_000_000), Package(name="black", size=1_500_000_000)]
    recs = generate_recommendations(packages, check_outdated=False)
    assert (
        "Environment is quite large. Consider creating a minimal environment "
        "with only required packages." in recs
    )
    small = [Package(name="pytest", size=10)]
    assert not any("quite large" in rec for rec in generate_recommendations(small, False))


def test_recommendations_redundant(offline):
    packages = [Package(name="pandas"), Package(name="numpy"), Package(name="foo")]
    recs = generate_recommendations(packages, check_outdated=False)
    redundant = identify_redundant_packages(packages)
    assert any(rec.startswith(f"Found {len(redundant)} potentially redundant") for rec in recs)
    for name in redundant:
        assert f"Consider removing unused package: {name}" in recs
    assert "Consider removing unused package: numpy" not in recs