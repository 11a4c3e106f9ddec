# condainspect

A command-line tool and library for inspecting Conda environment files:
YAML (`.yml`, `.yaml`) or JSON (`.json`, `.conda`).

It lists the packages an environment declares, including those under a
`pip:` section, flags which ones are pinned to a version, checks which ones
are outdated, estimates package sizes, writes dependency graphs in Graphviz
DOT format, detects conflicting version requirements, and looks for known
security vulnerabilities.

Package metadata comes from the `conda` command when it is on your `PATH`,
and otherwise from the Anaconda and PyPI web APIs. When none of these
answer, dependencies fall back to a small built-in list for a few well-known
packages, and — if no `CONDA_PREFIX` is set — each package's size is taken
as 5,000,000 bytes.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Command-line usage

Analyse an environment file and print a text report:

```
conda-env-inspect environment.yml
```

With no file given, `environment.yml` in the current directory is used.

Options for the default analysis:

- `-f/--format` — `text`, `json`, `yaml`, `csv`, `markdown` or `toml`.
  `yaml` and `toml` are accepted but produce the text report.
- `-o/--output PATH` — write the report to a file instead of standard output
- `-c/--check-outdated` — look up the latest version of every package
  (done concurrently)
- `-p/--flag-pinned` — mark packages whose version is pinned
- `-g/--generate-graph` with `-G/--graph-output PATH` — also write a DOT
  dependency graph; `-g` without `-G` is an error
- `-r/--generate-recommendations` — accepted; recommendations about outdated
  and pinned packages are always part of the report
- `-V/--version` — print the version

Subcommands:

```
conda-env-inspect analyze environment.yml --check-outdated --flag-pinned
conda-env-inspect export environment.yml --format markdown --output report.md
conda-env-inspect graph environment.yml --output dependency_graph.dot
conda-env-inspect graph environment.yml --advanced --output advanced.dot
conda-env-inspect recommend environment.yml --check-outdated
conda-env-inspect vulnerabilities environment.yml
```

- `analyze` takes `-c`, `-p`, `-g`, `-r` and `-G`; the report format and
  output file are set with `-f` and `-o` before the subcommand name, e.g.
  `conda-env-inspect -f json analyze environment.yml`.
- `export` writes the report in the chosen format (`-f`, `-o`).
- `graph` writes a DOT graph to `-o` (default `dependency_graph.dot`). With
  `-a/--advanced` the graph also has transitive-dependency edges.
- `recommend` prints numbered recommendations.
- `vulnerabilities` checks each package with a version against a built-in
  list of advisories, the OSV database, the Safety DB (for `pip` and
  `conda-forge` packages), and flags packages a major version or two minor
  versions behind their latest release.

On failure the command prints `Error: ...` to standard error and exits
with status 1.

## Library usage

```python
from condainspect.analyzer import analyze_environment
from condainspect.exporters import ExportFormat, render_analysis

analysis = analyze_environment("environment.yml", False, True)
print(render_analysis(analysis, ExportFormat.MARKDOWN))
```

`ExportFormat` has `TEXT`, `JSON`, `MARKDOWN`, `HTML` and `CSV`;
`ExportFormat.parse("md")` accepts names and short aliases. `export_analysis`
writes the rendering to a file, or prints it when no path is given.

Parsing on its own:

```python
from condainspect.parsers import extract_packages, parse_environment_file, parse_package_spec

env = parse_environment_file("environment.yml")
for package in extract_packages(env):
    print(package.name, package.version, package.is_pinned)

parse_package_spec("conda-forge::numpy=1.24.0=py311h_0")
```

Vulnerability scanning:

```python
from condainspect.vulnerabilities import find_vulnerabilities

for vuln in find_vulnerabilities(analysis.packages):
    print(vuln.name, vuln.version, vuln.description)
```

Dependency graphs, conflicts and resolution:

```python
from condainspect.analysis import get_real_package_dependencies
from condainspect.graph import CondaDependencyProvider, create_advanced_dependency_graph
from condainspect.recommend import generate_recommendations

deps = get_real_package_dependencies(analysis.packages)
graph = create_advanced_dependency_graph(analysis.packages, deps)
print(graph.to_dot())
print(graph.conflicts)

provider = CondaDependencyProvider(analysis.packages, deps)
print(provider.solve(["pandas"]))

for rec in generate_recommendations(analysis.packages, graph):
    print(rec)
```

## What it does not do

There is no interactive terminal view and no progress display: results are
printed or written to files. YAML and TOML reports are not produced.