[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "condainspect"
version = "0.1.0"
description = "Inspect Conda environment files: packages, pinning, outdated versions, dependency graphs and known vulnerabilities"
requires-python = ">=3.10"
keywords = ["conda", "environment", "dependencies", "vulnerabilities", "dot", "cli"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Quality Assurance",
    "Topic :: Utilities",
]
dependencies = [
    "pyyaml>=6.0",
    "requests>=2.28",
    "semver>=3.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[project.scripts]
conda-env-inspect = "condainspect.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["condainspect"]

[tool.hatch.build.targets.sdist]
include = ["condainspect", "tests"]

[tool.pytest.ini_options]
addopts = "-ra"
