"""Inspect Conda environment files: packages, versions, dependency graphs and vulnerabilities."""

__version__ = "0.1.0"