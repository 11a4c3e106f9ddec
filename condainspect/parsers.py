"""Reading Conda environment files and turning their entries into packages."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import yaml

from condainspect.models import ComplexDependency, CondaEnvironment, Package

_YAML_EXTENSIONS = frozenset({"yml", "yaml"})
_JSON_EXTENSIONS = frozenset({"conda", "json"})


class EnvironmentFileError(ValueError):
    """Raised when an environment file cannot be read or understood."""


def _read_text(path: Path, kind: str) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise EnvironmentFileError(f"Failed to read {kind} file: {str(path)!r}: {exc}") from exc


def _build_environment(data: Any, path: Path, kind: str) -> CondaEnvironment:
    try:
        return CondaEnvironment.from_dict(data)
    except (ValueError, KeyError, TypeError) as exc:
        raise EnvironmentFileError(
            f"Failed to parse {kind} content from: {str(path)!r}: {exc}"
        ) from exc


def _parse_yaml_file(path: Path) -> CondaEnvironment:
    content = _read_text(path, "YAML")
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise EnvironmentFileError(
            f"Failed to parse YAML content from: {str(path)!r}: {exc}"
        ) from exc
    return _build_environment(data, path, "YAML")


def _parse_json_file(path: Path) -> CondaEnvironment:
    content = _read_text(path, "JSON")
    try:
        data = json.loads(content)
    except ValueError as exc:
        raise EnvironmentFileError(
            f"Failed to parse JSON content from: {str(path)!r}: {exc}"
        ) from exc
    return _build_environment(data, path, "JSON")


def parse_environment_file(file_path: str | os.PathLike) -> CondaEnvironment:
    """Parse a YAML (.yml, .yaml) or JSON (.json, .conda) environment file."""
    path = Path(file_path)
    extension = path.suffix[1:] if path.suffix else ""
    lowered = extension.lower()
    if lowered in _YAML_EXTENSIONS:
        return _parse_yaml_file(path)
    if lowered in _JSON_EXTENSIONS:
        return _parse_json_file(path)
    raise EnvironmentFileError(
        f"Unsupported file format: {extension}. "
        "Only .yml, .yaml, .conda, or .json files are supported."
    )


def _split_name_version_build(spec: str) -> tuple[str, str | None, str | None]:
    first = spec.find("=")
    if first < 0:
        return spec, None, None
    second = spec.find("=", first + 1)
    if second < 0:
        return spec[:first], spec[first + 1 :], None
    name_version = spec[:second]
    build = spec[second + 1 :]
    # The version stops one character short of the second '='.
    start, end = first + 1, len(name_version) - 1
    if start > end:
        raise ValueError(f"malformed package spec: {spec!r}")
    return name_version[:first], name_version[start:end], build


def parse_package_spec(spec: str) -> Package:
    """Split a spec such as ``channel::name=version=build`` into a package."""
    channel: str | None = None
    rest = spec
    if "::" in spec:
        channel, rest = spec.split("::", 1)
    name, version, build = _split_name_version_build(rest)
    return Package(
        name=name,
        version=version,
        build=build,
        channel=channel,
        is_pinned=version is not None,
    )


def _package_from_simple(spec: str, channel: str | None) -> Package:
    parts = spec.split("=")
    version = parts[1].strip() if len(parts) > 1 else None
    return Package(
        name=parts[0].strip(),
        version=version,
        channel=channel,
        is_pinned=version is not None,
    )


def extract_packages(env: CondaEnvironment) -> list[Package]:
    """List the packages of an environment, including those under ``pip:``."""
    packages: list[Package] = []
    for dependency in env.dependencies:
        if isinstance(dependency, ComplexDependency):
            packages.extend(
                _package_from_simple(spec, "pip") for spec in dependency.pip or ()
            )
        else:
            packages.append(_package_from_simple(dependency, None))
    return packages