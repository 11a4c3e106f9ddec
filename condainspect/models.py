"""Data model for Conda environment files and the analysis built from them."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import Any, Union

_COMPLEX_KNOWN_KEYS = frozenset({"name", "pip"})
_ENVIRONMENT_KNOWN_KEYS = frozenset({"name", "channels", "dependencies"})


def _optional_str(data: Mapping[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string, got {type(value).__name__}")
    return value


def _str_list(value: Any, key: str) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"field {key!r} must be a list of strings")
    return list(value)


@dataclass
class ComplexDependency:
    """A mapping entry in a dependency list, such as a ``pip:`` section."""

    name: str | None = None
    pip: list[str] | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ComplexDependency:
        """Build from a parsed mapping, keeping unknown keys in ``extra``."""
        if not isinstance(data, Mapping):
            raise ValueError("a complex dependency must be a mapping")
        pip = data.get("pip")
        return cls(
            name=_optional_str(data, "name"),
            pip=None if pip is None else _str_list(pip, "pip"),
            extra={k: v for k, v in data.items() if k not in _COMPLEX_KNOWN_KEYS},
        )


Dependency = Union[str, ComplexDependency]


def _parse_dependency(item: Any) -> Dependency:
    if isinstance(item, str):
        return item
    if isinstance(item, Mapping):
        return ComplexDependency.from_dict(item)
    raise ValueError(f"unsupported dependency entry: {item!r}")


@dataclass
class CondaEnvironment:
    """A complete Conda environment definition."""

    name: str | None = None
    channels: list[str] = field(default_factory=list)
    dependencies: list[Dependency] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CondaEnvironment:
        """Build from a parsed YAML or JSON document."""
        if not isinstance(data, Mapping):
            raise ValueError("an environment document must be a mapping")
        channels = _str_list(data["channels"], "channels") if "channels" in data else []
        dependencies: list[Dependency] = []
        if "dependencies" in data:
            raw = data["dependencies"]
            if not isinstance(raw, list):
                raise ValueError("field 'dependencies' must be a list")
            dependencies = [_parse_dependency(item) for item in raw]
        return cls(
            name=_optional_str(data, "name"),
            channels=channels,
            dependencies=dependencies,
            extra={k: v for k, v in data.items() if k not in _ENVIRONMENT_KNOWN_KEYS},
        )


@dataclass
class Package:
    """A parsed package with its details."""

    name: str
    version: str | None = None
    build: str | None = None
    channel: str | None = None
    size: int | None = None
    is_pinned: bool = False
    is_outdated: bool = False
    latest_version: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Recommendation:
    """A recommendation for optimising an environment."""

    description: str
    value: str
    details: str | None = None

    def __str__(self) -> str:
        return f"{self.description} (Value: {self.value})"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class EnvironmentAnalysis:
    """The results of analysing an environment."""

    name: str | None
    packages: list[Package]
    total_size: int | None
    pinned_count: int
    outdated_count: int
    recommendations: list[Recommendation] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "packages": [package.to_dict() for package in self.packages],
            "total_size": self.total_size,
            "pinned_count": self.pinned_count,
            "outdated_count": self.outdated_count,
            "recommendations": [rec.to_dict() for rec in self.recommendations],
        }