"""Package metadata lookups through the conda command and the Anaconda and PyPI APIs."""

from __future__ import annotations

import functools
import json
import logging
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import requests
import semver

from condainspect.models import Package

log = logging.getLogger(__name__)

ANACONDA_API_URL = "https://api.anaconda.org/package"
PYPI_API_URL = "https://pypi.org/pypi"
DEFAULT_CHANNEL = "conda-forge"
REQUEST_TIMEOUT = 10


class CondaApiError(RuntimeError):
    """Raised when package metadata cannot be obtained."""


@dataclass
class PackageInfo:
    """Package information returned by the Anaconda API."""

    name: str
    latest_version: str
    size: int | None = None
    versions: list[str] = field(default_factory=list)


def _get(obj: Any, key: str) -> Any:
    return obj.get(key) if isinstance(obj, dict) else None


def _as_u64(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return value
    return None


def _is_success(response: Any) -> bool:
    return 200 <= response.status_code < 300


def _run_conda(*args: str) -> subprocess.CompletedProcess:
    try:
        return subprocess.run(["conda", *args], capture_output=True, check=False)
    except OSError as exc:
        raise CondaApiError(f"failed to execute conda {' '.join(args)}: {exc}") from exc


def _conda_json(*args: str) -> Any:
    completed = _run_conda(*args)
    if completed.returncode != 0:
        raise CondaApiError(
            f"conda {' '.join(args)} failed with status {completed.returncode}"
        )
    try:
        return json.loads(completed.stdout)
    except ValueError as exc:
        raise CondaApiError(f"failed to parse JSON output from conda {args[0]}") from exc


def get_package_info(package_name: str, channel: str | None = None) -> PackageInfo:
    """Query the Anaconda API for a package's latest version, size and versions."""
    url = f"{ANACONDA_API_URL}/{channel or DEFAULT_CHANNEL}/{package_name}"
    log.debug("Querying Anaconda API: %s", url)
    try:
        response = requests.get(url, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as exc:
        log.warning("Network error querying API: %s", exc)
        raise CondaApiError(f"Network error: {exc}") from exc

    if not _is_success(response):
        log.error("API request failed with status: %s", response.status_code)
        raise CondaApiError(
            f"Failed to get package info: HTTP status {response.status_code}"
        )

    try:
        data = response.json()
    except ValueError as exc:
        log.warning("Failed to parse API response: %s", exc)
        raise CondaApiError(f"Failed to parse response: {exc}") from exc

    latest = _get(data, "latest_version")
    latest_version = latest if isinstance(latest, str) else "unknown"

    files = _get(data, "files")
    versions: list[str] = []
    size: int | None = None
    if isinstance(files, list):
        for entry in files:
            version = _get(entry, "version")
            if isinstance(version, str) and version not in versions:
                versions.append(version)
        sizes = [
            _as_u64(_get(entry, "size")) or 0
            for entry in files
            if _get(entry, "version") == latest_version
        ]
        size = max(sizes, default=None)

    return PackageInfo(
        name=package_name, latest_version=latest_version, size=size, versions=versions
    )


def normalize_conda_version(version: str) -> str:
    """Strip build suffixes and pad a conda version to major.minor.patch."""
    if "+" in version:
        base = version[: version.index("+")]
    elif "-" in version and not version.startswith("0-"):
        base = version[: version.index("-")]
    else:
        base = version

    parts = base.split(".")
    if len(parts) == 1:
        return f"{parts[0]}.0.0"
    if len(parts) == 2:
        return f"{parts[0]}.{parts[1]}.0"
    return base


def parse_conda_version(version_str: str) -> semver.Version | None:
    """Parse a conda version as a semantic version, or return None."""
    normalized = normalize_conda_version(version_str)
    try:
        return semver.Version.parse(normalized)
    except ValueError as exc:
        log.warning("Failed to parse version '%s': %s", version_str, exc)
        return None


def is_outdated(package: Package, info: PackageInfo) -> bool:
    """Tell whether a package's version is older than the latest known one."""
    if package.version is None:
        return False
    current = parse_conda_version(package.version)
    latest = parse_conda_version(info.latest_version)
    if current is not None and latest is not None:
        log.debug(
            "Comparing versions for %s: current=%s, latest=%s", package.name, current, latest
        )
        return current < latest
    log.warning(
        "Failed to parse version for %s, falling back to string comparison", package.name
    )
    return package.version != info.latest_version


def _get_env_path(env_name: str) -> str | None:
    completed = _run_conda("env", "list", "--json")
    if completed.returncode != 0:
        log.error(
            "conda env list command failed: %s",
            completed.stderr.decode(errors="replace") if completed.stderr else "",
        )
        return None
    try:
        data = json.loads(completed.stdout)
    except ValueError as exc:
        raise CondaApiError("Failed to parse conda env list JSON output") from exc

    envs = _get(data, "envs")
    if isinstance(envs, list):
        for path_str in envs:
            if isinstance(path_str, str) and Path(path_str).name == env_name:
                log.debug("Found environment path: %s", path_str)
                return path_str
    log.warning("Environment not found: %s", env_name)
    return None


def calculate_directory_size(dir_path: str | os.PathLike) -> int:
    """Sum the sizes of all files below a directory; 0 if it is not one."""
    path = Path(dir_path)
    if not path.is_dir():
        return 0
    total = 0
    with os.scandir(path) as entries:
        for entry in entries:
            if entry.is_file():
                total += entry.stat(follow_symlinks=False).st_size
            elif entry.is_dir():
                total += calculate_directory_size(entry.path)
    return total


def get_environment_size(env_name: str) -> int | None:
    """Total size of a named conda environment on disk, or None if not found."""
    log.info("Calculating size for environment: %s", env_name)
    path = _get_env_path(env_name)
    if path is None:
        log.warning("Could not determine environment path for: %s", env_name)
        return None
    size = calculate_directory_size(path)
    log.info("Total environment size: %d bytes", size)
    return size


def enrich_packages(packages: list[Package]) -> None:
    """Fill in outdated status, latest version and size from the Anaconda API."""
    log.info("Enriching package information for %d packages", len(packages))
    for package in packages:
        if not package.name or ">" in package.name:
            log.debug("Skipping package: %s", package.name)
            continue
        try:
            info = get_package_info(package.name, package.channel)
        except CondaApiError as exc:
            log.warning("Failed to get info for package %s: %s", package.name, exc)
            continue
        package.is_outdated = is_outdated(package, info)
        package.latest_version = info.latest_version
        package.size = info.size
    log.info("Package enrichment complete")


def _compare_version_strings(a: str, b: str) -> int:
    try:
        return semver.Version.parse(a).compare(semver.Version.parse(b))
    except ValueError:
        return (a > b) - (a < b)


def _latest_version_conda(package_name: str) -> str:
    data = _conda_json("search", package_name, "--json")
    entries = _get(data, package_name)
    if isinstance(entries, list):
        versions = [
            v for v in (_get(entry, "version") for entry in entries) if isinstance(v, str)
        ]
        versions.sort(key=functools.cmp_to_key(_compare_version_strings))
        if versions:
            return versions[-1]
    raise CondaApiError(f"Failed to find latest version for {package_name}")


def _fetch_json(url: str, package_name: str) -> Any | None:
    try:
        response = requests.get(url, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as exc:
        log.debug("API request to %s failed: %s", url, exc)
        return None
    if not _is_success(response):
        return None
    try:
        return response.json()
    except ValueError as exc:
        raise CondaApiError(f"Failed to parse API response for {package_name}") from exc


def _latest_version_api(package_name: str) -> str:
    for channel in ("conda-forge", "main"):
        data = _fetch_json(f"{ANACONDA_API_URL}/{channel}/{package_name}", package_name)
        latest = _get(data, "latest_version")
        if isinstance(latest, str):
            return latest
    data = _fetch_json(f"{PYPI_API_URL}/{package_name}/json", package_name)
    version = _get(_get(data, "info"), "version")
    if isinstance(version, str):
        return version
    raise CondaApiError(f"Could not determine latest version for {package_name}")


def get_latest_version(package_name: str) -> str:
    """Latest version of a package, from conda if possible, else from the APIs."""
    try:
        return _latest_version_conda(package_name)
    except CondaApiError as exc:
        log.debug("Failed to get latest version via conda: %s", exc)
    return _latest_version_api(package_name)


def _package_size_conda(package_name: str) -> int:
    data = _conda_json("search", package_name, "--info", "--json")
    entries = _get(data, package_name)
    if isinstance(entries, list):
        for entry in entries:
            size = _as_u64(_get(entry, "size"))
            if size is not None:
                return size
    raise CondaApiError(f"Failed to get size information for {package_name}")


def _package_size_api(package_name: str) -> int:
    for channel in ("conda-forge", "main"):
        data = _fetch_json(f"{ANACONDA_API_URL}/{channel}/{package_name}", package_name)
        files = _get(data, "files")
        if isinstance(files, list) and files:
            size = _as_u64(_get(files[0], "size"))
            if size is not None:
                return size
    raise CondaApiError(f"Could not determine package size for {package_name}")


def get_package_size(package_name: str) -> int:
    """Size of a package in bytes, from conda if possible, else from the API."""
    try:
        return _package_size_conda(package_name)
    except CondaApiError as exc:
        log.debug("Failed to get package size via conda: %s", exc)
    return _package_size_api(package_name)