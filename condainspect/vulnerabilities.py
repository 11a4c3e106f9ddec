"""Security checks of environment packages against local and online advisories."""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Iterable
from typing import Any, NamedTuple

import requests
import semver

from condainspect.models import Package

log = logging.getLogger(__name__)

OSV_QUERY_URL = "https://api.osv.dev/v1/query"
SAFETY_DB_URL = (
    "https://raw.githubusercontent.com/pyupio/safety-db/master/data/insecure_full.json"
)
REQUEST_TIMEOUT = 15

KNOWN_VULNERABILITIES: tuple[tuple[str, str, str], ...] = (
    ("log4j", "2.0", "Log4Shell vulnerability, CVE-2021-44228"),
    ("numpy", "1.19.0", "Buffer overflow in numpy.lib.arraypad, CVE-2021-33430"),
    ("tensorflow", "2.4.0", "Integer overflow in TensorFlow, CVE-2021-37678"),
    ("torch", "1.4", "Improper size validation in older PyTorch, CVE-2022-45907"),
    ("pillow", "8.3.0", "Multiple buffer overflow vulnerabilities, CVE-2021-34552"),
    ("django", "2.0", "XSS vulnerability in Django admin, CVE-2019-19844"),
    ("django", "1.11", "Potential SQL injection in Django, CVE-2020-9402"),
    ("requests", "2.2", "SSRF vulnerability in Requests, CVE-2018-18074"),
    ("flask", "0.12", "Session fixation in Flask, CVE-2018-1000656"),
    ("jinja2", "2.10", "Sandbox bypass in Jinja2, CVE-2019-10906"),
    ("sqlalchemy", "1.3.0", "SQL injection in SQLAlchemy, CVE-2019-7164"),
    ("cryptography", "2.8", "Improper certificate validation, CVE-2020-25659"),
    ("werkzeug", "0.14", "Open redirect vulnerability, CVE-2019-14806"),
    ("click", "7.0", "Command argument injection, CVE-2021-29622"),
    ("pandas", "0.24", "Use-after-free in read_stata, CVE-2020-13091"),
    ("nltk", "3.4", "Arbitrary code execution in nltk, CVE-2019-14751"),
    ("lxml", "4.6.2", "XML external entity vulnerability, CVE-2021-28957"),
    ("psycopg2", "2.8.5", "SQL injection vulnerability, CVE-2022-31116"),
    ("scipy", "1.5.0", "Buffer overflow in scipy.special, CVE-2020-15864"),
    ("tornado", "6.0.3", "Improper certificate validation, CVE-2020-28476"),
)

_U32_MAX = 2**32 - 1
_NUMBER = re.compile(r"\+?[0-9]+")


class Vulnerability(NamedTuple):
    """A vulnerability reported for one package version."""

    name: str
    version: str
    description: str


class VulnerabilityLookupError(RuntimeError):
    """Raised when an online advisory source cannot be queried."""


def _get(obj: Any, key: str) -> Any:
    return obj.get(key) if isinstance(obj, dict) else None


def _parse_semver(text: str) -> semver.Version | None:
    try:
        return semver.Version.parse(text)
    except (ValueError, TypeError):
        return None


def _is_success(response: Any) -> bool:
    return 200 <= response.status_code < 300


class _SafetyDbCache:
    """Process-wide, thread-safe cache of the Safety DB document."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: Any = None

    def load(self) -> Any:
        with self._lock:
            if self._data is None:
                log.debug("Safety DB not cached, fetching from source")
                try:
                    response = requests.get(SAFETY_DB_URL, timeout=REQUEST_TIMEOUT)
                except requests.RequestException as exc:
                    raise VulnerabilityLookupError(
                        f"Safety DB request failed: {exc}"
                    ) from exc
                if not _is_success(response):
                    raise VulnerabilityLookupError(
                        f"Safety DB error: HTTP {response.status_code}"
                    )
                try:
                    self._data = response.json()
                except ValueError as exc:
                    raise VulnerabilityLookupError(
                        f"Failed to parse Safety DB: {exc}"
                    ) from exc
            return self._data


_safety_db = _SafetyDbCache()


def is_vulnerable_version(version: str, vulnerable_pattern: str) -> bool:
    """Tell whether a version matches, or is no newer than, a vulnerable version."""
    if version.startswith(vulnerable_pattern):
        return True
    current = _parse_semver(version)
    pattern = _parse_semver(vulnerable_pattern)
    if current is not None and pattern is not None:
        return current <= pattern
    return version.strip() == vulnerable_pattern.strip()


def check_local_vulnerability_db(package: Package, version: str) -> list[Vulnerability]:
    """Vulnerabilities of a package version listed in the built-in database."""
    return [
        Vulnerability(package.name, version, description)
        for name, pattern, description in KNOWN_VULNERABILITIES
        if package.name == name and is_vulnerable_version(version, pattern)
    ]


def _check_osv_database(package: Package, version: str) -> list[Vulnerability]:
    log.debug("Checking OSV database for %s %s", package.name, version)
    ecosystem = "PyPI" if package.channel == "pip" else "Conda"
    body = {"package": {"name": package.name, "ecosystem": ecosystem}, "version": version}
    try:
        response = requests.post(OSV_QUERY_URL, json=body, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as exc:
        raise VulnerabilityLookupError(f"OSV API request failed: {exc}") from exc
    if not _is_success(response):
        raise VulnerabilityLookupError(f"OSV API error: HTTP {response.status_code}")
    try:
        data = response.json()
    except ValueError as exc:
        raise VulnerabilityLookupError(f"Failed to parse OSV response: {exc}") from exc

    found: list[Vulnerability] = []
    vulns = _get(data, "vulns")
    if isinstance(vulns, list):
        for vuln in vulns:
            vuln_id, summary = _get(vuln, "id"), _get(vuln, "summary")
            if isinstance(vuln_id, str) and isinstance(summary, str):
                found.append(Vulnerability(package.name, version, f"{summary} ({vuln_id})"))
    return found


def is_version_affected(version: str, spec: str) -> bool:
    """Tell whether a version falls under a spec such as ``>=1.0.0,<2.0.0``.

    The version is affected as soon as any one comma-separated condition holds.
    """
    if version in spec:
        return True
    current = _parse_semver(version)
    if current is None:
        return False
    for raw in spec.split(","):
        part = raw.strip()
        for operator, holds in (
            ("<=", lambda other: current <= other),
            ("<", lambda other: current < other),
            (">=", lambda other: current >= other),
            (">", lambda other: current > other),
            ("==", lambda other: current == other),
        ):
            if part.startswith(operator):
                bound = _parse_semver(part[len(operator):])
                if bound is not None and holds(bound):
                    return True
                break
    return False


def _check_pypi_security(package: Package, version: str) -> list[Vulnerability]:
    log.debug("Checking PyPI security advisories for %s %s", package.name, version)
    database = _safety_db.load()
    found: list[Vulnerability] = []
    entries = _get(database, package.name.lower())
    if not isinstance(entries, list):
        return found
    for entry in entries:
        vulnerable_versions = _get(entry, "vulnerable_versions")
        vuln_id, advisory = _get(entry, "id"), _get(entry, "advisory")
        if not (
            isinstance(vulnerable_versions, list)
            and isinstance(vuln_id, str)
            and isinstance(advisory, str)
        ):
            continue
        if any(
            isinstance(spec, str) and is_version_affected(version, spec)
            for spec in vulnerable_versions
        ):
            found.append(Vulnerability(package.name, version, f"{advisory} ({vuln_id})"))
    return found


def _parse_three_part(version: str) -> tuple[int, int, int] | None:
    parts = version.split(".")
    if len(parts) < 3:
        return None
    numbers = []
    for part in parts[:3]:
        if not _NUMBER.fullmatch(part):
            return None
        value = int(part)
        if value > _U32_MAX:
            return None
        numbers.append(value)
    return numbers[0], numbers[1], numbers[2]


def version_gap_significant(current: str, latest: str) -> bool:
    """A newer major version, or at least two minor versions behind, counts as significant."""
    current_parts = _parse_three_part(current)
    latest_parts = _parse_three_part(latest)
    if current_parts is None or latest_parts is None:
        return False
    cur_major, cur_minor, _ = current_parts
    new_major, new_minor, _ = latest_parts
    return new_major > cur_major or (new_major == cur_major and new_minor >= cur_minor + 2)


def _check_version_gap(package: Package, version: str) -> list[Vulnerability]:
    latest = package.latest_version
    if latest is not None and package.is_outdated and version_gap_significant(version, latest):
        return [
            Vulnerability(
                package.name,
                version,
                "Potentially vulnerable due to being significantly outdated "
                f"(current: {version}, latest: {latest})",
            )
        ]
    return []


def deduplicate_vulnerabilities(
    vulnerabilities: Iterable[Vulnerability],
) -> list[Vulnerability]:
    """Drop repeated entries, keeping the first occurrence of each."""
    return list(dict.fromkeys(Vulnerability(*item) for item in vulnerabilities))


def find_vulnerabilities(packages: Iterable[Package]) -> list[Vulnerability]:
    """Scan packages with known versions against all advisory sources."""
    packages = list(packages)
    log.info("Scanning %d packages for security vulnerabilities", len(packages))
    found: list[Vulnerability] = []
    for package in packages:
        version = package.version
        if version is None:
            continue
        log.debug("Checking vulnerabilities for %s %s", package.name, version)
        found.extend(check_local_vulnerability_db(package, version))
        try:
            found.extend(_check_osv_database(package, version))
        except VulnerabilityLookupError as exc:
            log.warning("OSV API error for %s: %s", package.name, exc)
        if package.channel in ("pip", "conda-forge"):
            try:
                found.extend(_check_pypi_security(package, version))
            except VulnerabilityLookupError as exc:
                log.warning("PyPI security API error for %s: %s", package.name, exc)
        found.extend(_check_version_gap(package, version))

    result = deduplicate_vulnerabilities(found)
    log.info(
        "Found %d vulnerabilities across %d packages", len(result), len(packages)
    )
    return result