"""Rendering an environment analysis as text, JSON, Markdown, HTML or CSV."""

from __future__ import annotations

import json
import os
from enum import Enum

from condainspect.models import EnvironmentAnalysis, Package

_KB = 1024
_MB = _KB * 1024
_GB = _MB * 1024


class ExportFormat(Enum):
    """Output formats for an analysis."""

    TEXT = "text"
    JSON = "json"
    MARKDOWN = "markdown"
    HTML = "html"
    CSV = "csv"

    @classmethod
    def parse(cls, s: str) -> ExportFormat:
        """Look up a format by name or common alias; raise ValueError if unknown."""
        aliases = {
            "text": cls.TEXT,
            "txt": cls.TEXT,
            "json": cls.JSON,
            "markdown": cls.MARKDOWN,
            "md": cls.MARKDOWN,
            "html": cls.HTML,
            "csv": cls.CSV,
        }
        try:
            return aliases[s.lower()]
        except KeyError:
            raise ValueError(f"unknown export format: {s!r}") from None


def format_size(size: int) -> str:
    """Format a byte count for humans."""
    if size >= _GB:
        return f"{size / _GB:.2f} GB"
    if size >= _MB:
        return f"{size / _MB:.2f} MB"
    if size >= _KB:
        return f"{size / _KB:.2f} KB"
    return f"{size} bytes"


def _env_name(analysis: EnvironmentAnalysis) -> str:
    return analysis.name if analysis.name is not None else "unknown"


def _version(package: Package) -> str:
    return package.version if package.version is not None else "unknown"


def _as_text(analysis: EnvironmentAnalysis) -> str:
    lines = [
        f"Environment: {_env_name(analysis)}",
        f"Packages: {len(analysis.packages)}",
    ]
    if analysis.total_size is not None:
        lines.append(f"Total size: {format_size(analysis.total_size)}")
    lines.append(f"Pinned packages: {analysis.pinned_count}")
    lines.append(f"Outdated packages: {analysis.outdated_count}")

    if analysis.recommendations:
        lines.append("")
        lines.append("Recommendations:")
        lines.extend(f"- {rec}" for rec in analysis.recommendations)

    lines.append("")
    lines.append("Package list:")
    for package in analysis.packages:
        if package.is_outdated:
            status = (
                f"[outdated: {package.latest_version}]"
                if package.latest_version is not None
                else "[outdated]"
            )
        elif package.is_pinned:
            status = "[pinned]"
        else:
            status = ""
        lines.append(f"- {package.name} {_version(package)} {status}")
    return "\n".join(lines) + "\n"


def _as_json(analysis: EnvironmentAnalysis) -> str:
    return json.dumps(analysis.to_dict(), indent=2, ensure_ascii=False)


def _as_markdown(analysis: EnvironmentAnalysis) -> str:
    lines = [
        f"# Environment Analysis: {_env_name(analysis)}",
        "",
        f"- **Packages**: {len(analysis.packages)}",
    ]
    if analysis.total_size is not None:
        lines.append(f"- **Total size**: {format_size(analysis.total_size)}")
    lines.append(f"- **Pinned packages**: {analysis.pinned_count}")
    lines.append(f"- **Outdated packages**: {analysis.outdated_count}")

    if analysis.recommendations:
        lines.extend(["", "## Recommendations", ""])
        lines.extend(f"- {rec}" for rec in analysis.recommendations)

    lines.extend(
        [
            "",
            "## Package list",
            "",
            "| Package | Version | Status |",
            "|---------|---------|--------|",
        ]
    )
    for package in analysis.packages:
        if package.is_outdated:
            status = (
                f"⚠️ Outdated (latest: {package.latest_version})"
                if package.latest_version is not None
                else "⚠️ Outdated"
            )
        elif package.is_pinned:
            status = "📌 Pinned"
        else:
            status = "✅ Up-to-date"
        lines.append(f"| {package.name} | {_version(package)} | {status} |")
    return "\n".join(lines) + "\n"


_HTML_HEAD = """\
<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Conda Environment Analysis</title>
  <style>
    body { font-family: Arial, sans-serif; margin: 20px; }
    table { border-collapse: collapse; width: 100%; }
    th, td { border: 1px solid #ddd; padding: 8px; text-align: left; }
    th { background-color: #f2f2f2; }
    tr:nth-child(even) { background-color: #f9f9f9; }
    .outdated { color: #e74c3c; }
    .pinned { color: #3498db; }
    .uptodate { color: #2ecc71; }
  </style>
</head>
<body>
"""

_HTML_FOOT = """\
  </table>
  <footer>
    <p><em>Generated by conda-env-inspect</em></p>
  </footer>
</body>
</html>
"""


def _as_html(analysis: EnvironmentAnalysis) -> str:
    parts = [_HTML_HEAD]
    parts.append(f"  <h1>Environment Analysis: {_env_name(analysis)}</h1>\n")
    parts.append('  <div class="summary">\n')
    parts.append(f"    <p><strong>Packages:</strong> {len(analysis.packages)}</p>\n")
    if analysis.total_size is not None:
        parts.append(
            f"    <p><strong>Total size:</strong> {format_size(analysis.total_size)}</p>\n"
        )
    parts.append(f"    <p><strong>Pinned packages:</strong> {analysis.pinned_count}</p>\n")
    parts.append(
        f"    <p><strong>Outdated packages:</strong> {analysis.outdated_count}</p>\n"
    )
    parts.append("  </div>\n")

    if analysis.recommendations:
        parts.append("  <h2>Recommendations</h2>\n")
        parts.append("  <ul>\n")
        parts.extend(f"    <li>{rec}</li>\n" for rec in analysis.recommendations)
        parts.append("  </ul>\n")

    parts.append("  <h2>Package list</h2>\n")
    parts.append("  <table>\n")
    parts.append("    <tr>\n")
    parts.append("      <th>Package</th>\n")
    parts.append("      <th>Version</th>\n")
    parts.append("      <th>Status</th>\n")
    parts.append("    </tr>\n")
    for package in analysis.packages:
        if package.is_outdated:
            status_class = "outdated"
            status_text = (
                f"Outdated (latest: {package.latest_version})"
                if package.latest_version is not None
                else "Outdated"
            )
        elif package.is_pinned:
            status_class, status_text = "pinned", "Pinned"
        else:
            status_class, status_text = "uptodate", "Up-to-date"
        parts.append("    <tr>\n")
        parts.append(f"      <td>{package.name}</td>\n")
        parts.append(f"      <td>{_version(package)}</td>\n")
        parts.append(f'      <td class="{status_class}">{status_text}</td>\n')
        parts.append("    </tr>\n")
    parts.append(_HTML_FOOT)
    return "".join(parts)


def _as_csv(analysis: EnvironmentAnalysis) -> str:
    lines = ["Package,Version,Channel,Size,Status,Latest Version"]
    for package in analysis.packages:
        if package.is_outdated:
            status = "outdated"
        elif package.is_pinned:
            status = "pinned"
        else:
            status = "up-to-date"
        size = format_size(package.size) if package.size is not None else ""
        lines.append(
            ",".join(
                [
                    package.name,
                    package.version or "",
                    package.channel or "",
                    size,
                    status,
                    package.latest_version or "",
                ]
            )
        )
    return "\n".join(lines) + "\n"


_RENDERERS = {
    ExportFormat.TEXT: _as_text,
    ExportFormat.JSON: _as_json,
    ExportFormat.MARKDOWN: _as_markdown,
    ExportFormat.HTML: _as_html,
    ExportFormat.CSV: _as_csv,
}


def render_analysis(analysis: EnvironmentAnalysis, format: ExportFormat) -> str:
    """Render an analysis in the given format."""
    return _RENDERERS[format](analysis)


def export_analysis(
    analysis: EnvironmentAnalysis,
    format: ExportFormat,
    output_path: str | os.PathLike | None = None,
) -> None:
    """Write the rendered analysis to a file, or print it when no path is given."""
    content = render_analysis(analysis, format)
    if output_path is None:
        print(content)
        return
    try:
        with open(output_path, "w", encoding="utf-8") as handle:
            handle.write(content)
    except OSError as exc:
        raise OSError(f"Failed to create output file: {exc}") from exc