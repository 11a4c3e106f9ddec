import json

import pytest

from condainspect.exporters import (
    ExportFormat,
    export_analysis,
    format_size,
    render_analysis,
)
from condainspect.models import EnvironmentAnalysis, Package, Recommendation


@pytest.fixture
def analysis():
    packages = [
        Package(
            name="numpy",
            version="1.19.0",
            channel="conda-forge",
            size=10485760,
            is_outdated=True,
            latest_version="1.24.3",
        ),
        Package(name="pandas", version="1.0.0", is_pinned=True),
        Package(name="flask"),
    ]
    return EnvironmentAnalysis(
        name="myenv",
        packages=packages,
        total_size=10485760,
        pinned_count=1,
        outdated_count=1,
        recommendations=[Recommendation(description="Update numpy", value="1.0")],
    )


def test_format_parse_aliases():
    assert ExportFormat.parse("md") is ExportFormat.MARKDOWN
    assert ExportFormat.parse("TXT") is ExportFormat.TEXT
    assert ExportFormat.parse("Json") is ExportFormat.JSON
    assert ExportFormat.parse("html") is ExportFormat.HTML
    assert ExportFormat.parse("csv") is ExportFormat.CSV


def test_format_parse_unknown():
    with pytest.raises(ValueError):
        ExportFormat.parse("xml")


def test_format_size_units():
    assert format_size(500) == "500 bytes"
    assert format_size(1024) == "1.00 KB"
    assert format_size(10485760).endswith(" MB")
    assert format_size(5 * 1024**3).endswith(" GB")


def test_text(analysis):
    text = render_analysis(analysis, ExportFormat.TEXT)
    lines = text.splitlines()
    assert lines[0] == "Environment: myenv"
    assert lines[1] == "Packages: 3"
    assert f"Total size: {format_size(10485760)}" in lines
    assert "- Update numpy (Value: 1.0)" in lines
    assert "- numpy 1.19.0 [outdated: 1.24.3]" in lines
    assert "- pandas 1.0.0 [pinned]" in lines
    assert "- flask unknown " in lines


def test_text_unknown_name_without_size():
    empty = EnvironmentAnalysis(
        name=None, packages=[], total_size=None, pinned_count=0, outdated_count=0
    )
    text = render_analysis(empty, ExportFormat.TEXT)
    assert text.startswith("Environment: unknown\n")
    assert "Total size" not in text
    assert "Recommendations" not in text


def test_json_round_trip(analysis):
    rendered = render_analysis(analysis, ExportFormat.JSON)
    assert json.loads(rendered) == analysis.to_dict()


def test_markdown(analysis):
    text = render_analysis(analysis, ExportFormat.MARKDOWN)
    assert text.startswith("# Environment Analysis: myenv\n")
    assert "| numpy | 1.19.0 | ⚠️ Outdated (latest: 1.24.3) |" in text
    assert "| pandas | 1.0.0 | 📌 Pinned |" in text
    assert "| flask | unknown | ✅ Up-to-date |" in text


def test_html(analysis):
    text = render_analysis(analysis, ExportFormat.HTML)
    assert text.startswith("<!DOCTYPE html>\n")
    assert text.endswith("</html>\n")
    assert '<td class="outdated">Outdated (latest: 1.24.3)</td>' in text
    assert '<td class="pinned">Pinned</td>' in text
    assert '<td class="uptodate">Up-to-date</td>' in text
    assert "<li>Update numpy (Value: 1.0)</li>" in text


def test_csv(analysis):
    lines = render_analysis(analysis, ExportFormat.CSV).splitlines()
    assert lines[0] == "Package,Version,Channel,Size,Status,Latest Version"
    assert len(lines) == 4
    assert lines[1] == f"numpy,1.19.0,conda-forge,{format_size(10485760)},outdated,1.24.3"
    assert lines[2] == "pandas,1.0.0,,,pinned,"
    assert lines[3] == "flask,,,,up-to-date,"


def test_export_to_file(analysis, tmp_path):
    path = tmp_path / "out.md"
    export_analysis(analysis, ExportFormat.MARKDOWN, path)
    assert path.read_text(encoding="utf-8") == render_analysis(
        analysis, ExportFormat.MARKDOWN
    )


def test_export_to_stdout(analysis, capsys):
    export_analysis(analysis, ExportFormat.CSV)
    captured = capsys.readouterr()
    assert captured.out == render_analysis(analysis, ExportFormat.CSV) + "\n"


def test_export_to_missing_directory(analysis, tmp_path):
    with pytest.raises(OSError):
        export_analysis(analysis, ExportFormat.TEXT, tmp_path / "no" / "out.txt")