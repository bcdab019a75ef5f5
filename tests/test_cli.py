import json

import pytest
from typer.testing import CliRunner

from cppseek.cli import _collect_files, app, DEFAULT_IGNORE_PATTERNS
from cppseek.logger import configure_logging
from cppseek.services import ChunkingService
from cppseek.version import get_version

runner = CliRunner()


@pytest.fixture
def offline_service(monkeypatch, tokenizer, scanner):
    monkeypatch.setattr(
        "cppseek.cli.ChunkingService",
        lambda: ChunkingService(tokenizer=tokenizer, scanner=scanner),
    )


@pytest.fixture
def project(tmp_path, cpp_source):
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    (root / "build").mkdir()
    (root / "src" / "engine.cpp").write_text(cpp_source, encoding="utf-8")
    (root / "src" / "engine.h").write_text("void step0(int value);\n", encoding="utf-8")
    (root / "src" / "notes.txt").write_text("not source\n", encoding="utf-8")
    (root / "build" / "generated.cpp").write_text("int generated();\n", encoding="utf-8")
    return root


def test_collect_files_filters_suffixes_and_ignored_dirs(project):
    files = _collect_files([project], DEFAULT_IGNORE_PATTERNS)
    assert [path.name for path in files] == ["engine.cpp", "engine.h"]


def test_chunk_command_json_output(offline_service, project):
    result = runner.invoke(
        app, ["chunk", str(project / "src"), "--chunk-size", "200", "--json"]
    )
    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    files = {entry["source_file"]: entry for entry in payload["files"]}
    engine = files[str(project / "src" / "engine.cpp")]
    assert len(engine["chunks"]) > 1
    assert len(engine["overlaps"]) == len(engine["chunks"]) - 1
    assert payload["quality"]["total_overlaps"] == len(engine["overlaps"])


def test_chunk_command_prints_summary(offline_service, project):
    result = runner.invoke(app, ["chunk", str(project / "src" / "engine.cpp"), "-s", "300"])
    assert result.exit_code == 0, result.output
    assert "overlaps=" in result.output
    assert "duplicate_ratio=" in result.output


@pytest.fixture
def restore_logging():
    yield
    configure_logging(enable_console=False)


def test_chunk_command_writes_json_log(offline_service, project, tmp_path, restore_logging):
    log_path = tmp_path / "logs" / "chunk.jsonl"
    result = runner.invoke(
        app,
        ["chunk", str(project / "src"), "-s", "200", "--log", str(log_path), "--log-json"],
    )
    assert result.exit_code == 0, result.output
    events = [json.loads(line) for line in log_path.read_text(encoding="utf-8").splitlines()]
    names = {entry["event"] for entry in events}
    assert "chunks_created" in names
    assert "overlaps_applied" in names


def test_chunk_command_rejects_missing_path(tmp_path):
    result = runner.invoke(app, ["chunk", str(tmp_path / "missing")])
    assert result.exit_code == 2
    assert "Path not found" in result.output


def test_chunk_command_requires_sources(tmp_path):
    (tmp_path / "readme.md").write_text("# nothing\n", encoding="utf-8")
    result = runner.invoke(app, ["chunk", str(tmp_path)])
    assert result.exit_code == 2
    assert "No C-family source files" in result.output


def test_chunk_command_rejects_invalid_size(project):
    result = runner.invoke(app, ["chunk", str(project), "--chunk-size", "0"])
    assert result.exit_code == 2


def test_scan_command_lists_boundaries(tmp_path):
    source = tmp_path / "math.cpp"
    source.write_text(
        "#include <cmath>\n\nint add(int a, int b) {\n    return a + b;\n}\n",
        encoding="utf-8",
    )
    result = runner.invoke(app, ["scan", str(source)])
    assert result.exit_code == 0, result.output
    assert "function" in result.output
    assert "add" in result.output
    assert "preprocessor" in result.output


def test_version_command():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert result.output.strip() == get_version()
