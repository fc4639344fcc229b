"""Tests for restore_member_gaps.py: blank lines between class members survive formatting."""

import subprocess

import restore_member_gaps as gaps_module
from restore_member_gaps import format_preserving_gaps, restore_member_gaps, snapshot_member_gaps

SPACED = """class A {
  foo() {
    return 1;
  }

  bar() {
    return 2;
  }
  baz() {
    return 3;
  }
}
"""


def _collapse(text):
    return "\n".join(line for line in text.splitlines() if line.strip()) + "\n"


def test_snapshot_records_only_existing_gaps():
    assert snapshot_member_gaps(SPACED, ".js") == {("A#1", "method_definition:bar", 1)}


def test_snapshot_of_unparseable_source():
    assert snapshot_member_gaps("class {{{\n<<<<<<<\n", ".js") is None


def test_restore_puts_back_collapsed_gap():
    gaps = snapshot_member_gaps(SPACED, ".js")
    restored, count = restore_member_gaps(_collapse(SPACED), ".js", gaps)
    assert count == 1
    assert restored == SPACED


def test_restore_leaves_intact_gaps_alone():
    gaps = snapshot_member_gaps(SPACED, ".js")
    assert restore_member_gaps(SPACED, ".js", gaps) == (SPACED, 0)
    assert restore_member_gaps(_collapse(SPACED), ".js", set()) == (_collapse(SPACED), 0)


def test_restore_keeps_crlf():
    crlf = SPACED.replace("\n", "\r\n")
    gaps = snapshot_member_gaps(crlf, ".ts")
    collapsed = _collapse(SPACED).replace("\n", "\r\n")
    restored, count = restore_member_gaps(collapsed, ".ts", gaps)
    assert count == 1
    assert restored == crlf


def test_format_preserving_gaps(tmp_path, monkeypatch):
    path = tmp_path / "A.js"
    path.write_text(SPACED, encoding="utf-8")

    def fake_prettier(files, cwd, prettier_config=None, extra_args=None):
        for file in files:
            file.write_text(_collapse(file.read_text(encoding="utf-8")), encoding="utf-8")
        return subprocess.CompletedProcess(["prettier"], 0, "", "")

    monkeypatch.setattr(gaps_module, "run_prettier", fake_prettier)
    report = format_preserving_gaps([path], cwd=tmp_path)
    assert report.formatted == 1
    assert report.restored_gaps == 1
    assert report.warnings == []
    assert path.read_text(encoding="utf-8") == SPACED


def test_missing_prettier_is_a_warning(tmp_path, monkeypatch):
    path = tmp_path / "A.js"
    path.write_text(SPACED, encoding="utf-8")

    def no_prettier(files, cwd, prettier_config=None, extra_args=None):
        raise FileNotFoundError("npx")

    monkeypatch.setattr(gaps_module, "run_prettier", no_prettier)
    report = format_preserving_gaps([path], cwd=tmp_path)
    assert report.formatted == 0
    assert report.warnings[0].startswith("prettier not available")
    assert path.read_text(encoding="utf-8") == SPACED


def test_prettier_failure_is_reported(tmp_path, monkeypatch):
    path = tmp_path / "A.js"
    path.write_text(SPACED, encoding="utf-8")
    monkeypatch.setattr(
        gaps_module,
        "run_prettier",
        lambda files, cwd, prettier_config=None, extra_args=None: subprocess.CompletedProcess(
            ["prettier"], 2, "", "boom\nstack"
        ),
    )
    report = format_preserving_gaps([path], cwd=tmp_path)
    assert report.formatted == 0
    assert report.warnings == ["prettier exited with 2: boom"]
