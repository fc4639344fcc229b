"""Tests for i18n_ledger.py: workbook read/write, legacy columns, master merge."""

import pytest
from openpyxl import Workbook, load_workbook

from i18n_hash import HashScheme, content_hash
from i18n_ledger import (
    META_SHEET,
    STATUS_DELETED,
    LedgerError,
    TranslationRecord,
    backup_ledger,
    build_link,
    load_ledger,
    merge_into_master,
    safe_sheet_title,
    save_ledger,
)


def _row(key, text, file="src/a.js", line=1, **kwargs):
    return TranslationRecord(
        key=key,
        text=text,
        file=file,
        line=line,
        content_hash=content_hash(text, file),
        **kwargs,
    )


def test_save_and_load_round_trip(tmp_path):
    path = tmp_path / "i18n.xlsx"
    scheme = HashScheme(algorithm="sha1", length=8)
    sheets = {
        "app": [
            _row("k_gone", "旧文本", status=STATUS_DELETED, per_locale={"en": "Old"}),
            _row("k_1", "你好", line=3, per_locale={"en": "Hello"}, context="Page | x"),
        ],
        "lib": [_row("k_2", "再见", file="lib/b.ts", link="https://git.example.com/b.ts#L1")],
    }
    save_ledger(path, sheets, ["en", "ja"], scheme)

    ledger = load_ledger(path)
    assert list(ledger.sheets) == ["app", "lib"]
    assert ledger.locales == ["en", "ja"]
    assert ledger.hash_scheme == scheme
    app = ledger.sheets["app"]
    assert [r.key for r in app] == ["k_1", "k_gone"]
    assert app[0].per_locale == {"en": "Hello"}
    assert app[0].line == 3
    assert app[0].context == "Page | x"
    assert app[0].sheet == "app"
    assert app[1].deleted
    assert ledger.sheets["lib"][0].link == "https://git.example.com/b.ts#L1"
    assert not (tmp_path / ".i18n.xlsx.tmp").exists()


def test_meta_sheet_is_not_a_record_sheet(tmp_path):
    path = tmp_path / "i18n.xlsx"
    save_ledger(path, {"app": [_row("k", "中文")]}, ["en"], HashScheme())
    wb = load_workbook(path)
    assert META_SHEET in wb.sheetnames
    assert META_SHEET not in load_ledger(path).sheets


def test_legacy_ledger_uses_source_locale_column(tmp_path):
    path = tmp_path / "legacy.xlsx"
    wb = Workbook()
    ws = wb.active
    ws.title = "src"
    ws.append(["key", "zh", "en", "file", "line", "gitlab"])
    ws.append(["i18n_abc", "确认删除", "Delete?", "src/a.js", 10, "link"])
    ws.append(["i18n_empty", None, None, "src/a.js", 11, None])
    wb.save(path)

    ledger = load_ledger(path)
    [record] = ledger.records()
    assert record.text == "确认删除"
    assert record.per_locale == {"zh": "确认删除", "en": "Delete?"}
    assert record.line == 10
    assert record.link == ""
    assert record.content_hash == content_hash("确认删除", "src/a.js")
    assert ledger.locales == ["zh", "en"]


def test_sheet_without_key_column_is_skipped(tmp_path):
    path = tmp_path / "odd.xlsx"
    wb = Workbook()
    wb.active.append(["name", "value"])
    wb.save(path)
    ledger = load_ledger(path)
    assert ledger.records() == []
    assert any("no 'key' column" in w for w in ledger.warnings)


def test_missing_and_corrupt_ledgers_raise(tmp_path):
    with pytest.raises(LedgerError):
        load_ledger(tmp_path / "absent.xlsx")
    broken = tmp_path / "broken.xlsx"
    broken.write_text("not a workbook", encoding="utf-8")
    with pytest.raises(LedgerError):
        load_ledger(broken)


def test_backup_ledger(tmp_path):
    path = tmp_path / "i18n.xlsx"
    save_ledger(path, {"app": [_row("k", "中文")]}, ["en"], HashScheme())
    backup = backup_ledger(path)
    assert backup.name.startswith("i18n.xlsx.backup.")
    assert backup.read_bytes() == path.read_bytes()


def test_merge_into_master_appends_unseen_keys(tmp_path):
    master = tmp_path / "master.xlsx"
    save_ledger(master, {"app": [_row("k_old", "旧")]}, ["en"], HashScheme())

    incoming = {
        "app": [
            _row("k_old", "旧"),
            _row("k_z", "乙", file="src/z/Zeta.js", line=2),
            _row("k_a", "甲", file="lib/Alpha.js", line=9),
            _row("k_dead", "删", status=STATUS_DELETED),
        ],
        "new sheet": [_row("k_n", "新")],
    }
    assert merge_into_master(master, incoming, ["en"]) == 3

    wb = load_workbook(master)
    keys = [row[0] for row in wb["app"].iter_rows(min_row=2, values_only=True)]
    assert keys == ["k_old", "k_a", "k_z"]
    assert [row[0] for row in wb["new sheet"].iter_rows(min_row=2, values_only=True)] == ["k_n"]


def test_merge_into_master_creates_missing_workbook(tmp_path):
    master = tmp_path / "master.xlsx"
    assert merge_into_master(master, {"app": [_row("k", "中文")]}, ["en"]) == 1
    assert [r.key for r in load_ledger(master).records()] == ["k"]


def test_build_link_and_sheet_titles():
    assert build_link(None, "a.js", 1) == ""
    assert build_link("https://h/x/", "src/a.js", 7) == "https://h/x/src/a.js#L7"
    assert safe_sheet_title("a/b:c") == "a_b_c"
    assert len(safe_sheet_title("x" * 40)) == 31
