"""Tests for apply_i18n_keys.py: tree rewriting, import insertion, regex fallback."""

import sys

from apply_i18n_keys import (
    build_key_index,
    group_by_file,
    main,
    rewrite_fallback,
    rewrite_file,
    rewrite_source,
)
from extract_i18n_records import extract_source
from i18n_ledger import STATUS_DELETED, TranslationRecord, save_ledger

IMPORT_LINE = "import { t } from 'core/util/i18n';"


def _record(text, scheme, file="src/a.js", line=1, **kwargs):
    return TranslationRecord(key=scheme.make_key(text), text=text, file=file, line=line, **kwargs)


def test_template_rewrite_binds_placeholder_to_expression(config, scheme):
    code = "export const greet = (name) => `你好，${name}！`;\n"
    records = extract_source(code, "src/a.js", config, scheme).records
    assert [r.text for r in records] == ["你好，{{Identifier1}}！"]
    key = records[0].key

    result = rewrite_source(code, "src/a.js", records, config)
    assert result.replaced == 1
    assert result.import_added
    assert result.content == (
        f"{IMPORT_LINE}\n"
        f"export const greet = (name) => t('{key}', {{ Identifier1: name }});\n"
    )


def test_round_trip_is_idempotent(config, scheme):
    code = """import React from 'react';

export default function Page({ user }) {
  const label = '提交';
  return (
    <Form title="表单" hint={`共${user.count}条`}>
      <Button testID="提交按钮">{label}</Button>
      <Text>请确认</Text>
    </Form>
  );
}
"""
    records = extract_source(code, "src/Page.jsx", config, scheme).records
    assert len(records) == 4
    first = rewrite_source(code, "src/Page.jsx", records, config)
    assert first.replaced == 4

    again = extract_source(first.content, "src/Page.jsx", config, scheme)
    assert again.error is None
    assert again.records == []

    second = rewrite_source(first.content, "src/Page.jsx", records, config)
    assert second.replaced == 0
    assert second.content == first.content


def test_jsx_positions_are_wrapped(config, scheme):
    code = """import React from 'react';

export default function Page() {
  return <Button title="提交">取消</Button>;
}
"""
    records = extract_source(code, "src/Page.jsx", config, scheme).records
    submit, cancel = scheme.make_key("提交"), scheme.make_key("取消")
    result = rewrite_source(code, "src/Page.jsx", records, config)
    assert f"<Button title={{t('{submit}')}}>{{t('{cancel}')}}</Button>" in result.content
    assert result.content.startswith(f"import React from 'react';\n{IMPORT_LINE}\n")


def test_template_in_jsx_expression_keeps_braces(config, scheme):
    code = "const a = <Tip text={`剩余${n}次`} />;\n"
    records = extract_source(code, "src/a.jsx", config, scheme).records
    key = records[0].key
    result = rewrite_source(code, "src/a.jsx", records, config)
    assert f"<Tip text={{t('{key}', {{ Identifier1: n }})}} />" in result.content


def test_nested_template_expression_is_rewritten(config, scheme):
    code = "const a = `共${ok ? '成功' : '失败'}项`;\n"
    records = extract_source(code, "src/a.js", config, scheme).records
    assert [r.text for r in records] == ["共{{ConditionalExpression1}}项", "成功", "失败"]
    outer, yes, no = (r.key for r in records)
    result = rewrite_source(code, "src/a.js", records, config)
    assert (
        f"const a = t('{outer}', {{ ConditionalExpression1: ok ? t('{yes}') : t('{no}') }});"
        in result.content
    )
    assert "成功" not in result.content


def test_existing_import_is_extended(config, scheme):
    code = "import { fmt } from 'core/util/i18n';\nconst a = '中文';\n"
    result = rewrite_source(code, "src/a.js", [_record("中文", scheme)], config)
    assert result.import_added
    assert result.content.startswith("import { fmt, t } from 'core/util/i18n';\n")


def test_existing_binding_is_reused(config, scheme):
    code = "import { t } from '@/i18n';\nconst a = '中文';\n"
    result = rewrite_source(code, "src/a.js", [_record("中文", scheme)], config)
    assert not result.import_added
    assert result.content.count("import") == 1


def test_import_goes_after_directive_prologue(config, scheme):
    code = "'use client';\nconst a = '中文';\n"
    key = scheme.make_key("中文")
    result = rewrite_source(code, "src/a.js", [_record("中文", scheme)], config)
    assert result.content == f"'use client';\n{IMPORT_LINE}\nconst a = t('{key}');\n"


def test_legacy_segment_keys(config, scheme):
    code = "const a = `你好${name}`;\n"
    key = scheme.make_key("你好")
    result = rewrite_source(code, "src/a.js", [_record("你好", scheme)], config)
    assert f"const a = `${{t('{key}')}}${{name}}`;" in result.content


def test_excluded_literals_are_left_alone(config, scheme):
    code = "const a = '按钮';\nconst b = <View testID=\"按钮\" />;\n"
    key = scheme.make_key("按钮")
    result = rewrite_source(code, "src/a.jsx", [_record("按钮", scheme)], config)
    assert result.replaced == 1
    assert f"const a = t('{key}');" in result.content
    assert 'testID="按钮"' in result.content


def test_regex_fallback_for_unparseable_source(config, scheme):
    code = """// 旧值 '中文'
const a = '中文';
<<<<<<< broken
const b = <div title="标题">{ '内容' }</div>
const c = `你好，${name}`;
"""
    records = [
        _record("中文", scheme),
        _record("标题", scheme),
        _record("内容", scheme),
        _record("你好，{{Identifier1}}", scheme),
    ]
    keys = {r.text: r.key for r in records}
    result = rewrite_source(code, "src/broken.jsx", records, config)
    assert result.degraded
    assert result.replaced == 3
    assert result.import_added
    assert result.content.startswith(IMPORT_LINE + "\n// 旧值 '中文'\n")
    assert f"const a = t('{keys['中文']}');" in result.content
    assert f"<div title={{t('{keys['标题']}')}}>{{t('{keys['内容']}')}}</div>" in result.content
    assert "`你好，${name}`" in result.content
    assert any("manual edit" in w for w in result.warnings)
    assert any("parse failed" in w for w in result.warnings)


def test_regex_fallback_respects_directives(config, scheme):
    code = "// i18n-ignore\nconst a = '中文';\nconst b = '中文';\n<<<<<<<\n"
    records = [_record("中文", scheme)]
    result = rewrite_fallback(code, "src/x.js", build_key_index(records), config)
    assert result.replaced == 1
    assert "const a = '中文';" in result.content


def test_rewrite_file_keeps_crlf(tmp_path, config, scheme):
    path = tmp_path / "src" / "a.js"
    path.parent.mkdir()
    path.write_bytes("const a = '中文';\r\nconst b = 1;\r\n".encode("utf-8"))
    outcome = rewrite_file(tmp_path, "src/a.js", [_record("中文", scheme)], config, dry_run=False)
    assert outcome.written
    data = path.read_bytes()
    assert f"const a = t('{scheme.make_key('中文')}');\r\n".encode("utf-8") in data
    assert b"const b = 1;\r\n" in data


def test_rewrite_file_dry_run_and_missing(tmp_path, config, scheme):
    path = tmp_path / "a.js"
    path.write_text("const a = '中文';\n", encoding="utf-8")
    outcome = rewrite_file(tmp_path, "a.js", [_record("中文", scheme)], config, dry_run=True)
    assert outcome.replaced == 1
    assert not outcome.written
    assert path.read_text(encoding="utf-8") == "const a = '中文';\n"

    missing = rewrite_file(tmp_path, "gone.js", [_record("中文", scheme)], config, dry_run=False)
    assert missing.missing


def test_group_by_file_skips_deleted_rows(scheme):
    rows = [
        _record("甲", scheme, file="a.js"),
        _record("乙", scheme, file="a.js", status=STATUS_DELETED),
        _record("丙", scheme, file="b.js"),
    ]
    grouped = group_by_file(rows)
    assert {name: [r.text for r in items] for name, items in grouped.items()} == {
        "a.js": ["甲"],
        "b.js": ["丙"],
    }


def test_replace_cli_rewrites_files_from_ledger(tmp_path, monkeypatch, write_source, scheme):
    write_source("src/a.js", "const a = '中文';\n")
    ledger = tmp_path / "i18n.xlsx"
    save_ledger(
        ledger,
        {"src": [_record("中文", scheme), _record("消失", scheme, file="src/gone.js")]},
        ["en"],
        scheme,
    )
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(
        sys,
        "argv",
        ["apply_i18n_keys.py", "--ledger", str(ledger), "--import-path", "@/i18n"],
    )
    assert main() == 0
    key = scheme.make_key("中文")
    assert (tmp_path / "src" / "a.js").read_text(encoding="utf-8") == (
        f"import {{ t }} from '@/i18n';\nconst a = t('{key}');\n"
    )


def test_import_goes_below_header_comment(config, scheme):
    code = "/**\n * Copyright Example Ltd.\n */\n\nconst a = '中文';\n"
    key = scheme.make_key("中文")
    result = rewrite_source(code, "src/a.js", [_record("中文", scheme)], config)
    assert result.content == (
        f"/**\n * Copyright Example Ltd.\n */\n{IMPORT_LINE}\n\nconst a = t('{key}');\n"
    )


def test_import_stays_above_comment_attached_to_code(config, scheme):
    code = "// greeting label\nconst a = '中文';\n"
    key = scheme.make_key("中文")
    result = rewrite_source(code, "src/a.js", [_record("中文", scheme)], config)
    assert result.content == f"{IMPORT_LINE}\n// greeting label\nconst a = t('{key}');\n"
