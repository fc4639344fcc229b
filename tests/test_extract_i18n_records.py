"""Tests for extract_i18n_records.py: candidate discovery and exclusion rules."""

import sys

from extract_i18n_records import (
    collect_files,
    dedup_by_key,
    extract_source,
    main,
    scan_roots,
)
from i18n_config import config_from_mapping
from i18n_hash import content_hash
from i18n_ledger import load_ledger

GREETING = """import React from 'react';

export function Greeting({ name }) {
  const title = '欢迎';
  return (
    <View testID="登录按钮">
      <Text>你好世界</Text>
      <Text>{`你好，${name}！`}</Text>
    </View>
  );
}
"""


def _texts(result):
    return [record.text for record in result.records]


def test_extracts_strings_jsx_text_and_templates(config, scheme):
    result = extract_source(GREETING, "src/Greeting.jsx", config, scheme)
    assert result.error is None
    assert _texts(result) == ["欢迎", "你好世界", "你好，{{Identifier1}}！"]
    assert [r.line for r in result.records] == [4, 7, 8]
    for record in result.records:
        assert record.key == scheme.make_key(record.text)
        assert record.file == "src/Greeting.jsx"
        assert record.content_hash == content_hash(record.text, "src/Greeting.jsx")
    assert result.records[0].context.startswith("Greeting | ")


def test_extraction_is_deterministic(config, scheme):
    first = extract_source(GREETING, "src/Greeting.jsx", config, scheme)
    second = extract_source(GREETING, "src/Greeting.jsx", config, scheme)
    assert [r.key for r in first.records] == [r.key for r in second.records]


def test_test_attributes_excluded_in_every_quoting_style(config, scheme):
    code = """export const Buttons = ({ id, props }) => {
  props.testID = '按钮六';
  props['accessibilityLabel'] = '按钮七';
  const extra = { testID: '按钮五' };
  return (
    <>
      <View testID="按钮一" />
      <View testID={'按钮二'} />
      <View testID={`按钮三`} />
      <View testID={('按钮四')} />
      <View testID={'前缀' + id} />
      <View testID={`按钮${id}`} />
      <Text title="可见">可见</Text>
    </>
  );
};
"""
    result = extract_source(code, "src/Buttons.jsx", config, scheme)
    assert _texts(result) == ["可见", "可见"]


def test_custom_test_attribute(scheme):
    config, _ = config_from_mapping({"testAttributes": ["data-testid"]})
    code = 'const a = <div data-testid="测试" title="标题" />;\n'
    result = extract_source(code, "src/a.jsx", config, scheme)
    assert _texts(result) == ["标题"]


def test_type_only_positions_excluded(config, scheme):
    code = """type Mode = '编辑' | '查看';
interface Props {
  label: '编辑';
}
function pick(mode: '编辑'): '查看' {
  return '查看';
}
const label = '编辑';
"""
    result = extract_source(code, "src/mode.ts", config, scheme)
    assert _texts(result) == ["查看", "编辑"]
    assert [r.line for r in result.records] == [6, 8]


def test_non_display_positions_excluded(config, scheme):
    code = """import icon from './图标.png';
import { styles as s } from '样式';
const styles = StyleSheet.create({ title: { fontFamily: '宋体' } });
const map = { '中文键': 1 };
const query = gql`查询`;
// const old = '注释';
/* '块注释' */
const shown = '显示';
"""
    result = extract_source(code, "src/misc.js", config, scheme)
    assert _texts(result) == ["显示"]


def test_line_directive(config, scheme):
    code = """// i18n-ignore
const a = '忽略';
const b = '保留';
const c = [
  '行内', // i18n-ignore
  '下一行',
  '保留二',
];
"""
    result = extract_source(code, "src/d.js", config, scheme)
    assert _texts(result) == ["保留", "保留二"]


def test_directive_covers_whole_next_statement(config, scheme):
    code = """// i18n-ignore
const options = [
  '选项一',
  '选项二',
];
const after = '之后';
"""
    result = extract_source(code, "src/o.js", config, scheme)
    assert _texts(result) == ["之后"]


def test_file_directive_skips_file(config, scheme):
    result = extract_source("// i18n-ignore-file\nconst a = '中文';\n", "src/x.js", config, scheme)
    assert result.skipped_by_directive
    assert result.records == []


def test_template_placeholders_count_per_kind(config, scheme):
    code = "const s = `共${items.length}项，${fmt(x)}和${y}、${z}`;\n"
    result = extract_source(code, "src/t.js", config, scheme)
    assert _texts(result) == ["共{{MemberExpression1}}项，{{CallExpression1}}和{{Identifier1}}、{{Identifier2}}"]


def test_same_template_shape_shares_key(config, scheme):
    code = "const a = `你好，${user.name}`;\nconst b = `你好，${other.name}`;\n"
    result = extract_source(code, "src/t.js", config, scheme)
    assert len({r.key for r in result.records}) == 1
    assert len(dedup_by_key(result.records)) == 1


def test_template_line_is_first_target_character(config, scheme):
    code = "const msg = `\n  第一行`;\n"
    result = extract_source(code, "src/t.js", config, scheme)
    assert [r.line for r in result.records] == [2]


def test_jsx_entities_and_whitespace(config, scheme):
    code = "const a = (\n  <p>\n    你好&amp;再见\n  </p>\n);\n"
    result = extract_source(code, "src/e.jsx", config, scheme)
    assert _texts(result) == ["你好&再见"]
    assert result.records[0].line == 3


def test_parse_failure_reported(config, scheme):
    result = extract_source("const = '中文';\n<<<<<<<\n", "src/bad.js", config, scheme)
    assert result.records == []
    assert "parse failed" in result.error


def test_link_prefix(scheme):
    config, _ = config_from_mapping({"linkPrefix": "https://git.example.com/app/-/blob/main/"})
    result = extract_source("const a = '中文';\n", "src/a.js", config, scheme)
    assert result.records[0].link == "https://git.example.com/app/-/blob/main/src/a.js#L1"


def test_collect_files_honours_exclusions(tmp_path, write_source):
    write_source("src/App.tsx", "")
    write_source("src/util.js", "")
    write_source("src/types.d.ts", "")
    write_source("src/node_modules/lib/index.js", "")
    write_source("src/__tests__/App.test.js", "")
    write_source("src/readme.md", "")
    config, _ = config_from_mapping({"ignoreFiles": ["__tests__"]})
    files = collect_files(tmp_path / "src", config)
    assert [p.relative_to(tmp_path).as_posix() for p in files] == ["src/App.tsx", "src/util.js"]


def test_scan_roots_dedups_per_sheet(tmp_path, write_source, config):
    write_source("app/a.js", "const a = '重复';\n")
    write_source("app/b.js", "const b = '重复';\nconst c = '唯一';\n")
    write_source("app/broken.js", "const = '坏';\n<<<<<<<\n")
    outcome = scan_roots([tmp_path / "app"], tmp_path, config, concurrency=2)
    assert list(outcome.sheets) == ["app"]
    rows = outcome.sheets["app"]
    assert [(r.text, r.file) for r in rows] == [("重复", "app/a.js"), ("唯一", "app/b.js")]
    assert all(r.sheet == "app" for r in rows)
    assert outcome.failed_files == ["app/broken.js"]
    assert len(outcome.errors) == 1

    every = scan_roots([tmp_path / "app"], tmp_path, config, dedup=False)
    assert len(every.sheets["app"]) == 3


def test_scan_cli_writes_ledger(tmp_path, write_source, monkeypatch):
    write_source("src/a.js", "const a = '你好';\n")
    out = tmp_path / "i18n.xlsx"
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(sys, "argv", ["extract_i18n_records.py", "--src", "src", "--out", str(out)])
    assert main() == 0
    ledger = load_ledger(out)
    assert [r.text for r in ledger.records()] == ["你好"]
    assert ledger.records()[0].file == "src/a.js"


def test_export_default_value_is_extracted(config, scheme):
    code = "export default '欢迎使用';\nexport { a } from './模块';\nimport '样式';\n"
    result = extract_source(code, "src/a.js", config, scheme)
    assert _texts(result) == ["欢迎使用"]


def test_keys_do_not_depend_on_line_endings(config, scheme):
    lf = "const a = `第一行\n第二行${x}`;\nconst b = (\n  <p>\n    第一行\n    第二行\n  </p>\n);\n"
    crlf = lf.replace("\n", "\r\n")
    from_lf = extract_source(lf, "src/a.jsx", config, scheme)
    from_crlf = extract_source(crlf, "src/a.jsx", config, scheme)
    assert from_lf.records[0].text == "第一行\n第二行{{Identifier1}}"
    assert [r.text for r in from_crlf.records] == [r.text for r in from_lf.records]
    assert [r.key for r in from_crlf.records] == [r.key for r in from_lf.records]
    assert [r.line for r in from_crlf.records] == [r.line for r in from_lf.records] == [1, 5]
    assert all("\r" not in r.text for r in from_crlf.records)


def test_sheet_names_are_valid_sheet_titles(tmp_path, write_source, config):
    long_name = "very_long_source_root_directory_name"
    write_source(f"{long_name}/a.js", "const a = '中文';\n")
    outcome = scan_roots([tmp_path / long_name], tmp_path, config)
    [name] = outcome.sheets
    assert name == long_name[:31]
    assert all(r.sheet == name for r in outcome.sheets[name])
