#!/usr/bin/env python3
"""List module-level constants that hold target-script text.

Top-level ``const``/``let`` declarations (exported or not) and TS enums are
evaluated once at import time, before any locale is active, so replacing
their literals with ``t(...)`` calls would freeze the first language. They
need a manual rewrite (a getter or a function), and this report finds them.

Recognized initializers:
  - a string literal
  - an array of string literals, also when wrapped in a call: Object.freeze([...])
  - an object whose property values are string literals
  - enum members initialized with string literals

Usage:
  python scan_static_consts.py --src src
  python scan_static_consts.py --src src,../lib/src --out static-consts.csv
"""

from __future__ import annotations

import argparse
import concurrent.futures
import csv
import logging
from dataclasses import dataclass, field
from pathlib import Path

from tree_sitter import Node

from extract_i18n_records import (
    collect_files,
    print_diagnostics,
    relative_path,
    setup_logging,
    split_paths,
)
from i18n_config import ToolConfig, load_config
from i18n_syntax import node_line, parse_source, string_value, unwrap_parens

logger = logging.getLogger(__name__)

DECLARATION_KINDS = {"const", "let"}
CSV_HEADER = ["name", "type", "value_count", "value_preview", "file", "line"]
CONSOLE_PREVIEW_ITEMS = 5


@dataclass(frozen=True)
class StaticConst:
    name: str
    kind: str
    values: tuple[str, ...]
    file: str
    line: int


@dataclass
class ConstScanResult:
    path: str
    items: list[StaticConst] = field(default_factory=list)
    error: str | None = None


def _text(node: Node) -> str:
    return node.text.decode("utf-8", errors="replace")


def _string_of(node: Node | None, source: bytes, config: ToolConfig) -> str | None:
    if node is None:
        return None
    node = unwrap_parens(node)
    if node.type != "string":
        return None
    value = string_value(node, source)
    return value if config.has_target_text(value) else None


def _property_name(key: Node, source: bytes) -> str:
    if key.type == "string":
        return string_value(key, source)
    return _text(key)


def _array_values(node: Node, source: bytes, config: ToolConfig) -> list[str]:
    values: list[str] = []
    for element in node.named_children:
        value = _string_of(element, source, config)
        if value is not None:
            values.append(value)
    return values


def _initializer_values(
    value: Node, source: bytes, config: ToolConfig
) -> tuple[str, list[str]] | None:
    value = unwrap_parens(value)
    single = _string_of(value, source, config)
    if single is not None:
        return "string", [single]
    if value.type == "array":
        return "array", _array_values(value, source, config)
    if value.type == "call_expression":
        args = value.child_by_field_name("arguments")
        first = args.named_children[0] if args is not None and args.named_children else None
        if first is not None and unwrap_parens(first).type == "array":
            return "array", _array_values(unwrap_parens(first), source, config)
        return None
    if value.type == "object":
        pairs: list[str] = []
        for prop in value.named_children:
            if prop.type != "pair":
                continue
            key = prop.child_by_field_name("key")
            text = _string_of(prop.child_by_field_name("value"), source, config)
            if key is not None and text is not None:
                pairs.append(f"{_property_name(key, source)}:{text}")
        return "object", pairs
    return None


def _enum_item(node: Node, source: bytes, config: ToolConfig, rel_path: str) -> StaticConst | None:
    name = node.child_by_field_name("name")
    body = node.child_by_field_name("body")
    if name is None or body is None:
        return None
    members: list[str] = []
    for member in body.named_children:
        if member.type != "enum_assignment":
            continue
        key = member.child_by_field_name("name")
        text = _string_of(member.child_by_field_name("value"), source, config)
        if key is not None and text is not None:
            members.append(f"{_property_name(key, source)}:{text}")
    if not members:
        return None
    return StaticConst(_text(name), "object", tuple(members), rel_path, node_line(node))


def _declaration_items(
    node: Node, source: bytes, config: ToolConfig, rel_path: str
) -> list[StaticConst]:
    kind = node.children[0].type if node.children else ""
    if kind not in DECLARATION_KINDS:
        return []
    items: list[StaticConst] = []
    for declarator in node.named_children:
        if declarator.type != "variable_declarator":
            continue
        name = declarator.child_by_field_name("name")
        value = declarator.child_by_field_name("value")
        if name is None or name.type != "identifier" or value is None:
            continue
        found = _initializer_values(value, source, config)
        if found is None or not found[1]:
            continue
        const_type, values = found
        line = node_line(unwrap_parens(value))
        items.append(StaticConst(_text(name), const_type, tuple(values), rel_path, line))
        logger.debug("%s %s %s at %s:%d", kind, const_type, _text(name), rel_path, line)
    return items


def top_level_declarations(root: Node) -> list[Node]:
    found: list[Node] = []
    for statement in root.named_children:
        node = statement
        if statement.type == "export_statement":
            node = statement.child_by_field_name("declaration")
            if node is None:
                continue
        if node.type in {"lexical_declaration", "enum_declaration"}:
            found.append(node)
    return found


def scan_source(text: str, rel_path: str, config: ToolConfig) -> ConstScanResult:
    result = ConstScanResult(path=rel_path)
    if not config.has_target_text(text):
        return result
    source = text.encode("utf-8")
    outcome, errors = parse_source(source, Path(rel_path).suffix)
    if outcome is None:
        result.error = f"{rel_path}: parse failed ({'; '.join(errors)})"
        return result
    for node in top_level_declarations(outcome.tree.root_node):
        if node.type == "enum_declaration":
            item = _enum_item(node, source, config, rel_path)
            if item is not None:
                result.items.append(item)
        else:
            result.items.extend(_declaration_items(node, source, config, rel_path))
    return result


def scan_file(path: Path, project_root: Path, config: ToolConfig) -> ConstScanResult:
    rel = relative_path(path, project_root)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        return ConstScanResult(path=rel, error=f"{rel}: {exc}")
    return scan_source(text, rel, config)


def scan_many(
    files: list[Path], project_root: Path, config: ToolConfig, concurrency: int = 8
) -> list[ConstScanResult]:
    results: list[ConstScanResult] = []
    with concurrent.futures.ThreadPoolExecutor(max_workers=concurrency) as executor:
        futures = [executor.submit(scan_file, path, project_root, config) for path in files]
        for future in concurrent.futures.as_completed(futures):
            results.append(future.result())
    results.sort(key=lambda r: r.path)
    return results


def write_csv(path: Path, items: list[StaticConst]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.writer(handle)
        writer.writerow(CSV_HEADER)
        for item in items:
            writer.writerow(
                [item.name, item.kind, len(item.values), "|".join(item.values), item.file, item.line]
            )


def format_item(item: StaticConst) -> str:
    where = f"@ {item.file}:{item.line}"
    if item.kind == "string":
        return f'[string] {item.name} = "{item.values[0]}" {where}'
    preview = "、".join(item.values[:CONSOLE_PREVIEW_ITEMS])
    more = "..." if len(item.values) > CONSOLE_PREVIEW_ITEMS else ""
    return f"[{item.kind}] {item.name} ({len(item.values)}) = {preview}{more} {where}"


def main() -> int:
    parser = argparse.ArgumentParser(
        description="List top-level constants holding target-script text (need manual i18n)."
    )
    parser.add_argument("--src", required=True, help="Source root(s), comma separated.")
    parser.add_argument("--out", type=Path, default=None, help="Write a CSV report here.")
    parser.add_argument("--config", type=Path, default=None, help="JSON config file.")
    parser.add_argument("--project-root", type=Path, default=Path("."))
    parser.add_argument("--concurrency", type=int, default=8)
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()
    setup_logging(args.verbose)

    if args.concurrency <= 0:
        raise ValueError("--concurrency must be > 0")

    config, config_warnings = load_config(args.config)
    print_diagnostics("Config warnings", config_warnings)

    project_root = args.project_root.resolve()
    files: list[Path] = []
    warnings: list[str] = []
    for root in (p.resolve() for p in split_paths(args.src)):
        if not root.exists():
            warnings.append(f"Source path not found: {root}")
            continue
        files.extend(collect_files(root, config))

    results = scan_many(files, project_root, config, args.concurrency)
    items = [item for result in results for item in result.items]
    errors = [result.error for result in results if result.error]

    print(f"Scanned files: {len(files)}")
    print(f"Static constants: {len(items)}")
    if args.out and items:
        out_path = args.out.resolve()
        try:
            write_csv(out_path, items)
        except OSError as exc:
            print(f"Failed to write {out_path}: {exc}")
            return 1
        print(f"Output: {out_path}")
    else:
        for item in items:
            print(format_item(item))

    print_diagnostics("Warnings", warnings)
    print_diagnostics("Parse failures (skipped)", errors)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
