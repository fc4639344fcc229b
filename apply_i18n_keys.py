#!/usr/bin/env python3
"""Rewrite source literals listed in the ledger into lookup calls.

For every file referenced by the ledger, literals whose canonical text has a
ledger row become ``t('<key>')`` (``{t('<key>')}`` in JSX attribute/text
position, ``t('<key>', { Identifier1: expr })`` for templates), and an
``import { t } from '<importPath>'`` is added when the module has no binding
for the lookup function yet.

Files that no grammar can parse get a regex substitution instead; those are
reported as degraded and should be reviewed by hand.

Usage:
    python apply_i18n_keys.py --ledger i18n.xlsx
    python apply_i18n_keys.py --ledger i18n.xlsx --import-path @/i18n --fix-lint
    python apply_i18n_keys.py --ledger i18n.xlsx --file src/pages/Home.tsx --dry-run
"""

from __future__ import annotations

import argparse
import concurrent.futures
import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from pathlib import Path

from tree_sitter import Node

from extract_i18n_records import (
    Candidate,
    accepted_candidates,
    print_diagnostics,
    relative_path,
    setup_logging,
)
from i18n_config import ToolConfig, load_config
from i18n_ledger import LedgerError, TranslationRecord, load_ledger
from i18n_syntax import (
    CommentIndex,
    build_suppression,
    has_file_directive,
    parse_source,
    string_value,
)
from restore_member_gaps import format_preserving_gaps

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\{\{[^{}]+\}\}")
SHEBANG_RE = re.compile(rb"^#![^\n]*\n?")


@dataclass
class RewriteResult:
    content: str
    replaced: int = 0
    import_added: bool = False
    degraded: bool = False
    warnings: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.replaced > 0 or self.import_added


@dataclass(frozen=True)
class Edit:
    start: int
    end: int
    render: Callable[[bytes, list[Edit]], bytes]


def call_text(func: str, key: str, params: str | None = None) -> str:
    if params:
        return f"{func}('{key}', {{ {params} }})"
    return f"{func}('{key}')"


def apply_edits(source: bytes, start: int, end: int, edits: list[Edit]) -> bytes:
    """Render source[start:end] with every edit inside it; nested edits are
    rendered by the edit that encloses them."""
    inner = sorted(
        (e for e in edits if start <= e.start and e.end <= end),
        key=lambda e: (e.start, -e.end),
    )
    out: list[bytes] = []
    cursor = start
    for edit in inner:
        if edit.start < cursor:
            continue
        out.append(source[cursor : edit.start])
        out.append(edit.render(source, edits))
        cursor = edit.end
    out.append(source[cursor:end])
    return b"".join(out)


def build_key_index(records: Iterable[TranslationRecord]) -> dict[str, str]:
    index: dict[str, str] = {}
    for record in records:
        index.setdefault(record.text, record.key)
    return index


def _in_attribute(node: Node) -> bool:
    parent = node.parent
    return parent is not None and parent.type == "jsx_attribute"


def _constant(text: str) -> Callable[[bytes, list[Edit]], bytes]:
    encoded = text.encode("utf-8")
    return lambda _source, _edits: encoded


def _template_call(
    candidate: Candidate, key: str, func: str, wrap: bool
) -> Callable[[bytes, list[Edit]], bytes]:
    def render(source: bytes, edits: list[Edit]) -> bytes:
        params = ", ".join(
            f"{name}: "
            + apply_edits(source, expr.start_byte, expr.end_byte, edits).decode("utf-8")
            for name, expr in zip(candidate.placeholders, candidate.expressions)
        )
        call = call_text(func, key, params or None)
        return (f"{{{call}}}" if wrap else call).encode("utf-8")

    return render


def plan_edits(
    candidates: list[Candidate], key_index: dict[str, str], config: ToolConfig
) -> tuple[list[Edit], list[str]]:
    func = config.lookup_function
    edits: list[Edit] = []
    replaced_texts: list[str] = []
    for candidate in candidates:
        key = key_index.get(candidate.text)
        if candidate.kind == "string" and key:
            call = call_text(func, key)
            if _in_attribute(candidate.node):
                call = f"{{{call}}}"
            edits.append(Edit(candidate.start_byte, candidate.end_byte, _constant(call)))
            replaced_texts.append(candidate.text)
        elif candidate.kind == "jsx_text" and key:
            edits.append(
                Edit(candidate.start_byte, candidate.end_byte, _constant(f"{{{call_text(func, key)}}}"))
            )
            replaced_texts.append(candidate.text)
        elif candidate.kind == "template" and key:
            edits.append(
                Edit(
                    candidate.start_byte,
                    candidate.end_byte,
                    _template_call(candidate, key, func, _in_attribute(candidate.node)),
                )
            )
            replaced_texts.append(candidate.text)
        elif candidate.kind == "template":
            # rows written before whole-template keys existed hold single segments
            for segment in candidate.segments:
                segment_key = key_index.get(segment.raw)
                if not segment_key:
                    continue
                edits.append(
                    Edit(
                        segment.start_byte,
                        segment.end_byte,
                        _constant(f"${{{call_text(func, segment_key)}}}"),
                    )
                )
                replaced_texts.append(segment.raw)
    return edits, replaced_texts


def _import_binds(node: Node, name: str) -> bool:
    for child in node.named_children:
        if child.type != "import_clause":
            continue
        for part in child.named_children:
            if part.type == "identifier" and part.text.decode() == name:
                return True
            if part.type == "namespace_import":
                alias = [c for c in part.named_children if c.type == "identifier"]
                if alias and alias[-1].text.decode() == name:
                    return True
            if part.type == "named_imports":
                for spec in part.named_children:
                    if spec.type != "import_specifier":
                        continue
                    alias = spec.child_by_field_name("alias")
                    if alias is None:
                        alias = spec.child_by_field_name("name")
                    if alias is not None and alias.text.decode().strip("'\"") == name:
                        return True
    return False


def _declaration_binds(node: Node, name: str) -> bool:
    if node.type == "export_statement":
        declaration = node.child_by_field_name("declaration")
        return declaration is not None and _declaration_binds(declaration, name)
    if node.type in {"function_declaration", "generator_function_declaration", "class_declaration"}:
        ident = node.child_by_field_name("name")
        return ident is not None and ident.text.decode() == name
    if node.type in {"lexical_declaration", "variable_declaration"}:
        for declarator in node.named_children:
            if declarator.type != "variable_declarator":
                continue
            target = declarator.child_by_field_name("name")
            if target is None:
                continue
            if target.type == "identifier" and target.text.decode() == name:
                return True
            if target.type == "object_pattern":
                for part in target.named_children:
                    if part.type == "shorthand_property_identifier_pattern" and part.text.decode() == name:
                        return True
                    if part.type == "pair_pattern":
                        value = part.child_by_field_name("value")
                        if value is not None and value.text.decode() == name:
                            return True
    return False


def has_module_binding(root: Node, name: str) -> bool:
    for node in root.named_children:
        if node.type == "import_statement":
            if _import_binds(node, name):
                return True
        elif _declaration_binds(node, name):
            return True
    return False


def import_edit(root: Node, source: bytes, config: ToolConfig) -> Edit:
    """Extend an import from ``import_path`` or insert a new import line."""
    func = config.lookup_function
    imports = [n for n in root.named_children if n.type == "import_statement"]
    for node in imports:
        src = node.child_by_field_name("source")
        if src is None or string_value(src, source) != config.import_path:
            continue
        if any(c.type == "type" for c in node.children):
            continue
        clause = next((c for c in node.named_children if c.type == "import_clause"), None)
        if clause is None:
            continue
        named = next((c for c in clause.named_children if c.type == "named_imports"), None)
        if named is not None:
            specs = [c for c in named.named_children if c.type == "import_specifier"]
            if specs:
                return Edit(specs[-1].end_byte, specs[-1].end_byte, _constant(f", {func}"))
            return Edit(named.start_byte, named.end_byte, _constant(f"{{ {func} }}"))
        if not any(c.type == "namespace_import" for c in clause.named_children):
            return Edit(clause.end_byte, clause.end_byte, _constant(f", {{ {func} }}"))

    line = f"import {{ {func} }} from '{config.import_path}';"
    if imports:
        pos = imports[-1].end_byte
        return Edit(pos, pos, _constant(f"\n{line}"))

    pos = 0
    shebang = SHEBANG_RE.match(source)
    if shebang:
        pos = shebang.end()
    for node in root.named_children:
        if node.type == "hash_bang_line":
            continue
        if node.type == "comment":
            # a header comment ends in a blank line; otherwise it documents the next statement
            following = node.next_named_sibling
            between = source[node.end_byte : following.start_byte] if following is not None else b"\n\n"
            if b"\n\n" not in between.replace(b"\r", b""):
                break
            pos = node.end_byte
            continue
        # directive prologue ('use client', 'use strict') must stay first
        if node.type == "expression_statement" and node.named_child_count == 1 and node.named_children[0].type == "string":
            pos = node.end_byte
            continue
        break
    if pos and source[pos - 1 : pos] != b"\n":
        return Edit(pos, pos, _constant(f"\n{line}"))
    return Edit(pos, pos, _constant(f"{line}\n"))


def rewrite_tree(
    text: str,
    rel_path: str,
    key_index: dict[str, str],
    config: ToolConfig,
) -> RewriteResult | None:
    source = text.encode("utf-8")
    outcome, _errors = parse_source(source, Path(rel_path).suffix)
    if outcome is None:
        return None
    root = outcome.tree.root_node
    candidates = accepted_candidates(root, source, text, config)
    edits, replaced_texts = plan_edits(candidates, key_index, config)
    result = RewriteResult(content=text, replaced=len(edits))
    if not edits:
        return result
    if not has_module_binding(root, config.lookup_function):
        edits.append(import_edit(root, source, config))
        result.import_added = True
    result.content = apply_edits(source, 0, len(source), edits).decode("utf-8")
    for replaced in replaced_texts:
        logger.debug("%s: replaced %r", rel_path, replaced)
    return result


IMPORT_LINE_RE = re.compile(r"^import\b[^\n]*?(?:;|from\s*['\"][^'\"]+['\"])[ \t]*$", re.MULTILINE)


def _fallback_has_binding(code: str, func: str) -> bool:
    name = re.escape(func)
    patterns = [
        rf"import\s*\{{[^}}]*\b{name}\b[^}}]*\}}\s*from",
        rf"^(?:export\s+)?(?:const|let|var|function)\s+{name}\b",
        rf"^(?:const|let|var)\s*\{{[^}}]*\b{name}\b[^}}]*\}}\s*=",
    ]
    return any(re.search(p, code, re.MULTILINE) for p in patterns)


def _fallback_ensure_import(code: str, config: ToolConfig) -> tuple[str, bool]:
    func = config.lookup_function
    if _fallback_has_binding(code, func):
        return code, False
    same_path_re = re.compile(
        r"import\s*\{\s*([^}]*)\}\s*from\s*(['\"])" + re.escape(config.import_path) + r"\2;?"
    )
    match = same_path_re.search(code)
    if match:
        names = [n.strip() for n in match.group(1).split(",") if n.strip()]
        names.append(func)
        quote = match.group(2)
        new_import = f"import {{ {', '.join(names)} }} from {quote}{config.import_path}{quote};"
        return code[: match.start()] + new_import + code[match.end() :], True

    new_line = f"import {{ {func} }} from '{config.import_path}';"
    import_matches = list(IMPORT_LINE_RE.finditer(code))
    if import_matches:
        insert_at = import_matches[-1].end()
        return code[:insert_at] + "\n" + new_line + code[insert_at:], True
    if code.startswith("#!"):
        first_break = code.find("\n")
        if first_break == -1:
            return code + "\n" + new_line + "\n", True
        return code[: first_break + 1] + new_line + "\n" + code[first_break + 1 :], True
    return new_line + "\n" + code, True


def _line_of(code: str, offset: int) -> int:
    return code.count("\n", 0, offset) + 1


def rewrite_fallback(
    text: str,
    rel_path: str,
    key_index: dict[str, str],
    config: ToolConfig,
) -> RewriteResult:
    """Regex substitution for sources that no grammar accepts."""
    result = RewriteResult(content=text, degraded=True)
    result.warnings.append(f"{rel_path}: parse failed, used regex substitution")
    if has_file_directive(text):
        return result
    comments = CommentIndex.from_text(text)
    suppression = build_suppression(text)
    func = config.lookup_function

    claimed: list[tuple[int, int, str]] = []

    def free(start: int, end: int) -> bool:
        return all(end <= s or start >= e for s, e, _ in claimed)

    for value, key in key_index.items():
        if PLACEHOLDER_RE.search(value):
            result.warnings.append(f"{rel_path}: template text needs a manual edit: {value!r}")
            continue
        escaped = re.escape(value)
        call = call_text(func, key)
        shapes = [
            (re.compile(r"\{\s*(['\"`])" + escaped + r"\1\s*\}"), 0, f"{{{call}}}"),
            (
                re.compile(r"<[A-Za-z][\w.:-]*[^<>]*?\s[\w:-]+\s*=\s*((['\"])" + escaped + r"\2)"),
                1,
                f"{{{call}}}",
            ),
            (re.compile(r"(['\"`])" + escaped + r"\1"), 0, call),
        ]
        for pattern, group, replacement in shapes:
            for match in pattern.finditer(text):
                start, end = match.span(group)
                if not free(start, end):
                    continue
                if comments.contains(start, end):
                    continue
                line = _line_of(text, start)
                if suppression.covers(line, _line_of(text, end)):
                    continue
                claimed.append((start, end, replacement))

    if not claimed:
        return result
    claimed.sort()
    out: list[str] = []
    cursor = 0
    for start, end, replacement in claimed:
        out.append(text[cursor:start])
        out.append(replacement)
        cursor = end
    out.append(text[cursor:])
    content = "".join(out)
    result.replaced = len(claimed)
    content, result.import_added = _fallback_ensure_import(content, config)
    result.content = content
    return result


def rewrite_source(
    text: str,
    rel_path: str,
    records: Iterable[TranslationRecord],
    config: ToolConfig,
) -> RewriteResult:
    key_index = build_key_index(records)
    if not key_index:
        return RewriteResult(content=text)
    result = rewrite_tree(text, rel_path, key_index, config)
    if result is not None:
        return result
    return rewrite_fallback(text, rel_path, key_index, config)


@dataclass
class FileRewriteResult:
    path: str
    replaced: int = 0
    import_added: bool = False
    degraded: bool = False
    missing: bool = False
    written: bool = False
    warnings: list[str] = field(default_factory=list)
    error: str | None = None


def rewrite_file(
    project_root: Path,
    rel_path: str,
    records: list[TranslationRecord],
    config: ToolConfig,
    *,
    dry_run: bool,
) -> FileRewriteResult:
    outcome = FileRewriteResult(path=rel_path)
    full_path = (project_root / rel_path).resolve()
    if not full_path.is_file():
        outcome.missing = True
        return outcome
    try:
        # bytes keep CRLF line endings intact
        text = full_path.read_bytes().decode("utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        outcome.error = f"{rel_path}: {exc}"
        return outcome

    result = rewrite_source(text, rel_path, records, config)
    outcome.replaced = result.replaced
    outcome.import_added = result.import_added
    outcome.degraded = result.degraded
    outcome.warnings.extend(result.warnings)
    if result.changed and not dry_run:
        try:
            full_path.write_bytes(result.content.encode("utf-8"))
            outcome.written = True
        except OSError as exc:
            outcome.error = f"{rel_path}: write failed: {exc}"
    return outcome


def group_by_file(records: Iterable[TranslationRecord]) -> dict[str, list[TranslationRecord]]:
    grouped: dict[str, list[TranslationRecord]] = {}
    for record in records:
        if record.deleted or not record.file:
            continue
        grouped.setdefault(record.file, []).append(record)
    return grouped


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Replace ledger texts in source files with t('key') lookups."
    )
    parser.add_argument("--ledger", "--excel", dest="ledger", type=Path, required=True)
    parser.add_argument("--import-path", default=None, help="Module that exports t.")
    parser.add_argument("--file", type=Path, default=None, help="Only rewrite this file.")
    parser.add_argument("--project-root", type=Path, default=Path("."))
    parser.add_argument("--config", type=Path, default=None, help="JSON config file.")
    parser.add_argument(
        "--fix-lint",
        action="store_true",
        help="Run prettier on rewritten files, keeping blank lines between class members.",
    )
    parser.add_argument("--prettier-config", type=Path, default=None)
    parser.add_argument(
        "--prettier-arg",
        action="append",
        default=[],
        help="Extra argument passed to prettier (repeatable).",
    )
    parser.add_argument("--concurrency", type=int, default=8)
    parser.add_argument("--dry-run", action="store_true")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()
    setup_logging(args.verbose)

    if args.concurrency <= 0:
        raise ValueError("--concurrency must be > 0")

    config, config_warnings = load_config(args.config)
    print_diagnostics("Config warnings", config_warnings)
    if args.import_path:
        config = replace(config, import_path=args.import_path)

    project_root = args.project_root.resolve()
    try:
        ledger = load_ledger(args.ledger.resolve(), source_locale=config.source_locale)
    except LedgerError as exc:
        print(f"[error] {exc}")
        return 1
    print_diagnostics("Ledger warnings", ledger.warnings)

    grouped = group_by_file(ledger.records())
    if args.file:
        rel = relative_path(args.file.resolve(), project_root)
        if rel not in grouped:
            print(f"No ledger rows for {rel}, nothing to do")
            return 0
        grouped = {rel: grouped[rel]}

    results: list[FileRewriteResult] = []
    with concurrent.futures.ThreadPoolExecutor(max_workers=args.concurrency) as executor:
        futures = [
            executor.submit(
                rewrite_file,
                project_root,
                rel_path,
                rows,
                config,
                dry_run=args.dry_run,
            )
            for rel_path, rows in grouped.items()
        ]
        for future in concurrent.futures.as_completed(futures):
            results.append(future.result())
    results.sort(key=lambda r: r.path)

    written = [project_root / r.path for r in results if r.written]
    format_warnings: list[str] = []
    if args.fix_lint and written:
        report = format_preserving_gaps(
            written,
            cwd=project_root,
            prettier_config=args.prettier_config,
            extra_args=args.prettier_arg,
        )
        format_warnings = report.warnings
        print(f"Formatted files: {report.formatted} (restored gaps: {report.restored_gaps})")

    print(f"Target files: {len(grouped)}")
    print(f"Replaced literals: {sum(r.replaced for r in results)}")
    print(f"Imports added: {sum(1 for r in results if r.import_added)}")
    print(f"Files written: {len(written)}")
    print_diagnostics("Missing files", [r.path for r in results if r.missing])
    print_diagnostics("Degraded (regex) files", [r.path for r in results if r.degraded])
    print_diagnostics("Warnings", [w for r in results for w in r.warnings] + format_warnings)
    errors = [r.error for r in results if r.error]
    print_diagnostics("Errors", errors)
    if args.dry_run:
        print("Dry run only. No files were modified.")
    return 1 if errors else 0


if __name__ == "__main__":
    raise SystemExit(main())
