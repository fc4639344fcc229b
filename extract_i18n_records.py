#!/usr/bin/env python3
"""Extract translatable source text from JS/JSX/TS/TSX into a ledger workbook.

Every candidate literal (string, JSX text, template) that contains target
script text and survives the exclusion rules becomes one ledger row keyed by
``i18n_<hash>``. Rows are deduplicated by key per scanned root; each root is
written to its own sheet.

Usage:
    python extract_i18n_records.py --src src --out i18n.xlsx
    python extract_i18n_records.py --src ../app/src,../lib/src --out i18n.xlsx
    python extract_i18n_records.py --src src --out i18n.xlsx --file src/pages/Home.tsx
    python extract_i18n_records.py --src src --out i18n.xlsx --config i18n.config.json
"""

from __future__ import annotations

import argparse
import bisect
import concurrent.futures
import html
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path

from tree_sitter import Node

from i18n_config import ToolConfig, load_config, load_translate_hook
from i18n_hash import HashScheme, content_hash, find_key_collisions
from i18n_ledger import TranslationRecord, build_link, safe_sheet_title, save_ledger
from i18n_rules import NodeContext, RuleSet, default_rules
from i18n_syntax import (
    CommentIndex,
    Suppression,
    build_suppression,
    estree_type,
    has_file_directive,
    iter_nodes,
    node_end_line,
    node_line,
    parse_source,
    string_value,
)

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDE_DIR_NAMES = {
    ".git",
    "node_modules",
    "dist",
    "build",
    "coverage",
    ".next",
    ".expo",
    "android",
    "ios",
    "__generated__",
    ".cache",
}
JSX_TEXT_TYPES = {"jsx_text", "html_character_reference"}
MODULE_SOURCE_PARENTS = {"import_statement", "export_statement", "import_require_clause"}
CONTEXT_OWNER_TYPES = {
    "function_declaration",
    "generator_function_declaration",
    "class_declaration",
    "method_definition",
}


@dataclass(frozen=True)
class Segment:
    start_byte: int
    end_byte: int
    raw: str


@dataclass(frozen=True)
class Candidate:
    kind: str
    node: Node
    text: str
    start_byte: int
    end_byte: int
    line: int
    end_line: int
    segments: tuple[Segment, ...] = ()
    expressions: tuple[Node, ...] = ()
    placeholders: tuple[str, ...] = ()


@dataclass
class ExtractResult:
    path: str
    records: list[TranslationRecord] = field(default_factory=list)
    error: str | None = None
    grammar: str | None = None
    skipped_by_directive: bool = False


class LineIndex:
    def __init__(self, source: bytes) -> None:
        self._starts = [0]
        pos = source.find(b"\n")
        while pos != -1:
            self._starts.append(pos + 1)
            pos = source.find(b"\n", pos + 1)

    def line_at(self, offset: int) -> int:
        return bisect.bisect_right(self._starts, offset)


def normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def template_parts(node: Node, source: bytes) -> tuple[list[Segment], list[Node]]:
    """Split a template literal into raw literal segments and expressions.

    Segment text has CRLF and CR normalized to LF; byte offsets still point
    into the original source.
    """
    segments: list[Segment] = []
    expressions: list[Node] = []
    cursor = node.start_byte + 1
    for child in node.named_children:
        if child.type != "template_substitution":
            continue
        segments.append(
            Segment(
                cursor,
                child.start_byte,
                normalize_newlines(source[cursor : child.start_byte].decode("utf-8")),
            )
        )
        inner = [c for c in child.named_children if c.type != "comment"]
        if inner:
            expressions.append(inner[0])
        cursor = child.end_byte
    end = node.end_byte - 1
    segments.append(Segment(cursor, end, normalize_newlines(source[cursor:end].decode("utf-8"))))
    return segments, expressions


def placeholder_names(expressions: list[Node]) -> list[str]:
    counts: dict[str, int] = {}
    names: list[str] = []
    for expr in expressions:
        kind = estree_type(expr)
        counts[kind] = counts.get(kind, 0) + 1
        names.append(f"{kind}{counts[kind]}")
    return names


def canonical_template_text(segments: list[Segment], names: list[str]) -> str:
    parts: list[str] = []
    for idx, segment in enumerate(segments):
        parts.append(segment.raw)
        if idx < len(names):
            parts.append(f"{{{{{names[idx]}}}}}")
    return "".join(parts)


def _is_tagged_template(node: Node) -> bool:
    parent = node.parent
    if parent is None or parent.type != "call_expression":
        return False
    args = parent.child_by_field_name("arguments")
    return args is not None and args.id == node.id


def _is_excluded_string_position(node: Node) -> bool:
    parent = node.parent
    if parent is None:
        return False
    if parent.type == "pair":
        key = parent.child_by_field_name("key")
        return key is not None and key.id == node.id
    if parent.type in MODULE_SOURCE_PARENTS:
        src = parent.child_by_field_name("source")
        return src is not None and src.id == node.id
    return False


def _string_candidate(node: Node, source: bytes, config: ToolConfig) -> Candidate | None:
    if _is_excluded_string_position(node):
        return None
    value = string_value(node, source)
    if not config.has_target_text(value):
        return None
    return Candidate(
        kind="string",
        node=node,
        text=value,
        start_byte=node.start_byte,
        end_byte=node.end_byte,
        line=node_line(node),
        end_line=node_end_line(node),
    )


def _template_candidate(
    node: Node, source: bytes, config: ToolConfig, lines: LineIndex
) -> Candidate | None:
    if _is_tagged_template(node):
        return None
    segments, expressions = template_parts(node, source)
    first_target: int | None = None
    for segment in segments:
        original = source[segment.start_byte : segment.end_byte].decode("utf-8")
        match = config.target_re.search(original)
        if match:
            first_target = segment.start_byte + len(original[: match.start()].encode("utf-8"))
            break
    if first_target is None:
        return None
    names = placeholder_names(expressions)
    return Candidate(
        kind="template",
        node=node,
        text=canonical_template_text(segments, names),
        start_byte=node.start_byte,
        end_byte=node.end_byte,
        line=lines.line_at(first_target),
        end_line=node_end_line(node),
        segments=tuple(segments),
        expressions=tuple(expressions),
        placeholders=tuple(names),
    )


def _jsx_text_candidates(
    element: Node, source: bytes, config: ToolConfig, lines: LineIndex
) -> list[Candidate]:
    runs: list[list[Node]] = []
    current: list[Node] = []
    for child in element.children:
        if child.type in JSX_TEXT_TYPES:
            current.append(child)
            continue
        if current:
            runs.append(current)
            current = []
    if current:
        runs.append(current)

    found: list[Candidate] = []
    for run in runs:
        start, end = run[0].start_byte, run[-1].end_byte
        raw = source[start:end]
        stripped = raw.strip()
        if not stripped:
            continue
        trimmed_start = start + (len(raw) - len(raw.lstrip()))
        trimmed_end = trimmed_start + len(stripped)
        text = normalize_newlines(html.unescape(stripped.decode("utf-8"))).strip()
        if not config.has_target_text(text):
            continue
        found.append(
            Candidate(
                kind="jsx_text",
                node=run[0],
                text=text,
                start_byte=trimmed_start,
                end_byte=trimmed_end,
                line=lines.line_at(trimmed_start),
                end_line=lines.line_at(max(trimmed_start, trimmed_end - 1)),
            )
        )
    return found


def iter_candidates(root: Node, source: bytes, config: ToolConfig) -> list[Candidate]:
    """All literal nodes carrying target text, before exclusion rules."""
    lines = LineIndex(source)
    found: list[Candidate] = []
    for node in iter_nodes(root):
        if node.type == "string":
            candidate = _string_candidate(node, source, config)
            if candidate is not None:
                found.append(candidate)
        elif node.type == "template_string":
            candidate = _template_candidate(node, source, config, lines)
            if candidate is not None:
                found.append(candidate)
        elif node.type == "jsx_element":
            found.extend(_jsx_text_candidates(node, source, config, lines))
    found.sort(key=lambda c: c.start_byte)
    return found


def node_context(
    candidate: Candidate,
    source: bytes,
    comments: CommentIndex,
    suppression: Suppression,
    config: ToolConfig,
) -> NodeContext:
    span_start = candidate.line
    if candidate.kind == "template":
        span_start = min(span_start, node_line(candidate.node))
    return NodeContext(
        node=candidate.node,
        source=source,
        comments=comments,
        suppression=suppression,
        config=config,
        line_span=(span_start, candidate.end_line),
    )


def accepted_candidates(
    root: Node, source: bytes, text: str, config: ToolConfig, rules: RuleSet | None = None
) -> list[Candidate]:
    rules = rules or default_rules(config)
    comments = CommentIndex.from_tree(root)
    suppression = build_suppression(text, root)
    accepted: list[Candidate] = []
    for candidate in iter_candidates(root, source, config):
        ctx = node_context(candidate, source, comments, suppression, config)
        rule = rules.first_match(ctx)
        if rule is not None:
            logger.debug("line %d excluded by %s: %r", candidate.line, rule, candidate.text)
            continue
        accepted.append(candidate)
    return accepted


def describe_context(node: Node, source_lines: list[str], line: int) -> str:
    """Enclosing declaration name plus the neighbouring source lines."""
    owner = ""
    parent = node.parent
    declarator = ""
    while parent is not None and not owner:
        if parent.type in CONTEXT_OWNER_TYPES:
            name = parent.child_by_field_name("name")
            if name is not None:
                owner = name.text.decode("utf-8", errors="replace")
        elif parent.type == "variable_declarator" and not declarator:
            name = parent.child_by_field_name("name")
            if name is not None and name.type == "identifier":
                declarator = name.text.decode("utf-8", errors="replace")
        parent = parent.parent
    owner = owner or declarator

    neighbours = [
        source_lines[idx].strip()
        for idx in (line - 2, line)
        if 0 <= idx < len(source_lines) and source_lines[idx].strip()
    ]
    if not neighbours:
        return owner
    return f"{owner} | {' '.join(neighbours)}"


def extract_source(
    text: str,
    rel_path: str,
    config: ToolConfig,
    scheme: HashScheme,
) -> ExtractResult:
    result = ExtractResult(path=rel_path)
    if has_file_directive(text):
        result.skipped_by_directive = True
        return result

    source = text.encode("utf-8")
    outcome, errors = parse_source(source, Path(rel_path).suffix)
    if outcome is None:
        result.error = f"{rel_path}: parse failed ({'; '.join(errors)})"
        return result
    result.grammar = outcome.grammar
    if not outcome.strict:
        logger.debug("%s parsed with fallback grammar %s", rel_path, outcome.grammar)

    source_lines = text.splitlines()
    root = outcome.tree.root_node
    for candidate in accepted_candidates(root, source, text, config):
        result.records.append(
            TranslationRecord(
                key=scheme.make_key(candidate.text),
                text=candidate.text,
                file=rel_path,
                line=candidate.line,
                content_hash=content_hash(candidate.text, rel_path),
                context=describe_context(candidate.node, source_lines, candidate.line),
                link=build_link(config.link_prefix, rel_path, candidate.line),
            )
        )
    return result


def relative_path(path: Path, project_root: Path) -> str:
    return Path(os.path.relpath(path, project_root)).as_posix()


def extract_file(
    path: Path,
    project_root: Path,
    config: ToolConfig,
    scheme: HashScheme,
) -> ExtractResult:
    rel = relative_path(path, project_root)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        return ExtractResult(path=rel, error=f"{rel}: {exc}")
    return extract_source(text, rel, config, scheme)


def should_exclude(path: Path, root: Path, config: ToolConfig) -> bool:
    rel = path.relative_to(root) if path != root else Path(path.name)
    if any(part in DEFAULT_EXCLUDE_DIR_NAMES for part in rel.parts[:-1]):
        return True
    if path.name.endswith(".d.ts") or path.name.endswith(".min.js"):
        return True
    full = path.as_posix()
    return any(pattern in full for pattern in config.ignore_files)


def collect_files(root: Path, config: ToolConfig) -> list[Path]:
    if root.is_file():
        return [root] if not should_exclude(root, root, config) else []
    files: list[Path] = []
    for path in root.rglob("*"):
        if not path.is_file():
            continue
        if path.suffix.lower() not in config.extensions:
            continue
        if should_exclude(path, root, config):
            continue
        files.append(path)
    files.sort()
    return files


def dedup_by_key(records: list[TranslationRecord]) -> list[TranslationRecord]:
    seen: set[str] = set()
    unique: list[TranslationRecord] = []
    for record in records:
        if record.key in seen:
            continue
        seen.add(record.key)
        unique.append(record)
    return unique


def extract_many(
    files: list[Path],
    project_root: Path,
    config: ToolConfig,
    scheme: HashScheme,
    concurrency: int = 8,
) -> list[ExtractResult]:
    results: list[ExtractResult] = []
    with concurrent.futures.ThreadPoolExecutor(max_workers=concurrency) as executor:
        futures = [
            executor.submit(extract_file, path, project_root, config, scheme)
            for path in files
        ]
        for future in concurrent.futures.as_completed(futures):
            results.append(future.result())
    results.sort(key=lambda r: r.path)
    return results


def apply_translate_hook(
    records: list[TranslationRecord], hook, locale: str
) -> tuple[list[TranslationRecord], list[str]]:
    warnings: list[str] = []
    filled: list[TranslationRecord] = []
    for record in records:
        try:
            value = hook(record.text)
        except Exception as exc:  # noqa: BLE001
            warnings.append(f"translate hook failed for {record.key}: {exc}")
            filled.append(record)
            continue
        if isinstance(value, str) and value.strip():
            record = replace(record, per_locale={**record.per_locale, locale: value})
        filled.append(record)
    return filled, warnings


@dataclass
class ScanOutcome:
    sheets: dict[str, list[TranslationRecord]]
    files: int
    errors: list[str]
    warnings: list[str]
    failed_files: list[str] = field(default_factory=list)


def scan_roots(
    roots: list[Path],
    project_root: Path,
    config: ToolConfig,
    *,
    single_file: Path | None = None,
    concurrency: int = 8,
    dedup: bool = True,
) -> ScanOutcome:
    """Scan each root into its own sheet, titled after the root basename.

    With ``dedup=False`` every occurrence is kept, which the ledger syncer
    needs to count repeated texts.
    """
    scheme = config.hash_scheme
    sheets: dict[str, list[TranslationRecord]] = {}
    errors: list[str] = []
    warnings: list[str] = []
    failed_files: list[str] = []
    total_files = 0

    for root in roots:
        if not root.exists():
            warnings.append(f"Source path not found: {root}")
            continue
        if single_file is not None:
            files = [single_file] if single_file.is_relative_to(root) else []
        else:
            files = collect_files(root, config)
        total_files += len(files)
        results = extract_many(files, project_root, config, scheme, concurrency)

        records: list[TranslationRecord] = []
        for result in results:
            if result.error:
                errors.append(result.error)
                failed_files.append(result.path)
            if result.skipped_by_directive:
                logger.info("%s skipped by i18n-ignore-file", result.path)
            records.extend(result.records)

        for key, texts in find_key_collisions((r.key, r.text) for r in records).items():
            warnings.append(f"Key collision {key}: keeping {texts[0]!r}, dropping {texts[1:]!r}")

        name = safe_sheet_title(root.name or root.resolve().name or "src")
        kept = dedup_by_key(records) if dedup else records
        sheet = [replace(r, sheet=name) for r in kept]
        sheets.setdefault(name, []).extend(sheet)
        print(f"Scanned {name}: {len(files)} file(s), {len(sheet)} record(s)")

    return ScanOutcome(
        sheets=sheets,
        files=total_files,
        errors=errors,
        warnings=warnings,
        failed_files=failed_files,
    )


def print_diagnostics(title: str, items: list[str]) -> None:
    if not items:
        return
    print(f"{title}: {len(items)}")
    for item in items[:20]:
        print(f"- {item}")
    if len(items) > 20:
        print(f"... and {len(items) - 20} more")


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def split_paths(raw: str) -> list[Path]:
    return [Path(part.strip()) for part in raw.split(",") if part.strip()]


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Extract translatable text from JS/TS sources into an .xlsx ledger."
    )
    parser.add_argument(
        "--src",
        required=True,
        help="Source root(s) to scan, comma separated. One sheet per root.",
    )
    parser.add_argument("--out", type=Path, required=True, help="Output ledger (.xlsx).")
    parser.add_argument("--file", type=Path, default=None, help="Only scan this file.")
    parser.add_argument("--config", type=Path, default=None, help="JSON config file.")
    parser.add_argument(
        "--link-prefix",
        default=None,
        help="Web link prefix, for example https://git.example.com/app/-/blob/main",
    )
    parser.add_argument(
        "--project-root",
        type=Path,
        default=Path("."),
        help="Ledger file paths are relative to this directory. Default: cwd.",
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
    if args.link_prefix:
        config = replace(config, link_prefix=args.link_prefix)

    project_root = args.project_root.resolve()
    roots = [p.resolve() for p in split_paths(args.src)]
    single_file = args.file.resolve() if args.file else None
    if single_file is not None and not single_file.is_file():
        print(f"File not found: {single_file}")
        return 1

    outcome = scan_roots(
        roots,
        project_root,
        config,
        single_file=single_file,
        concurrency=args.concurrency,
    )

    hook, hook_warnings = load_translate_hook(config)
    outcome.warnings.extend(hook_warnings)
    if hook is not None:
        for name, records in outcome.sheets.items():
            filled, fill_warnings = apply_translate_hook(records, hook, config.translate_locale)
            outcome.sheets[name] = filled
            outcome.warnings.extend(fill_warnings)

    locales = list(config.locales)
    if hook is not None and config.translate_locale not in locales:
        locales.append(config.translate_locale)

    total = sum(len(rows) for rows in outcome.sheets.values())
    print(f"Scanned files: {outcome.files}")
    print(f"Records: {total}")
    print(f"Hash scheme: {config.hash_scheme.describe()}")
    if args.dry_run:
        print("Dry run: ledger not written")
    elif outcome.sheets:
        try:
            save_ledger(args.out.resolve(), outcome.sheets, locales, config.hash_scheme)
        except OSError as exc:
            print(f"Failed to write ledger {args.out}: {exc}")
            return 1
        print(f"Output: {args.out.resolve()}")
    print_diagnostics("Warnings", outcome.warnings)
    print_diagnostics("Parse failures (skipped)", outcome.errors)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
