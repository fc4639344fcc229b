#!/usr/bin/env python3
"""Run prettier on rewritten files without losing blank lines between class members.

A snapshot of which class members were preceded by a blank line is taken
before formatting. After prettier runs, a blank line is restored in front of
every such member whose gap was collapsed. Members that had no gap before are
left alone, so no new gaps appear.

Typical usage:
  python restore_member_gaps.py src/pages/Home.tsx src/pages/Settings.tsx
  python restore_member_gaps.py --prettier-config .prettierrc src/App.jsx
"""

from __future__ import annotations

import argparse
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from tree_sitter import Node

from i18n_syntax import iter_nodes, node_end_line, node_line, parse_source

MEMBER_TYPES = {
    "method_definition",
    "public_field_definition",
    "field_definition",
    "abstract_method_signature",
    "method_signature",
    "class_static_block",
}
CLASS_TYPES = {"class_declaration", "class", "abstract_class_declaration"}

MemberKey = tuple[str, str, int]


@dataclass
class FormatReport:
    formatted: int = 0
    restored_gaps: int = 0
    warnings: list[str] = field(default_factory=list)


def _name_of(node: Node, *fields: str) -> str:
    for name in fields:
        child = node.child_by_field_name(name)
        if child is not None:
            return child.text.decode("utf-8", errors="replace")
    return ""


def _member_name(node: Node) -> str:
    name = _name_of(node, "name", "property")
    if name:
        return f"{node.type}:{name}"
    return f"{node.type}:" + "".join(node.text.decode("utf-8", errors="replace").split())[:40]


def class_members(root: Node) -> list[tuple[MemberKey, Node, Node | None]]:
    """Every class member with a stable identity and the member before it."""
    found: list[tuple[MemberKey, Node, Node | None]] = []
    class_counts: dict[str, int] = {}
    for node in iter_nodes(root):
        if node.type not in CLASS_TYPES:
            continue
        class_name = _name_of(node, "name") or "<anonymous>"
        class_counts[class_name] = class_counts.get(class_name, 0) + 1
        owner = f"{class_name}#{class_counts[class_name]}"
        body = node.child_by_field_name("body")
        if body is None:
            continue
        seen: dict[str, int] = {}
        previous: Node | None = None
        for member in body.named_children:
            if member.type not in MEMBER_TYPES:
                continue
            name = _member_name(member)
            seen[name] = seen.get(name, 0) + 1
            found.append(((owner, name, seen[name]), member, previous))
            previous = member
    return found


def _has_gap(lines: list[str], previous: Node, member: Node) -> bool:
    # lines are 0-based; the gap lies strictly between the two members
    between = lines[node_end_line(previous) : node_line(member) - 1]
    return any(not line.strip() for line in between)


def snapshot_member_gaps(text: str, suffix: str) -> set[MemberKey] | None:
    outcome, _errors = parse_source(text.encode("utf-8"), suffix)
    if outcome is None:
        return None
    lines = text.splitlines()
    return {
        key
        for key, member, previous in class_members(outcome.tree.root_node)
        if previous is not None and _has_gap(lines, previous, member)
    }


def restore_member_gaps(text: str, suffix: str, gaps: set[MemberKey]) -> tuple[str, int]:
    if not gaps:
        return text, 0
    outcome, _errors = parse_source(text.encode("utf-8"), suffix)
    if outcome is None:
        return text, 0
    lines = text.splitlines(keepends=True)
    plain = [line.rstrip("\r\n") for line in lines]
    newline = "\r\n" if lines and lines[0].endswith("\r\n") else "\n"
    insert_after: list[int] = []
    for key, member, previous in class_members(outcome.tree.root_node):
        if previous is None or key not in gaps:
            continue
        if _has_gap(plain, previous, member):
            continue
        if node_end_line(previous) == node_line(member):
            continue
        insert_after.append(node_end_line(previous))

    for line_no in sorted(set(insert_after), reverse=True):
        lines.insert(line_no, newline)
    return "".join(lines), len(set(insert_after))


def run_prettier(
    files: list[Path],
    cwd: Path,
    prettier_config: Path | None = None,
    extra_args: list[str] | None = None,
) -> subprocess.CompletedProcess[str]:
    cmd = ["npx", "prettier"]
    if prettier_config is not None:
        cmd.extend(["--config", str(prettier_config.resolve())])
    cmd.extend(extra_args or [])
    cmd.append("--write")
    cmd.extend(str(path) for path in files)
    return subprocess.run(
        cmd,
        cwd=str(cwd),
        text=True,
        encoding="utf-8",
        capture_output=True,
        check=False,
    )


def format_preserving_gaps(
    files: list[Path],
    *,
    cwd: Path,
    prettier_config: Path | None = None,
    extra_args: list[str] | None = None,
) -> FormatReport:
    report = FormatReport()
    snapshots: dict[Path, set[MemberKey]] = {}
    for path in files:
        gaps = snapshot_member_gaps(path.read_bytes().decode("utf-8"), path.suffix)
        if gaps is None:
            report.warnings.append(f"{path}: not parseable, gaps not tracked")
            continue
        snapshots[path] = gaps

    try:
        proc = run_prettier(files, cwd, prettier_config, extra_args)
    except FileNotFoundError as exc:
        report.warnings.append(f"prettier not available: {exc}")
        return report
    if proc.returncode != 0:
        msg = proc.stderr.strip() or proc.stdout.strip() or "unknown prettier error"
        report.warnings.append(f"prettier exited with {proc.returncode}: {msg.splitlines()[0]}")
    else:
        report.formatted = len(files)

    for path, gaps in snapshots.items():
        text = path.read_bytes().decode("utf-8")
        restored, count = restore_member_gaps(text, path.suffix, gaps)
        if count:
            try:
                path.write_bytes(restored.encode("utf-8"))
            except OSError as exc:
                report.warnings.append(f"{path}: write failed: {exc}")
                continue
            report.restored_gaps += count
    return report


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Format files with prettier, keeping blank lines between class members.",
    )
    parser.add_argument("files", nargs="+", type=Path)
    parser.add_argument("--prettier-config", type=Path, default=None)
    parser.add_argument("--prettier-arg", action="append", default=[])
    parser.add_argument("--cwd", type=Path, default=Path("."))
    args = parser.parse_args()

    files = [p.resolve() for p in args.files if p.is_file()]
    missing = [str(p) for p in args.files if not p.is_file()]
    for path in missing:
        print(f"[skip] not a file: {path}")
    if not files:
        return 1

    report = format_preserving_gaps(
        files,
        cwd=args.cwd.resolve(),
        prettier_config=args.prettier_config,
        extra_args=args.prettier_arg,
    )
    print(f"formatted={report.formatted} restored_gaps={report.restored_gaps}")
    for warning in report.warnings:
        print(f"[warn] {warning}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
