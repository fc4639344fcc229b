#!/usr/bin/env python3
"""Re-sync an existing translation ledger with the current source tree.

Each ledger row is re-located in a fresh scan, first by content hash (text +
file basename) and then by exact text, so translations survive line shifts,
file moves and refactors:

  - matched: found at the same file and line
  - updated: found elsewhere; file/line/hash/context are rewritten
  - new:     text not in the ledger yet, appended with a fresh key
  - missing: text gone from the source; the row is kept with status DELETED

The ledger is backed up next to itself before it is overwritten in place.

Usage:
  python sync_i18n_ledger.py --ledger i18n.xlsx --src src
  python sync_i18n_ledger.py --ledger i18n.xlsx --src src,../lib/src --report sync-report.md
  python sync_i18n_ledger.py --ledger i18n.xlsx --src src --output i18n.synced.xlsx --dry-run
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path

from extract_i18n_records import print_diagnostics, scan_roots, setup_logging, split_paths
from i18n_config import load_config
from i18n_ledger import (
    STATUS_ACTIVE,
    STATUS_DELETED,
    Ledger,
    LedgerError,
    TranslationRecord,
    backup_ledger,
    load_ledger,
    save_ledger,
)

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    matched: list[TranslationRecord] = field(default_factory=list)
    updated: list[TranslationRecord] = field(default_factory=list)
    new_items: list[TranslationRecord] = field(default_factory=list)
    missing: list[TranslationRecord] = field(default_factory=list)
    duplicates: int = 0
    rows: list[TranslationRecord] = field(default_factory=list)
    previous_positions: dict[str, tuple[str, int]] = field(default_factory=dict)


def _claim(old: TranslationRecord, fresh: TranslationRecord) -> TranslationRecord:
    moved = old.file != fresh.file or old.line != fresh.line
    return replace(
        old,
        file=fresh.file,
        line=fresh.line,
        content_hash=fresh.content_hash,
        context=fresh.context,
        link=fresh.link or ("" if moved else old.link),
        status=STATUS_ACTIVE,
    )


def reconcile(
    existing: list[TranslationRecord],
    fresh: list[TranslationRecord],
    skipped_files: frozenset[str] = frozenset(),
) -> SyncResult:
    """Match a fresh scan against ledger rows.

    ``fresh`` holds every occurrence, not one row per key. Rows from files in
    ``skipped_files`` (unparseable this run) are never marked missing.
    """
    order = sorted(
        range(len(existing)),
        key=lambda i: (existing[i].sheet, existing[i].key, existing[i].file, existing[i].line),
    )
    by_hash: dict[str, int] = {}
    by_text: dict[str, int] = {}
    for idx in order:
        record = existing[idx]
        if record.content_hash:
            by_hash.setdefault(record.content_hash, idx)
        by_text.setdefault(record.text, idx)

    result = SyncResult()
    claims: dict[int, TranslationRecord] = {}
    ordered_fresh = sorted(fresh, key=lambda r: (r.file, r.line, r.text))

    unmatched: list[TranslationRecord] = []
    for record in ordered_fresh:
        idx = by_hash.get(record.content_hash)
        if idx is None:
            unmatched.append(record)
        elif idx in claims:
            result.duplicates += 1
        else:
            claims[idx] = record

    known_keys = {record.key for record in existing}
    for record in unmatched:
        idx = by_text.get(record.text)
        if idx is not None:
            if idx in claims:
                result.duplicates += 1
            else:
                claims[idx] = record
            continue
        if record.key in known_keys:
            result.duplicates += 1
            continue
        known_keys.add(record.key)
        result.new_items.append(replace(record, status=STATUS_ACTIVE))
        logger.debug("new text %r at %s:%d", record.text, record.file, record.line)

    fresh_hashes = {record.content_hash for record in fresh}
    fresh_texts = {record.text for record in fresh}
    for idx, old in enumerate(existing):
        if idx in claims:
            current = claims[idx]
            row = _claim(old, current)
            if old.file != current.file or old.line != current.line:
                result.updated.append(row)
                result.previous_positions[row.key] = (old.file, old.line)
                logger.debug(
                    "moved %r %s:%d -> %s:%d", old.text, old.file, old.line, row.file, row.line
                )
            else:
                result.matched.append(row)
        elif (
            old.content_hash not in fresh_hashes
            and old.text not in fresh_texts
            and old.file not in skipped_files
        ):
            row = replace(old, status=STATUS_DELETED)
            result.missing.append(row)
        else:
            row = old
            result.matched.append(row)
        result.rows.append(row)
    result.rows.extend(result.new_items)
    return result


def group_sheets(
    rows: list[TranslationRecord], sheet_order: list[str], default_sheet: str
) -> dict[str, list[TranslationRecord]]:
    sheets: dict[str, list[TranslationRecord]] = {name: [] for name in sheet_order}
    for row in rows:
        sheets.setdefault(row.sheet or default_sheet, []).append(row)
    return {name: records for name, records in sheets.items() if records}


def _md_text(text: str) -> str:
    return " ".join(text.split()).replace("`", "\\`")


def sync_report(result: SyncResult) -> str:
    now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    lines: list[str] = [
        "# i18n ledger sync report",
        "",
        f"- Generated at: `{now}`",
        f"- Matched: `{len(result.matched)}`",
        f"- Updated (moved): `{len(result.updated)}`",
        f"- New: `{len(result.new_items)}`",
        f"- Missing (marked DELETED): `{len(result.missing)}`",
        f"- Duplicate occurrences: `{result.duplicates}`",
        "",
        "## Updated",
    ]
    for row in result.updated:
        old_file, old_line = result.previous_positions.get(row.key, ("?", 0))
        lines.append(
            f"- `{row.key}` \"{_md_text(row.text)}\" {old_file}:{old_line} -> {row.file}:{row.line}"
        )
    lines.extend(["", "## New"])
    for row in result.new_items:
        lines.append(f"- `{row.key}` \"{_md_text(row.text)}\" at {row.file}:{row.line}")
    lines.extend(["", "## Missing"])
    for row in result.missing:
        lines.append(
            f"- `{row.key}` \"{_md_text(row.text)}\" from {row.file}:{row.line} (translations kept)"
        )
    lines.append("")
    return "\n".join(lines)


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Sync an .xlsx translation ledger with the current source tree."
    )
    parser.add_argument("--ledger", "--excel", dest="ledger", type=Path, required=True)
    parser.add_argument(
        "--src",
        required=True,
        help="Source root(s) to scan, comma separated.",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the synced ledger here instead of overwriting --ledger.",
    )
    parser.add_argument("--report", type=Path, default=None, help="Markdown sync report.")
    parser.add_argument("--config", type=Path, default=None, help="JSON config file.")
    parser.add_argument("--project-root", type=Path, default=Path("."))
    parser.add_argument("--link-prefix", default=None)
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

    ledger_path = args.ledger.resolve()
    warnings: list[str] = []
    if ledger_path.is_file():
        try:
            ledger = load_ledger(ledger_path, source_locale=config.source_locale)
        except LedgerError as exc:
            print(f"Failed to load ledger: {exc}")
            return 1
    else:
        warnings.append(f"Ledger not found, starting empty: {ledger_path}")
        ledger = Ledger(sheets={}, locales=list(config.locales), hash_scheme=config.hash_scheme)
    warnings.extend(ledger.warnings)

    roots = [p.resolve() for p in split_paths(args.src)]
    outcome = scan_roots(
        roots,
        args.project_root.resolve(),
        replace(config, hash_scheme=ledger.hash_scheme),
        concurrency=args.concurrency,
        dedup=False,
    )
    warnings.extend(outcome.warnings)

    fresh = [record for rows in outcome.sheets.values() for record in rows]
    existing = ledger.records()
    result = reconcile(existing, fresh, frozenset(outcome.failed_files))

    print(f"Ledger rows: {len(existing)}")
    print(f"Scanned files: {outcome.files}")
    print(
        f"matched={len(result.matched)} updated={len(result.updated)} "
        f"new={len(result.new_items)} missing={len(result.missing)} "
        f"duplicates={result.duplicates}"
    )

    locales = list(ledger.locales)
    for locale in config.locales:
        if locale not in locales:
            locales.append(locale)
    default_sheet = next(iter(outcome.sheets), "translations")
    sheets = group_sheets(result.rows, list(ledger.sheets), default_sheet)
    output = args.output.resolve() if args.output else ledger_path

    if args.dry_run:
        print("Dry run: ledger not written")
    elif sheets:
        try:
            if output == ledger_path and ledger_path.is_file():
                backup = backup_ledger(ledger_path)
                print(f"Backup: {backup}")
            save_ledger(output, sheets, locales, ledger.hash_scheme)
        except OSError as exc:
            print(f"Failed to write ledger {output}: {exc}")
            return 1
        print(f"Output: {output}")
    else:
        warnings.append("Nothing to write: ledger and scan are both empty")

    if args.report and not args.dry_run:
        report_path = args.report.resolve()
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report_path.write_text(sync_report(result), encoding="utf-8")
        print(f"Report: {report_path}")

    print_diagnostics("Warnings", warnings)
    print_diagnostics("Parse failures (skipped)", outcome.errors)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
