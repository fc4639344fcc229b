#!/usr/bin/env python3
"""Generate <locale>.json packs from a translation ledger without clobbering edits.

Every locale column of the ledger becomes one flat ``key -> text`` pack; the
canonical text also feeds the source-locale pack. Packs that already exist are
merged: keys are added, but a key whose existing value differs from the
ledger value is a conflict. If any conflict exists, nothing is written and a
``conflicts-<timestamp>.json`` report is left in the output directory:

  {
    "en": {
      "i18n_3f2a9c1b7d4e": {
        "existingValue": "Hi",
        "incomingValue": "Hello",
        "selected": null,
        "overrideValue": null
      }
    }
  }

Fill ``selected`` with "existing", "incoming" or "override" (plus
``overrideValue``) and pass the report back with --resolve. The packs are
written only when every conflict carries a selection.

Usage:
  python generate_locale_packs.py --ledger i18n.xlsx --out src/locales
  python generate_locale_packs.py --ledger i18n.xlsx --out src/locales \
      --resolve src/locales/conflicts-20250101-120000-000000.json
  python generate_locale_packs.py --ledger i18n.xlsx --out src/locales --master master.xlsx
"""

from __future__ import annotations

import argparse
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from extract_i18n_records import print_diagnostics, setup_logging
from i18n_config import load_config
from i18n_ledger import LedgerError, TranslationRecord, load_ledger, merge_into_master

logger = logging.getLogger(__name__)

SELECT_EXISTING = "existing"
SELECT_INCOMING = "incoming"
SELECT_OVERRIDE = "override"
SELECTIONS = (SELECT_EXISTING, SELECT_INCOMING, SELECT_OVERRIDE)


class LocalePackError(RuntimeError):
    pass


@dataclass(frozen=True)
class Conflict:
    locale: str
    key: str
    existing_value: object
    incoming_value: str


@dataclass
class MergeOutcome:
    ok: bool
    packs: dict[str, dict[str, object]] = field(default_factory=dict)
    written: list[Path] = field(default_factory=list)
    conflicts: list[Conflict] = field(default_factory=list)
    unresolved: list[Conflict] = field(default_factory=list)
    report_path: Path | None = None
    warnings: list[str] = field(default_factory=list)


def collect_incoming(
    records: list[TranslationRecord],
    locales: list[str],
    source_locale: str,
    warnings: list[str] | None = None,
) -> dict[str, dict[str, str]]:
    """Per-locale ``key -> value`` maps; the first non-empty value per key wins."""
    incoming: dict[str, dict[str, str]] = {}
    ordered = [source_locale, *[locale for locale in locales if locale != source_locale]]
    for locale in ordered:
        values: dict[str, str] = {}
        for record in records:
            if record.deleted:
                continue
            value = record.per_locale.get(locale, "")
            if not value and locale == source_locale:
                value = record.text
            if not value:
                continue
            if record.key in values:
                if values[record.key] != value and warnings is not None:
                    warnings.append(
                        f"{locale}.{record.key}: ledger rows disagree, keeping {values[record.key]!r}"
                    )
                continue
            values[record.key] = value
        if values:
            incoming[locale] = values
    return incoming


def read_pack(path: Path) -> dict[str, object]:
    if not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise LocalePackError(f"Locale pack unreadable: {path} ({exc})") from exc
    if not isinstance(data, dict):
        raise LocalePackError(f"Locale pack is not a JSON object: {path}")
    return data


def find_conflicts(
    incoming: dict[str, dict[str, str]], existing: dict[str, dict[str, object]]
) -> list[Conflict]:
    conflicts: list[Conflict] = []
    for locale, values in incoming.items():
        current = existing.get(locale, {})
        for key, value in values.items():
            if key in current and current[key] != value:
                conflicts.append(Conflict(locale, key, current[key], value))
    return conflicts


def resolved_value(conflict: Conflict, entry: object) -> tuple[bool, object]:
    """(resolved, value) for one conflict given its report entry."""
    if not isinstance(entry, dict):
        return False, None
    if entry.get("existingValue") != conflict.existing_value:
        return False, None
    if entry.get("incomingValue") != conflict.incoming_value:
        return False, None
    selected = entry.get("selected")
    if not isinstance(selected, str):
        return False, None
    selected = selected.strip().lower()
    if selected == SELECT_EXISTING:
        return True, conflict.existing_value
    if selected == SELECT_INCOMING:
        return True, conflict.incoming_value
    if selected == SELECT_OVERRIDE:
        override = entry.get("overrideValue")
        if isinstance(override, str):
            return True, override
    return False, None


def load_resolution(path: Path) -> dict[str, dict[str, object]]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise LocalePackError(f"Conflict report unreadable: {path} ({exc})") from exc
    if not isinstance(data, dict):
        raise LocalePackError(f"Conflict report is not a JSON object: {path}")
    return {locale: entries for locale, entries in data.items() if isinstance(entries, dict)}


def conflict_report(
    conflicts: list[Conflict], resolution: dict[str, dict[str, object]] | None = None
) -> dict[str, dict[str, dict[str, object]]]:
    """Report document; still-valid selections from ``resolution`` are carried forward."""
    report: dict[str, dict[str, dict[str, object]]] = {}
    for conflict in conflicts:
        entry: dict[str, object] = {
            "existingValue": conflict.existing_value,
            "incomingValue": conflict.incoming_value,
            "selected": None,
            "overrideValue": None,
        }
        previous = (resolution or {}).get(conflict.locale, {}).get(conflict.key)
        if (
            isinstance(previous, dict)
            and previous.get("existingValue") == conflict.existing_value
            and previous.get("incomingValue") == conflict.incoming_value
        ):
            entry["selected"] = previous.get("selected")
            entry["overrideValue"] = previous.get("overrideValue")
        report.setdefault(conflict.locale, {})[conflict.key] = entry
    return report


def build_packs(
    incoming: dict[str, dict[str, str]],
    existing: dict[str, dict[str, object]],
    chosen: dict[tuple[str, str], object],
) -> dict[str, dict[str, object]]:
    packs: dict[str, dict[str, object]] = {}
    for locale, values in incoming.items():
        pack = dict(existing.get(locale, {}))
        for key, value in values.items():
            pack[key] = chosen.get((locale, key), value)
        packs[locale] = pack
    return packs


def write_json_atomic(path: Path, data: object) -> None:
    write_packs_atomic({path: data})


def write_packs_atomic(files: dict[Path, object]) -> None:
    """Stage every file as a temp file, then swap them all in.

    A failure while staging removes the temp files and leaves every target
    untouched.
    """
    staged: list[tuple[Path, Path]] = []
    try:
        for path, data in files.items():
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_name(f".{path.name}.tmp")
            staged.append((tmp_path, path))
            tmp_path.write_text(
                json.dumps(data, ensure_ascii=False, indent=2) + "\n", encoding="utf-8"
            )
    except OSError:
        for tmp_path, _ in staged:
            if tmp_path.is_file():
                tmp_path.unlink()
        raise
    for tmp_path, path in staged:
        os.replace(tmp_path, path)


def merge_locale_packs(
    records: list[TranslationRecord],
    out_dir: Path,
    resolution: dict[str, dict[str, object]] | None = None,
    *,
    locales: list[str] | None = None,
    source_locale: str = "zh",
    dry_run: bool = False,
) -> MergeOutcome:
    """All-or-nothing merge of ledger values into ``<out_dir>/<locale>.json``.

    Raises LocalePackError when an existing pack cannot be read, before
    anything is written.
    """
    outcome = MergeOutcome(ok=False)
    if locales is None:
        locales = sorted({locale for record in records for locale in record.per_locale})
    incoming = collect_incoming(records, locales, source_locale, outcome.warnings)
    existing = {locale: read_pack(out_dir / f"{locale}.json") for locale in incoming}

    outcome.conflicts = find_conflicts(incoming, existing)
    chosen: dict[tuple[str, str], object] = {}
    for conflict in outcome.conflicts:
        entry = (resolution or {}).get(conflict.locale, {}).get(conflict.key)
        resolved, value = resolved_value(conflict, entry)
        if resolved:
            chosen[(conflict.locale, conflict.key)] = value
        else:
            outcome.unresolved.append(conflict)

    if outcome.unresolved:
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
        report_path = out_dir / f"conflicts-{stamp}.json"
        if not dry_run:
            write_json_atomic(report_path, conflict_report(outcome.conflicts, resolution))
            outcome.report_path = report_path
        logger.info("%d unresolved conflict(s), no pack written", len(outcome.unresolved))
        return outcome

    outcome.packs = build_packs(incoming, existing, chosen)
    outcome.ok = True
    if dry_run:
        return outcome
    files = {out_dir / f"{locale}.json": pack for locale, pack in outcome.packs.items()}
    write_packs_atomic(files)
    outcome.written.extend(files)
    return outcome


def print_conflicts(conflicts: list[Conflict]) -> None:
    print(f"Unresolved conflicts: {len(conflicts)}")
    for conflict in conflicts[:20]:
        print(
            f"- {conflict.locale}.{conflict.key}: "
            f"existing={conflict.existing_value!r} incoming={conflict.incoming_value!r}"
        )
    if len(conflicts) > 20:
        print(f"... and {len(conflicts) - 20} more")


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Generate <locale>.json packs from an .xlsx ledger with conflict protection."
    )
    parser.add_argument("--ledger", "--excel", dest="ledger", type=Path, required=True)
    parser.add_argument("--out", type=Path, required=True, help="Locale pack directory.")
    parser.add_argument(
        "--resolve",
        type=Path,
        default=None,
        help="Conflict report with selections filled in.",
    )
    parser.add_argument(
        "--master",
        type=Path,
        default=None,
        help="After a successful run, append new ledger rows to this master workbook.",
    )
    parser.add_argument("--config", type=Path, default=None, help="JSON config file.")
    parser.add_argument("--dry-run", action="store_true")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()
    setup_logging(args.verbose)

    config, config_warnings = load_config(args.config)
    print_diagnostics("Config warnings", config_warnings)

    ledger_path = args.ledger.resolve()
    try:
        ledger = load_ledger(ledger_path, source_locale=config.source_locale)
    except LedgerError as exc:
        print(f"Failed to load ledger: {exc}")
        return 1

    out_dir = args.out.resolve()
    try:
        resolution = load_resolution(args.resolve.resolve()) if args.resolve else None
        outcome = merge_locale_packs(
            ledger.records(),
            out_dir,
            resolution,
            locales=ledger.locales,
            source_locale=config.source_locale,
            dry_run=args.dry_run,
        )
    except (LocalePackError, OSError) as exc:
        print(f"Locale pack generation failed: {exc}")
        return 1

    warnings = [*ledger.warnings, *outcome.warnings]
    if not outcome.ok:
        print_conflicts(outcome.unresolved)
        if outcome.report_path is not None:
            print(f"Conflict report: {outcome.report_path}")
        print("No locale pack written.")
        print_diagnostics("Warnings", warnings)
        return 1

    for locale, pack in outcome.packs.items():
        print(f"{locale}.json: {len(pack)} key(s)")
    if outcome.conflicts:
        print(f"Resolved conflicts: {len(outcome.conflicts)}")
    if args.dry_run:
        print("Dry run: packs not written")
    else:
        print(f"Output: {out_dir}")

    if args.master and not args.dry_run:
        master_path = args.master.resolve()
        if master_path == ledger_path:
            warnings.append("Master workbook is the ledger itself, merge skipped")
        else:
            try:
                appended = merge_into_master(master_path, ledger.sheets, ledger.locales)
            except (LedgerError, OSError) as exc:
                print(f"Failed to merge into master: {exc}")
                return 1
            print(f"Master: {master_path} (+{appended} row(s))")

    print_diagnostics("Warnings", warnings)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
