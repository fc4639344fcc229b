"""Translation ledger stored as an .xlsx workbook.

One sheet per scanned source root; the first row is the header. Columns
``key``/``text``/``file``/``line``/``link``/``hash``/``context``/``status``
are reserved (plus the legacy ``gitlab`` and ``value`` names), every other
column is a locale code. Ledgers written by older tooling have no ``text``
column; their source-locale column (``zh`` by default) is used instead.

The hash scheme that produced the keys lives in the ``__i18n_meta__`` sheet.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import zipfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath

from openpyxl import Workbook, load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from i18n_hash import (
    DEFAULT_SCHEME,
    HashScheme,
    HashSchemeError,
    content_hash,
    parse_hash_spec,
)

logger = logging.getLogger(__name__)

META_SHEET = "__i18n_meta__"
STATUS_ACTIVE = "ACTIVE"
STATUS_DELETED = "DELETED"
RESERVED_COLUMNS = frozenset(
    {"key", "text", "file", "line", "link", "hash", "context", "status", "gitlab", "value"}
)
LEADING_COLUMNS = ("key", "text")
TRAILING_COLUMNS = ("file", "line", "link", "hash", "context", "status")
INVALID_SHEET_CHARS_RE = re.compile(r"[\[\]:*?/\\]")
MAX_SHEET_TITLE = 31


class LedgerError(RuntimeError):
    pass


@dataclass(frozen=True)
class TranslationRecord:
    key: str
    text: str
    file: str
    line: int
    content_hash: str = ""
    context: str = ""
    per_locale: dict[str, str] = field(default_factory=dict)
    sheet: str = ""
    link: str = ""
    status: str = STATUS_ACTIVE

    @property
    def deleted(self) -> bool:
        return self.status == STATUS_DELETED


@dataclass
class Ledger:
    sheets: dict[str, list[TranslationRecord]]
    locales: list[str]
    hash_scheme: HashScheme = DEFAULT_SCHEME
    warnings: list[str] = field(default_factory=list)

    def records(self) -> list[TranslationRecord]:
        return [record for rows in self.sheets.values() for record in rows]


def build_link(prefix: str | None, file: str, line: int) -> str:
    if not prefix:
        return ""
    return f"{prefix.rstrip('/')}/{file}#L{line}"


def safe_sheet_title(name: str) -> str:
    title = INVALID_SHEET_CHARS_RE.sub("_", name).strip("'") or "Sheet"
    return title[:MAX_SHEET_TITLE]


def _cell_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _cell_int(value: object) -> int:
    text = _cell_text(value)
    try:
        return int(float(text)) if text else 0
    except ValueError:
        return 0


def _cell_link(value: object) -> str:
    # legacy sheets hold a "link" label in the cell, not the URL
    text = _cell_text(value)
    return text if "://" in text else ""


def _read_meta(ws) -> dict[str, str]:
    meta: dict[str, str] = {}
    for row in ws.iter_rows(min_row=1, values_only=True):
        if not row or len(row) < 2:
            continue
        name = _cell_text(row[0])
        if name and name != "name":
            meta[name] = _cell_text(row[1])
    return meta


def _read_sheet(
    ws, sheet_name: str, source_locale: str, warnings: list[str]
) -> tuple[list[TranslationRecord], list[str]]:
    rows = ws.iter_rows(values_only=True)
    header_row = next(rows, None)
    if not header_row:
        return [], []
    headers = [_cell_text(cell) for cell in header_row]
    index = {name: idx for idx, name in enumerate(headers) if name}
    if "key" not in index:
        warnings.append(f"Sheet {sheet_name!r} has no 'key' column, skipped")
        return [], []

    text_column = next(
        (name for name in ("text", source_locale, "value") if name in index), None
    )
    if text_column is None:
        warnings.append(f"Sheet {sheet_name!r} has no text column, skipped")
        return [], []
    link_column = "link" if "link" in index else ("gitlab" if "gitlab" in index else None)
    locales = [name for name in headers if name and name not in RESERVED_COLUMNS]

    def cell(row: tuple, name: str | None) -> object:
        if name is None or name not in index:
            return None
        idx = index[name]
        return row[idx] if idx < len(row) else None

    records: list[TranslationRecord] = []
    for row in rows:
        if not row:
            continue
        key = _cell_text(cell(row, "key"))
        text = _cell_text(cell(row, text_column))
        if not key or not text:
            continue
        file = _cell_text(cell(row, "file"))
        per_locale = {
            locale: value
            for locale in locales
            if (value := _cell_text(cell(row, locale)))
        }
        records.append(
            TranslationRecord(
                key=key,
                text=text,
                file=file,
                line=_cell_int(cell(row, "line")),
                content_hash=_cell_text(cell(row, "hash")) or content_hash(text, file),
                context=_cell_text(cell(row, "context")),
                per_locale=per_locale,
                sheet=sheet_name,
                link=_cell_link(cell(row, link_column)),
                status=_cell_text(cell(row, "status")) or STATUS_ACTIVE,
            )
        )
    return records, locales


def load_ledger(path: Path, *, source_locale: str = "zh") -> Ledger:
    if not path.is_file():
        raise LedgerError(f"Ledger not found: {path}")
    try:
        wb = load_workbook(path, read_only=True, data_only=True)
    except (OSError, InvalidFileException, zipfile.BadZipFile, KeyError) as exc:
        raise LedgerError(f"Ledger unreadable: {path} ({exc})") from exc

    warnings: list[str] = []
    sheets: dict[str, list[TranslationRecord]] = {}
    locales: list[str] = []
    meta: dict[str, str] = {}
    try:
        for name in wb.sheetnames:
            ws = wb[name]
            if name == META_SHEET:
                meta = _read_meta(ws)
                continue
            records, sheet_locales = _read_sheet(ws, name, source_locale, warnings)
            sheets[name] = records
            for locale in sheet_locales:
                if locale not in locales:
                    locales.append(locale)
            logger.debug("Loaded %d rows from sheet %s", len(records), name)
    finally:
        wb.close()

    scheme = DEFAULT_SCHEME
    if meta.get("hash_scheme"):
        try:
            scheme = parse_hash_spec(meta["hash_scheme"])
        except HashSchemeError as exc:
            warnings.append(f"Ledger hash scheme invalid, using default: {exc}")
    return Ledger(sheets=sheets, locales=locales, hash_scheme=scheme, warnings=warnings)


def ledger_header(locales: list[str]) -> list[str]:
    return [*LEADING_COLUMNS, *locales, *TRAILING_COLUMNS]


def record_row(record: TranslationRecord, header: list[str]) -> list[object]:
    values: dict[str, object] = {
        "key": record.key,
        "text": record.text,
        "file": record.file,
        "line": record.line,
        "link": record.link or None,
        "hash": record.content_hash,
        "context": record.context or None,
        "status": record.status,
        "gitlab": record.link or None,
        "value": record.text,
    }
    return [
        values[name] if name in values else (record.per_locale.get(name) or None)
        for name in header
    ]


def save_ledger(
    path: Path,
    sheets: dict[str, list[TranslationRecord]],
    locales: list[str],
    scheme: HashScheme,
) -> None:
    """Write every sheet (deleted rows last) and the metadata sheet."""
    wb = Workbook()
    wb.remove(wb.active)
    header = ledger_header(locales)
    used_titles: set[str] = set()
    for name, records in sheets.items():
        title = safe_sheet_title(name)
        suffix = 2
        while title in used_titles:
            tail = f"_{suffix}"
            title = f"{safe_sheet_title(name)[: MAX_SHEET_TITLE - len(tail)]}{tail}"
            suffix += 1
        used_titles.add(title)
        ws = wb.create_sheet(title=title)
        ws.append(header)
        for record in sorted(records, key=lambda r: r.deleted):
            ws.append(record_row(record, header))

    meta = wb.create_sheet(title=META_SHEET)
    meta.append(["name", "value"])
    meta.append(["hash_scheme", scheme.describe()])
    meta.append(["written_at", datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%SZ")])

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    wb.save(tmp_path)
    os.replace(tmp_path, path)


def backup_ledger(path: Path) -> Path:
    stamp = datetime.now().strftime("%Y%m%d%H%M%S%f")
    backup = path.with_name(f"{path.name}.backup.{stamp}")
    shutil.copy2(path, backup)
    return backup


def _basename(file: str) -> str:
    return PurePosixPath(file.replace("\\", "/")).name


def merge_into_master(
    master_path: Path,
    sheets: dict[str, list[TranslationRecord]],
    locales: list[str],
) -> int:
    """Append rows whose key the master workbook's same-named sheet lacks."""
    if master_path.is_file():
        try:
            wb = load_workbook(master_path)
        except (OSError, InvalidFileException, zipfile.BadZipFile, KeyError) as exc:
            raise LedgerError(f"Master workbook unreadable: {master_path} ({exc})") from exc
    else:
        wb = Workbook()
        wb.remove(wb.active)

    appended = 0
    for name, records in sheets.items():
        title = safe_sheet_title(name)
        if title in wb.sheetnames:
            ws = wb[title]
            header = [_cell_text(cell.value) for cell in ws[1]]
            if "key" not in header:
                raise LedgerError(f"Master sheet {title!r} has no 'key' column")
        else:
            ws = wb.create_sheet(title=title)
            header = ledger_header(locales)
            ws.append(header)
        key_idx = header.index("key")
        known = {
            _cell_text(row[key_idx])
            for row in ws.iter_rows(min_row=2, values_only=True)
            if row and key_idx < len(row)
        }
        fresh = [r for r in records if r.key not in known and not r.deleted]
        fresh.sort(key=lambda r: (_basename(r.file), r.line))
        for record in fresh:
            if record.key in known:
                continue
            known.add(record.key)
            ws.append(record_row(record, header))
            appended += 1
    if not wb.sheetnames:
        wb.create_sheet(title=META_SHEET)

    tmp_path = master_path.with_name(f".{master_path.name}.tmp")
    wb.save(tmp_path)
    os.replace(tmp_path, master_path)
    return appended
