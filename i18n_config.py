"""Tool configuration loaded from an optional JSON file.

Example config (every field optional):
{
  "extensions": [".js", ".jsx", ".ts", ".tsx"],
  "ignoreFiles": ["__tests__", "src/legacy/"],
  "testAttributes": ["testID", "accessibilityLabel"],
  "styleFactories": ["StyleSheet.create"],
  "lookupFunction": "t",
  "importPath": "core/util/i18n",
  "targetPattern": "[\\u4e00-\\u9fff]",
  "locales": ["en"],
  "sourceLocale": "zh",
  "hash": "md5:12",
  "translateHook": "mypkg.mt:translate",
  "translateLocale": "en",
  "linkPrefix": "https://git.example.com/app/-/blob/main"
}

A malformed file or field is reported and replaced by its default so a run
never stops on configuration alone.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from pathlib import Path

from i18n_hash import (
    DEFAULT_SCHEME,
    HashScheme,
    HashSchemeError,
    load_callable,
    parse_hash_spec,
)

HAN_PATTERN = r"[\u3400-\u4DBF\u4E00-\u9FFF\uF900-\uFAFF]"
DEFAULT_EXTENSIONS = frozenset({".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs"})
DEFAULT_TEST_ATTRIBUTES = ("testID", "accessibilityLabel", "accessibilityHint", "nativeID")
DEFAULT_STYLE_FACTORIES = ("StyleSheet.create",)
IDENTIFIER_RE = re.compile(r"^[A-Za-z_$][\w$]*$")

FIELD_ALIASES = {
    "extensions": "extensions",
    "ignoreFiles": "ignore_files",
    "ignore_files": "ignore_files",
    "testAttributes": "test_attributes",
    "test_attributes": "test_attributes",
    "styleFactories": "style_factories",
    "style_factories": "style_factories",
    "lookupFunction": "lookup_function",
    "lookup_function": "lookup_function",
    "importPath": "import_path",
    "import_path": "import_path",
    "targetPattern": "target_pattern",
    "target_pattern": "target_pattern",
    "locales": "locales",
    "sourceLocale": "source_locale",
    "source_locale": "source_locale",
    "hash": "hash_scheme",
    "translateHook": "translate_hook",
    "translate_hook": "translate_hook",
    "translateLocale": "translate_locale",
    "translate_locale": "translate_locale",
    "linkPrefix": "link_prefix",
    "link_prefix": "link_prefix",
}


@dataclass(frozen=True)
class ToolConfig:
    extensions: frozenset[str] = DEFAULT_EXTENSIONS
    ignore_files: tuple[str, ...] = ()
    test_attributes: tuple[str, ...] = DEFAULT_TEST_ATTRIBUTES
    style_factories: tuple[str, ...] = DEFAULT_STYLE_FACTORIES
    lookup_function: str = "t"
    import_path: str = "core/util/i18n"
    target_pattern: str = HAN_PATTERN
    locales: tuple[str, ...] = ("en",)
    source_locale: str = "zh"
    hash_scheme: HashScheme = DEFAULT_SCHEME
    translate_hook: str | None = None
    translate_locale: str = "en"
    link_prefix: str | None = None
    target_re: re.Pattern[str] = field(
        default=re.compile(HAN_PATTERN), compare=False, repr=False
    )

    def has_target_text(self, text: str) -> bool:
        return bool(self.target_re.search(text))


DEFAULT_CONFIG = ToolConfig()


def parse_extensions(raw: object) -> frozenset[str]:
    if isinstance(raw, str):
        parts = re.split(r"[,;\s]+", raw.strip())
    elif isinstance(raw, list):
        parts = [p for p in raw if isinstance(p, str)]
    else:
        raise ValueError("extensions must be a list or a comma separated string")
    extensions: set[str] = set()
    for part in parts:
        ext = part.strip().lower()
        if not ext:
            continue
        if not ext.startswith("."):
            ext = f".{ext}"
        extensions.add(ext)
    if not extensions:
        raise ValueError("no valid extensions given")
    return frozenset(extensions)


def _string_tuple(raw: object, name: str) -> tuple[str, ...]:
    if not isinstance(raw, list) or not all(isinstance(v, str) for v in raw):
        raise ValueError(f"{name} must be a list of strings")
    return tuple(v.strip() for v in raw if v.strip())


def _non_empty_string(raw: object, name: str) -> str:
    if not isinstance(raw, str) or not raw.strip():
        raise ValueError(f"{name} must be a non-empty string")
    return raw.strip()


def _coerce_field(name: str, raw: object) -> object:
    if name == "extensions":
        return parse_extensions(raw)
    if name in {"ignore_files", "test_attributes", "style_factories", "locales"}:
        return _string_tuple(raw, name)
    if name == "lookup_function":
        value = _non_empty_string(raw, name)
        if not IDENTIFIER_RE.match(value):
            raise ValueError(f"lookupFunction is not an identifier: {value}")
        return value
    if name == "target_pattern":
        value = _non_empty_string(raw, name)
        re.compile(value)
        return value
    if name == "hash_scheme":
        return parse_hash_spec(raw)
    if name in {"translate_hook", "link_prefix"}:
        if raw is None:
            return None
        return _non_empty_string(raw, name)
    return _non_empty_string(raw, name)


def config_from_mapping(payload: dict) -> tuple[ToolConfig, list[str]]:
    warnings: list[str] = []
    values: dict[str, object] = {}
    for raw_name, raw_value in payload.items():
        if not isinstance(raw_name, str) or raw_name.startswith("$"):
            continue
        name = FIELD_ALIASES.get(raw_name)
        if name is None:
            warnings.append(f"Unknown config field ignored: {raw_name}")
            continue
        try:
            values[name] = _coerce_field(name, raw_value)
        except (ValueError, re.error, HashSchemeError) as exc:
            warnings.append(f"Invalid config field {raw_name!r}, using default: {exc}")

    config = replace(DEFAULT_CONFIG, **values)
    if "target_pattern" in values:
        config = replace(config, target_re=re.compile(config.target_pattern))
    return config, warnings


def load_config(path: Path | None) -> tuple[ToolConfig, list[str]]:
    if path is None:
        return DEFAULT_CONFIG, []
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return DEFAULT_CONFIG, [f"Config file not found, using defaults: {path}"]
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        return DEFAULT_CONFIG, [f"Config file unreadable, using defaults: {path} ({exc})"]
    if not isinstance(payload, dict):
        return DEFAULT_CONFIG, [f"Config must be a JSON object, using defaults: {path}"]
    return config_from_mapping(payload)


def load_translate_hook(
    config: ToolConfig,
) -> tuple[Callable[[str], str | None] | None, list[str]]:
    if not config.translate_hook:
        return None, []
    try:
        return load_callable(config.translate_hook), []
    except HashSchemeError as exc:
        return None, [f"Translate hook disabled: {exc}"]
