"""Stable key derivation for extracted text.

A key is ``i18n_`` followed by a short digest of the canonical text. The digest
scheme is a property of the ledger it produced: it is written into the ledger
metadata and every later run that touches that ledger re-uses it.
"""

from __future__ import annotations

import hashlib
import importlib
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import PurePosixPath

KEY_PREFIX = "i18n_"
DEFAULT_ALGORITHM = "md5"
DEFAULT_LENGTH = 12
CONTENT_HASH_LENGTH = 12
WHITESPACE_RE = re.compile(r"\s+")
CALLABLE_SPEC_RE = re.compile(r"^[A-Za-z_][\w.]*:[A-Za-z_]\w*$")


class HashSchemeError(ValueError):
    pass


@dataclass(frozen=True)
class HashScheme:
    algorithm: str = DEFAULT_ALGORITHM
    length: int = DEFAULT_LENGTH
    prefix: str = ""
    callable_spec: str | None = None

    def __post_init__(self) -> None:
        if self.callable_spec is None:
            if self.algorithm not in hashlib.algorithms_available:
                raise HashSchemeError(f"Unknown hash algorithm: {self.algorithm}")
            if self.length <= 0:
                raise HashSchemeError("Hash length must be > 0")

    def digest(self, text: str) -> str:
        if self.callable_spec:
            value = load_callable(self.callable_spec)(text)
            if not isinstance(value, str) or not value:
                raise HashSchemeError(
                    f"Hash function {self.callable_spec} returned {value!r}"
                )
            return value
        hasher = hashlib.new(self.algorithm)
        hasher.update(text.encode("utf-8"))
        return f"{self.prefix}{hasher.hexdigest()[: self.length]}"

    def make_key(self, text: str) -> str:
        return f"{KEY_PREFIX}{self.digest(text)}"

    def describe(self) -> str:
        if self.callable_spec:
            return self.callable_spec
        base = f"{self.algorithm}:{self.length}"
        return f"{base}:{self.prefix}" if self.prefix else base


DEFAULT_SCHEME = HashScheme()


def load_callable(spec: str) -> Callable[[str], str]:
    module_name, _, attr = spec.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise HashSchemeError(f"Cannot import {module_name}: {exc}") from exc
    func = getattr(module, attr, None)
    if not callable(func):
        raise HashSchemeError(f"{spec} is not callable")
    return func


def parse_hash_spec(raw: object) -> HashScheme:
    """Build a scheme from a config value or a ledger metadata string.

    Accepted forms:
      "md5:12"                         algorithm and digest length
      "sha256:16:rn_"                  plus a namespace prefix
      "mypkg.hashing:stable_hash"      user function text -> digest
      {"algorithm": .., "length": .., "prefix": ..}
    """
    if raw is None or raw == "":
        return DEFAULT_SCHEME
    if isinstance(raw, dict):
        algorithm = raw.get("algorithm", DEFAULT_ALGORITHM)
        length = raw.get("length", DEFAULT_LENGTH)
        prefix = raw.get("prefix", "")
        func = raw.get("function")
        if func:
            if not isinstance(func, str) or not CALLABLE_SPEC_RE.match(func):
                raise HashSchemeError(f"Invalid hash function spec: {func!r}")
            return HashScheme(callable_spec=func)
        if not isinstance(algorithm, str) or not isinstance(prefix, str):
            raise HashSchemeError("Hash algorithm and prefix must be strings")
        if isinstance(length, bool) or not isinstance(length, int):
            raise HashSchemeError("Hash length must be an integer")
        return HashScheme(algorithm=algorithm.lower(), length=length, prefix=prefix)
    if not isinstance(raw, str):
        raise HashSchemeError(f"Unsupported hash spec: {raw!r}")

    spec = raw.strip()
    head, _, tail = spec.partition(":")
    if tail and head.lower() not in hashlib.algorithms_available:
        if not CALLABLE_SPEC_RE.match(spec):
            raise HashSchemeError(f"Invalid hash function spec: {spec}")
        return HashScheme(callable_spec=spec)
    parts = spec.split(":", 2)
    algorithm = parts[0].lower()
    length = DEFAULT_LENGTH
    if len(parts) > 1 and parts[1]:
        if not parts[1].isdigit():
            raise HashSchemeError(f"Invalid hash length in spec: {spec}")
        length = int(parts[1])
    prefix = parts[2] if len(parts) > 2 else ""
    return HashScheme(algorithm=algorithm, length=length, prefix=prefix)


def normalize_text(text: str) -> str:
    return WHITESPACE_RE.sub(" ", text.strip())


def content_hash(text: str, file: str) -> str:
    """Coarse identity used to re-match ledger rows after edits.

    Depends on the normalized text and the file's basename only, so it
    survives line shifts and directory moves.
    """
    basename = PurePosixPath(file.replace("\\", "/")).name if file else "unknown"
    payload = f"{normalize_text(text)}|{basename}"
    return hashlib.md5(payload.encode("utf-8")).hexdigest()[:CONTENT_HASH_LENGTH]


def find_key_collisions(
    pairs: Iterable[tuple[str, str]],
) -> dict[str, list[str]]:
    """Return keys that more than one distinct text maps to."""
    seen: dict[str, list[str]] = {}
    for key, text in pairs:
        texts = seen.setdefault(key, [])
        if text not in texts:
            texts.append(text)
    return {key: texts for key, texts in seen.items() if len(texts) > 1}
