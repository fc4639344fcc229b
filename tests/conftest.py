"""Shared pytest fixtures for all tests."""

from pathlib import Path

import pytest

from i18n_config import DEFAULT_CONFIG
from i18n_hash import DEFAULT_SCHEME


@pytest.fixture
def config():
    return DEFAULT_CONFIG


@pytest.fixture
def scheme():
    return DEFAULT_SCHEME


@pytest.fixture
def write_source(tmp_path):
    """Write a UTF-8 source file under tmp_path and return its path."""

    def _write(rel_path: str, text: str) -> Path:
        path = tmp_path / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    return _write
