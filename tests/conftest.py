"""Pytest configuration for the Bosun test suite."""

import os
import tempfile


def _ensure_test_env() -> None:
    """Point the data directory at a scratch location before config is imported."""
    os.environ.setdefault("BOSUN_DIR", tempfile.mkdtemp(prefix="bosun-test-"))


_ensure_test_env()

import pytest  # noqa: E402

import config  # noqa: E402


@pytest.fixture(autouse=True)
def _isolated_data_dir(tmp_path, monkeypatch):
    """Give every test its own data directory."""
    monkeypatch.setenv("BOSUN_DIR", str(tmp_path / "bosun"))
    config._reset_data_dir()
    yield
    config._reset_data_dir()
