"""Shared pytest fixtures for linqgate tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_linq_env(monkeypatch, tmp_path):
    """Keep every test away from the real state directory and credentials.

    The chat store defaults to a file under LINQ_STATE_DIR and account
    resolution falls back to LINQ_API_TOKEN; without this, a developer's
    environment would leak into the tests.
    """
    monkeypatch.setenv("LINQ_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.delenv("LINQ_API_TOKEN", raising=False)
    monkeypatch.delenv("LINQ_API_BASE_URL", raising=False)
    monkeypatch.delenv("LINQ_HTTP_TIMEOUT", raising=False)
    yield
