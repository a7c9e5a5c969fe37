"""Shared test fixtures and utilities."""

from pathlib import Path

import pytest

from repo_uploader.orchestrator import UploadOrchestrator
from repo_uploader.progress_store import ProgressStore
from tests.fixtures.fake_remote import FakeRemote


@pytest.fixture(autouse=True)
def isolated_config_dir(tmp_path, monkeypatch):
    """Keep config and checkpoints out of the real user directories."""
    config_dir = tmp_path / "config"
    monkeypatch.setattr("repo_uploader.utils.get_config_dir", lambda: config_dir)
    monkeypatch.setattr("repo_uploader.config.get_config_dir", lambda: config_dir)
    monkeypatch.setattr("repo_uploader.progress_store.get_config_dir", lambda: config_dir)
    for var in ("GITHUB_TOKEN", "DEBUG"):
        monkeypatch.delenv(var, raising=False)
    return config_dir


@pytest.fixture
def write_file(tmp_path):
    """Factory fixture to write files under tmp_path/src."""
    root = tmp_path / "src"
    root.mkdir(exist_ok=True)

    def _write(path: str, content: str = "test content") -> Path:
        file_path = root / path
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(content)
        return file_path
    _write.root = root
    return _write


@pytest.fixture
def three_files(write_file):
    """Upload root with three small files."""
    write_file("README.md", "# demo\n")
    write_file("src/app.py", "print('hello')\n")
    write_file("data/values.csv", "a,b\n1,2\n")
    return write_file.root


@pytest.fixture
def store(tmp_path):
    return ProgressStore(tmp_path / "state")


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def events():
    """Collected progress events."""
    return []


@pytest.fixture
def orchestrator(remote, store, events):
    return UploadOrchestrator(remote, store, listener=events.append)
