import pytest

from rkey import executil


@pytest.fixture(autouse=True)
def _isolated_logs(tmp_path, monkeypatch):
    """Send the JSONL event log to a per-test directory at TRACE level."""

    log_dir = tmp_path / "logs"
    monkeypatch.setattr(executil, "LOG_DIRS", [str(log_dir)])
    monkeypatch.setattr(executil, "LOG_PATH", None)
    monkeypatch.setattr(executil, "LOG_LEVEL", "TRACE")
    return log_dir
