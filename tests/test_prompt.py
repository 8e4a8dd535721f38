import os
import signal

import pytest

from rkey import prompt
from rkey.model import SignalPaths


@pytest.fixture
def paths(tmp_path):
    return SignalPaths(
        volume_name=str(tmp_path / "zfs_fs_name"),
        prompt_command=str(tmp_path / "zfs_console_askpwd_cmd"),
        unlock_complete=str(tmp_path / "zfs_unlock_complete"),
        unlock_complete_notify=str(tmp_path / "zfs_unlock_complete_notify"),
    )


def _fake_proc(root, entries):
    for pid, argv in entries.items():
        d = root / str(pid)
        d.mkdir(parents=True)
        (d / "cmdline").write_bytes(b"\0".join(a.encode() for a in argv) + b"\0")
    (root / "self").mkdir()


def test_requested_volume_and_complete(paths, tmp_path):
    channel = prompt.PromptChannel(paths)
    assert channel.requested_volume() is None
    assert not channel.unlock_complete()
    (tmp_path / "zfs_fs_name").write_text("tank\n", encoding="utf-8")
    (tmp_path / "zfs_unlock_complete").write_text("", encoding="utf-8")
    assert channel.requested_volume() == "tank"
    assert channel.unlock_complete()


def test_notify_written_once(paths, tmp_path):
    notify = tmp_path / "zfs_unlock_complete_notify"
    notify.write_text("", encoding="utf-8")
    channel = prompt.PromptChannel(paths)
    assert channel.notify_complete() is True
    assert channel.notify_complete() is False
    assert notify.read_text(encoding="utf-8") == "ok\n"


def test_notify_skipped_without_channel(paths, tmp_path):
    channel = prompt.PromptChannel(paths)
    assert channel.notify_complete() is False
    assert not (tmp_path / "zfs_unlock_complete_notify").exists()


def test_process_listing_reads_cmdline(tmp_path):
    proc = tmp_path / "proc"
    _fake_proc(proc, {1: ["/init"], 412: ["/sbin/zfs", "load-key", "tank"]})
    assert sorted(prompt.process_listing(str(proc))) == [(1, "/init"), (412, "/sbin/zfs load-key tank")]
    assert prompt.process_listing(str(tmp_path / "missing")) == []


def test_find_pids_skips_init_and_self():
    listing = [(1, "/sbin/zfs load-key tank"), (77, "/sbin/zfs load-key tank"), (78, "sh")]
    assert prompt.find_pids("zfs load-key tank", listing, exclude=(78,)) == [77]
    assert prompt.find_pids("zfs load-key tank", listing, exclude=(77,)) == []


def test_kill_prompt_signals_matching_process(paths, tmp_path, monkeypatch):
    (tmp_path / "zfs_console_askpwd_cmd").write_text("/sbin/zfs load-key tank\n", encoding="utf-8")
    proc = tmp_path / "proc"
    _fake_proc(proc, {412: ["/sbin/zfs", "load-key", "tank"], 413: ["/bin/sh"]})
    sent = []
    monkeypatch.setattr(prompt.os, "kill", lambda pid, sig: sent.append((pid, sig)))

    killed = prompt.PromptChannel(paths, proc_root=str(proc)).kill_prompt()
    assert killed == [412]
    assert sent == [(412, signal.SIGTERM)]


def test_kill_prompt_failures_are_ignored(paths, tmp_path, monkeypatch):
    channel = prompt.PromptChannel(paths, proc_root=str(tmp_path / "proc"))
    assert channel.kill_prompt() == []

    (tmp_path / "zfs_console_askpwd_cmd").write_text("plymouth ask-for-password", encoding="utf-8")
    _fake_proc(tmp_path / "proc", {500: ["plymouth", "ask-for-password"]})

    def fake_kill(pid, sig):
        raise ProcessLookupError(pid)

    monkeypatch.setattr(prompt.os, "kill", fake_kill)
    assert channel.kill_prompt() == []


def test_kill_prompt_never_targets_own_process(paths, tmp_path, monkeypatch):
    (tmp_path / "zfs_console_askpwd_cmd").write_text("rkey-unlock", encoding="utf-8")
    proc = tmp_path / "proc"
    _fake_proc(proc, {os.getpid(): ["python", "rkey-unlock"]})
    monkeypatch.setattr(prompt.os, "kill", lambda pid, sig: pytest.fail("must not signal self"))
    assert prompt.PromptChannel(paths, proc_root=str(proc)).kill_prompt() == []
