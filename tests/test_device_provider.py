import pytest

from rkey import device_provider
from rkey.errors import UnmountError


class FakeScratch:
    def __init__(self, path, mount_ok=True, unmount_error=None):
        self.path = str(path)
        self.mount_ok = mount_ok
        self.unmount_error = unmount_error
        self.events = []
        self.outstanding = 0

    def mount(self, device, fstype):
        assert self.outstanding == 0
        self.events.append(("mount", device, fstype))
        if self.mount_ok:
            self.outstanding += 1
        return self.mount_ok

    def unmount(self):
        self.events.append(("unmount",))
        self.outstanding -= 1
        if self.unmount_error:
            raise self.unmount_error


@pytest.fixture
def present(monkeypatch):
    monkeypatch.setattr(device_provider, "device_for_uuid", lambda uuid: "/dev/sdb1")


def test_secret_filename():
    assert device_provider.secret_filename("tank") == ".rkey-tank"


def test_reads_secret_and_unmounts(tmp_path, present):
    (tmp_path / ".rkey-tank").write_text("abc123\n", encoding="utf-8")
    scratch = FakeScratch(tmp_path)
    secret = device_provider.DeviceProvider(scratch).fetch("tank", "1234-ABCD", "vfat")
    assert secret == bytearray(b"abc123")
    assert isinstance(secret, bytearray)
    assert scratch.events == [("mount", "/dev/sdb1", "vfat"), ("unmount",)]
    assert scratch.outstanding == 0


def test_absent_device_never_mounts(tmp_path, monkeypatch):
    monkeypatch.setattr(device_provider, "device_for_uuid", lambda uuid: None)
    scratch = FakeScratch(tmp_path)
    assert device_provider.DeviceProvider(scratch).fetch("tank", "0000-0000", "vfat") is None
    assert scratch.events == []


@pytest.mark.parametrize(
    "volume, uuid, fstype",
    [
        ("", "1234-ABCD", "vfat"),
        ("tank", "", "vfat"),
        ("tank", "1234-ABCD", ""),
        ("tank/..", "1234-ABCD", "vfat"),
        ("tank/../../etc/shadow", "1234-ABCD", "vfat"),
        ("/etc/shadow", "1234-ABCD", "vfat"),
    ],
)
def test_missing_parameters_skip_storage(tmp_path, monkeypatch, volume, uuid, fstype):
    def no_lookup(uuid):
        raise AssertionError("device lookup must not happen")

    monkeypatch.setattr(device_provider, "device_for_uuid", no_lookup)
    scratch = FakeScratch(tmp_path)
    assert device_provider.DeviceProvider(scratch).fetch(volume, uuid, fstype) is None
    assert scratch.events == []


def test_mount_failure_is_absent(tmp_path, present):
    scratch = FakeScratch(tmp_path, mount_ok=False)
    assert device_provider.DeviceProvider(scratch).fetch("tank", "1234-ABCD", "ext4") is None
    assert scratch.events == [("mount", "/dev/sdb1", "ext4")]


def test_missing_secret_file_still_unmounts(tmp_path, present):
    scratch = FakeScratch(tmp_path)
    assert device_provider.DeviceProvider(scratch).fetch("data", "1234-ABCD", "vfat") is None
    assert scratch.events[-1] == ("unmount",)


def test_empty_secret_file_is_absent(tmp_path, present):
    (tmp_path / ".rkey-tank").write_text("\n", encoding="utf-8")
    scratch = FakeScratch(tmp_path)
    assert device_provider.DeviceProvider(scratch).fetch("tank", "1234-ABCD", "vfat") is None


def test_unmount_failure_propagates(tmp_path, present):
    (tmp_path / ".rkey-tank").write_text("abc123", encoding="utf-8")
    scratch = FakeScratch(tmp_path, unmount_error=UnmountError("busy", mountpoint=str(tmp_path)))
    with pytest.raises(UnmountError):
        device_provider.DeviceProvider(scratch).fetch("tank", "1234-ABCD", "vfat")


def test_nested_dataset_name(tmp_path, present):
    (tmp_path / ".rkey-rpool").mkdir()
    (tmp_path / ".rkey-rpool" / "secure").write_text("abc123\n", encoding="utf-8")
    scratch = FakeScratch(tmp_path)
    secret = device_provider.DeviceProvider(scratch).fetch("rpool/secure", "UUID-1", "ext4")
    assert secret == bytearray(b"abc123")
    assert scratch.events == [("mount", "/dev/sdb1", "ext4"), ("unmount",)]


def test_secret_path_stays_below_mountpoint(tmp_path):
    provider = device_provider.DeviceProvider(FakeScratch(tmp_path))
    assert provider.secret_path("rpool/secure") == str(tmp_path / ".rkey-rpool" / "secure")
    assert provider.secret_path("tank/../../outside") is None
