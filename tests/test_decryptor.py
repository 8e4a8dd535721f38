import pytest
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from rkey import decryptor


def openssl_blob(secret: str, plaintext: bytes, salt: bytes = b"\x01" * 8) -> bytes:
    """Produce what ``openssl enc -aes-256-cbc -pbkdf2 -salt`` writes."""

    material = PBKDF2HMAC(algorithm=hashes.SHA256(), length=48, salt=salt, iterations=10000).derive(
        secret.encode()
    )
    padder = padding.PKCS7(128).padder()
    padded = padder.update(plaintext) + padder.finalize()
    enc = Cipher(algorithms.AES(material[:32]), modes.CBC(material[32:])).encryptor()
    return b"Salted__" + salt + enc.update(padded) + enc.finalize()


@pytest.fixture
def key_base(tmp_path):
    base = tmp_path / "keys" / "rkey"
    base.parent.mkdir()
    (tmp_path / "keys" / "rkey-tank").write_bytes(openssl_blob("abc123", b"correct-horse\n"))
    return str(base)


def test_blob_path_naming():
    assert decryptor.blob_path("/etc/rkey/keys/rkey", "tank") == "/etc/rkey/keys/rkey-tank"


def test_decrypts_with_right_secret(key_base):
    result = decryptor.Decryptor(key_base).decrypt("tank", "abc123")
    assert isinstance(result, bytearray)
    assert bytes(result) == b"correct-horse"


def test_accepts_bytes_secret(key_base):
    assert bytes(decryptor.Decryptor(key_base).decrypt("tank", b"abc123")) == b"correct-horse"


def test_secret_buffer_is_left_intact(key_base):
    secret = bytearray(b"abc123")
    assert bytes(decryptor.Decryptor(key_base).decrypt("tank", secret)) == b"correct-horse"
    assert secret == bytearray(b"abc123")


def test_nested_volume_blob(tmp_path):
    base = tmp_path / "rkey"
    (tmp_path / "rkey-rpool").mkdir()
    (tmp_path / "rkey-rpool" / "secure").write_bytes(openssl_blob("abc123", b"staple"))
    assert bytes(decryptor.Decryptor(str(base)).decrypt("rpool/secure", bytearray(b"abc123"))) == b"staple"


def test_wrong_secret_is_absent(key_base):
    # A wrong key occasionally yields valid padding; the plaintext then differs.
    result = decryptor.Decryptor(key_base).decrypt("tank", "not-the-secret")
    assert result is None or bytes(result) != b"correct-horse"


@pytest.mark.parametrize("volume, secret", [("", "abc123"), ("tank", ""), ("tank", None)])
def test_empty_inputs_are_absent(key_base, volume, secret):
    assert decryptor.Decryptor(key_base).decrypt(volume, secret) is None


def test_missing_blob_is_absent(key_base):
    assert decryptor.Decryptor(key_base).decrypt("data", "abc123") is None


def test_corrupt_blob_is_absent(tmp_path):
    base = tmp_path / "rkey"
    (tmp_path / "rkey-tank").write_bytes(b"Salted__" + b"\x00" * 8 + b"\x00" * 15)
    (tmp_path / "rkey-data").write_bytes(b"not an openssl container at all")
    d = decryptor.Decryptor(str(base))
    assert d.decrypt("tank", "abc123") is None
    assert d.decrypt("data", "abc123") is None


def test_decrypt_is_idempotent(key_base):
    d = decryptor.Decryptor(key_base)
    first = d.decrypt("tank", "abc123")
    second = d.decrypt("tank", "abc123")
    assert first == second


def test_secret_not_logged(key_base, _isolated_logs):
    decryptor.Decryptor(key_base).decrypt("tank", "abc123")
    text = (_isolated_logs / "unlock.jsonl").read_text(encoding="utf-8")
    assert "abc123" not in text
    assert "correct-horse" not in text


def test_wipe_zeroes_buffer():
    buf = bytearray(b"correct-horse")
    decryptor.wipe(buf)
    assert buf == bytearray(len(b"correct-horse"))
    decryptor.wipe(None)
