"""Decrypt per-volume key blobs written by ``openssl enc -aes-256-cbc -pbkdf2``."""

from __future__ import annotations

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .executil import trace

MAGIC = b"Salted__"
SALT_LEN = 8
KEY_LEN = 32
IV_LEN = 16
ITERATIONS = 10000


def blob_path(key_path: str, volume: str) -> str:
    return f"{key_path}-{volume}"


def _derive(secret: bytes | bytearray, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LEN + IV_LEN,
        salt=salt,
        iterations=ITERATIONS,
    )
    return kdf.derive(secret)


def _as_bytes(value: str | bytes | bytearray) -> bytes | bytearray:
    if isinstance(value, str):
        return value.encode("utf-8")
    return value


def wipe(buf: bytearray | None) -> None:
    if buf is None:
        return
    for i in range(len(buf)):
        buf[i] = 0


class Decryptor:
    """Turns a remote secret into a candidate passphrase for one volume."""

    def __init__(self, key_path: str):
        self.key_path = key_path

    def decrypt(self, volume: str, secret: str | bytes | bytearray | None) -> bytearray | None:
        """Return the passphrase as a ``bytearray`` or ``None``.

        Wrong secrets, corrupt or missing blobs and I/O errors all come back
        as ``None``.  The caller owns the returned buffer and must
        :func:`wipe` it.
        """

        if not volume or not secret:
            return None
        path = blob_path(self.key_path, volume)
        try:
            with open(path, "rb") as fh:
                blob = fh.read()
        except OSError as exc:
            trace("decrypt.read_failed", volume=volume, path=path, error=exc.__class__.__name__)
            return None
        if len(blob) <= len(MAGIC) + SALT_LEN or not blob.startswith(MAGIC):
            trace("decrypt.bad_blob", volume=volume, path=path, size=len(blob))
            return None
        salt = blob[len(MAGIC):len(MAGIC) + SALT_LEN]
        body = blob[len(MAGIC) + SALT_LEN:]
        if len(body) % IV_LEN:
            trace("decrypt.bad_blob", volume=volume, path=path, size=len(blob))
            return None

        material = bytearray(_derive(_as_bytes(secret), salt))
        plain = bytearray()
        try:
            decryptor = Cipher(
                algorithms.AES(bytes(material[:KEY_LEN])),
                modes.CBC(bytes(material[KEY_LEN:])),
            ).decryptor()
            plain.extend(decryptor.update(body) + decryptor.finalize())
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            passphrase = bytearray(unpadder.update(bytes(plain)) + unpadder.finalize())
        except ValueError:
            trace("decrypt.failed", volume=volume)
            return None
        finally:
            wipe(material)
            wipe(plain)

        while passphrase and passphrase[-1:] in (b"\n", b"\r"):
            passphrase.pop()
        if not passphrase:
            trace("decrypt.empty", volume=volume)
            return None
        trace("decrypt.ok", volume=volume)
        return passphrase
