# codec.py
import base64
import hashlib
import json
import logging
import zlib
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

from .exceptions import PayloadDecodeError
from .storage.dto import DownloadResult


def derive_key(passphrase: str) -> bytes:
    """Turns an arbitrary passphrase into a Fernet key (urlsafe base64, 32 bytes)."""
    digest = hashlib.sha256(passphrase.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


class PayloadCodec:
    """
    Converts a bookmark payload to the text stored remotely and back.

    Plain payloads are pretty-printed JSON. Compressed payloads are compact
    JSON, zlib-compressed and encrypted with Fernet, which yields an opaque
    ASCII token. The stored text carries no format marker, so `decode`
    tries JSON first and falls back to decryption.
    """

    def __init__(self, passphrase: str):
        self._fernet = Fernet(derive_key(passphrase))

    def encode(self, data: Any, compress: bool) -> str:
        if not compress:
            return json.dumps(data, indent=2)

        raw = json.dumps(data, separators=(",", ":")).encode("utf-8")
        return self._fernet.encrypt(zlib.compress(raw)).decode("ascii")

    def decode_bytes(self, raw: bytes) -> DownloadResult:
        """Decodes a downloaded file body, which must be UTF-8 text."""
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise PayloadDecodeError("Remote payload is not valid UTF-8 text.") from e
        return self.decode(text)

    def decode(self, text: str) -> DownloadResult:
        try:
            return DownloadResult(contents=json.loads(text), compressed=False)
        except json.JSONDecodeError:
            logging.info("Payload is not plain JSON, attempting to decrypt it...")

        try:
            raw = zlib.decompress(self._fernet.decrypt(text.strip().encode("ascii")))
            contents = json.loads(raw.decode("utf-8"))
        except (InvalidToken, UnicodeError, zlib.error, ValueError) as e:
            # Either a corrupted plain payload or one encrypted with another key.
            raise PayloadDecodeError(
                "Remote payload is neither valid JSON nor a readable encrypted payload."
            ) from e

        return DownloadResult(contents=contents, compressed=True)
