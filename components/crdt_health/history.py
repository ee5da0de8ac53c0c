"""
Envelope handling for the collaboration history blob.

The blob belongs to the replication engine and is opaque here. This module only
checks the container signature and asks an engine to produce a fresh
single-writer history from plain text.
"""

import hashlib
import struct
from typing import Optional, Protocol

HISTORY_SIGNATURE = bytes([0x85, 0x6F, 0x4A, 0x83])


def has_valid_signature(blob: bytes, signature: bytes = HISTORY_SIGNATURE) -> bool:
    """Check the leading bytes of a non-empty history blob."""
    return blob[: len(signature)] == signature


class HistoryEngine(Protocol):
    """The slice of the replication engine this service depends on."""

    signature: bytes

    def rebuild_from_text(self, text: str) -> bytes:
        """Create a new single-writer history whose document text is ``text``."""
        ...

    def extract_text(self, blob: bytes) -> Optional[str]:
        """Return the document text held by ``blob``, or None if unknown."""
        ...


class SeedHistoryEngine:
    """
    Writes seed histories: the container signature followed by one seed chunk.

    Layout after the signature: ``b"SEED"``, a format byte, a big-endian
    uint32 payload length, the UTF-8 payload and its SHA-256 digest. The
    replication engine expands a seed into a full history on first load.
    """

    TAG = b"SEED"
    FORMAT_VERSION = 1
    _HEADER = struct.Struct(">4sBI")

    def __init__(self, signature: bytes = HISTORY_SIGNATURE):
        self.signature = signature

    def rebuild_from_text(self, text: str) -> bytes:
        payload = text.encode("utf-8")
        header = self._HEADER.pack(self.TAG, self.FORMAT_VERSION, len(payload))
        return self.signature + header + payload + hashlib.sha256(payload).digest()

    def extract_text(self, blob: bytes) -> Optional[str]:
        if not has_valid_signature(blob, self.signature):
            return None
        body = blob[len(self.signature):]
        if len(body) < self._HEADER.size:
            return None
        tag, version, length = self._HEADER.unpack_from(body)
        if tag != self.TAG or version != self.FORMAT_VERSION:
            return None

        payload = body[self._HEADER.size:self._HEADER.size + length]
        digest = body[self._HEADER.size + length:]
        if len(payload) != length or digest != hashlib.sha256(payload).digest():
            return None
        try:
            return payload.decode("utf-8")
        except UnicodeDecodeError:
            return None
