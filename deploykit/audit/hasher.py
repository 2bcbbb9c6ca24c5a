"""SHA-256 digests for audit entries and artifact contents."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import BinaryIO


class Hasher:
    """Hex SHA-256 digests. Streams are read in fixed-size blocks."""

    block_size = 1 << 16

    @staticmethod
    def hash_string(text: str) -> str:
        return hashlib.sha256(text.encode("utf-8")).hexdigest()

    @classmethod
    def hash_stream(cls, stream: BinaryIO) -> str:
        digest = hashlib.sha256()
        for block in iter(lambda: stream.read(cls.block_size), b""):
            digest.update(block)
        return digest.hexdigest()

    @classmethod
    def hash_file(cls, path: str | Path) -> str:
        with open(path, "rb") as stream:
            return cls.hash_stream(stream)

    @classmethod
    def hash_manifest(cls, files: dict[str, str]) -> str:
        """Digest of a ``{relative path: file digest}`` mapping.

        Entries are sorted by path, so insertion order does not matter.
        """
        lines = "\n".join(f"{name} {files[name]}" for name in sorted(files))
        return cls.hash_string(lines)
