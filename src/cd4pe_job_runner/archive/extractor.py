"""Extraction of gzip-compressed tar job payloads."""

from __future__ import annotations

import gzip
import logging
import os
import zlib
from pathlib import Path, PurePosixPath
from typing import BinaryIO, NoReturn

from cd4pe_job_runner.archive.tar_headers import (
    BLOCK_SIZE,
    TarHeader,
    is_end_block,
    padded_size,
    parse_header,
    parse_pax_records,
)
from cd4pe_job_runner.errors import ArchiveFormatError

logger = logging.getLogger(__name__)

COPY_CHUNK_SIZE = 64 * 1024


def unzip(
    archive_path: str | os.PathLike[str],
    destination_dir: str | os.PathLike[str],
) -> list[Path]:
    """Extract a ``.tar.gz`` archive into ``destination_dir`` preserving modes.

    Returns the extracted paths in archive order.
    """

    destination = Path(destination_dir)
    destination.mkdir(parents=True, exist_ok=True)
    try:
        with gzip.open(archive_path, "rb") as stream:
            return TarExtractor(stream, destination).extract_all()
    except (gzip.BadGzipFile, zlib.error, EOFError) as error:
        raise ArchiveFormatError(f"Corrupt gzip stream in {archive_path}: {error}") from error


class TarExtractor:
    """Replays tar entries from a decompressed stream onto the filesystem.

    A GNU long-name record or a pax ``path`` record stores the full name of
    the entry that immediately follows it; that name waits in
    ``_pending_name`` until the next header is read.
    """

    def __init__(self, stream: BinaryIO, destination: Path) -> None:
        self._stream = stream
        self._destination = destination.resolve()
        self._pending_name: str | None = None
        self._directory_modes: list[tuple[Path, int]] = []

    def extract_all(self) -> list[Path]:
        extracted: list[Path] = []
        while True:
            block = self._read_block()
            if block is None:
                self._raise_for_missing_end_marker()
            if is_end_block(block):
                break
            header = parse_header(block)

            if header.is_long_name:
                self._pending_name = self._read_long_name(header)
                continue
            if header.is_pax_header:
                path = parse_pax_records(self._read_content(header.size)).get("path")
                if path:
                    self._pending_name = path
                continue

            name = self._pending_name if self._pending_name is not None else header.name
            self._pending_name = None
            extracted_path = self._extract_entry(header, name)
            if extracted_path is not None:
                extracted.append(extracted_path)

        if self._pending_name is not None:
            self._raise_for_missing_end_marker()
        # Deepest first, so read-only directories do not block their children.
        for path, mode in reversed(self._directory_modes):
            os.chmod(path, mode)
        return extracted

    def _extract_entry(self, header: TarHeader, name: str) -> Path | None:
        if header.is_directory:
            target = self._resolve(name)
            target.mkdir(parents=True, exist_ok=True)
            self._directory_modes.append((target, header.mode))
            self._skip(header.size)
            return target

        if header.is_file:
            target = self._resolve(name)
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("wb") as handle:
                self._copy_content(header.size, handle)
            os.chmod(target, header.mode)
            return target

        logger.warning(
            "Skipping unsupported tar entry %r (type %r)",
            name,
            header.type_flag.decode("latin-1"),
        )
        self._skip(header.size)
        return None

    def _raise_for_missing_end_marker(self) -> NoReturn:
        if self._pending_name is not None:
            raise ArchiveFormatError(
                f"Archive ended after a long-name record for {self._pending_name!r}",
            )
        raise ArchiveFormatError("Archive ended without an end-of-archive marker")

    def _resolve(self, name: str) -> Path:
        relative = PurePosixPath(name)
        if relative.is_absolute() or ".." in relative.parts:
            raise ArchiveFormatError(f"Refusing to extract entry outside destination: {name!r}")
        parts = [part for part in relative.parts if part not in ("", ".")]
        return self._destination.joinpath(*parts)

    def _read_long_name(self, header: TarHeader) -> str:
        raw = self._read_content(header.size)
        name = raw.split(b"\0", 1)[0].decode("utf-8", errors="surrogateescape")
        if not name:
            raise ArchiveFormatError("Empty GNU long-name record")
        return name

    def _read_block(self) -> bytes | None:
        block = self._stream.read(BLOCK_SIZE)
        if not block:
            return None
        if len(block) != BLOCK_SIZE:
            raise ArchiveFormatError(
                f"Truncated tar stream: header block has {len(block)} of {BLOCK_SIZE} bytes",
            )
        return block

    def _read_exact(self, size: int) -> bytes:
        data = self._stream.read(size)
        if len(data) != size:
            raise ArchiveFormatError(
                f"Truncated tar stream: expected {size} bytes, got {len(data)}",
            )
        return data

    def _read_content(self, size: int) -> bytes:
        data = self._read_exact(size)
        self._read_exact(padded_size(size) - size)
        return data

    def _copy_content(self, size: int, handle: BinaryIO) -> None:
        remaining = size
        while remaining:
            chunk = self._read_exact(min(COPY_CHUNK_SIZE, remaining))
            handle.write(chunk)
            remaining -= len(chunk)
        self._read_exact(padded_size(size) - size)

    def _skip(self, size: int) -> None:
        remaining = padded_size(size)
        while remaining:
            remaining -= len(self._read_exact(min(COPY_CHUNK_SIZE, remaining)))
