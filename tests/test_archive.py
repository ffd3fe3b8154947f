from __future__ import annotations

import gzip
import logging
import stat
import subprocess
import tarfile
from pathlib import Path

import allure
import pytest
from conftest import build_tar_bytes, unix_only

from cd4pe_job_runner.archive import unzip
from cd4pe_job_runner.archive.tar_headers import BLOCK_SIZE, parse_header, parse_number
from cd4pe_job_runner.errors import ArchiveFormatError

pytestmark = [
    allure.epic("Payload Staging"),
    allure.feature("Archive Extraction"),
]

LONG_NAME = "IAMASUPERLONGFILENAME" * 8 + "IAMASUPE"


def test_unzips_a_single_file(make_archive, working_dir: Path) -> None:
    archive = make_archive(
        "gzipSingleFileTest.tar.gz",
        [("gzipSingleFileTest", b"test data", 0o644)],
    )

    extracted = unzip(archive, working_dir)

    single_file = working_dir / "gzipSingleFileTest"
    assert extracted == [single_file.resolve()]
    assert single_file.read_bytes() == b"test data"


def test_unzips_a_single_level_directory(make_archive, working_dir: Path) -> None:
    archive = make_archive(
        "gzipSingleLevelDirectoryTest.tar.gz",
        [
            ("gzipSingleLevelDirectoryTest", None, 0o755),
            ("gzipSingleLevelDirectoryTest/testFile1", b"I am test file 1!", 0o644),
            ("gzipSingleLevelDirectoryTest/testFile2", b"I am test file 2!", 0o644),
        ],
    )

    unzip(archive, working_dir)

    root = working_dir / "gzipSingleLevelDirectoryTest"
    assert root.is_dir()
    assert (root / "testFile1").read_text() == "I am test file 1!"
    assert (root / "testFile2").read_text() == "I am test file 2!"


def test_unzips_a_multi_level_directory(make_archive, working_dir: Path) -> None:
    archive = make_archive(
        "gzipMultiLevelDirectoryTest.tar.gz",
        [
            ("gzipMultiLevelDirectoryTest", None, 0o755),
            ("gzipMultiLevelDirectoryTest/rootFile1", b"I am in root 1!", 0o644),
            ("gzipMultiLevelDirectoryTest/rootFile2", b"I am in root 2!", 0o644),
            ("gzipMultiLevelDirectoryTest/subDir", None, 0o755),
            ("gzipMultiLevelDirectoryTest/subDir/subDirFile1", b"I am in sub 1!", 0o644),
            ("gzipMultiLevelDirectoryTest/subDir/subDirFile2", b"I am in sub 2!", 0o644),
        ],
    )

    unzip(archive, working_dir)

    root = working_dir / "gzipMultiLevelDirectoryTest"
    assert (root / "rootFile1").read_text() == "I am in root 1!"
    assert (root / "rootFile2").read_text() == "I am in root 2!"
    assert (root / "subDir" / "subDirFile1").read_text() == "I am in sub 1!"
    assert (root / "subDir" / "subDirFile2").read_text() == "I am in sub 2!"


def test_creates_missing_parent_directories(make_archive, working_dir: Path) -> None:
    archive = make_archive("nested.tar.gz", [("a/b/c/leaf.txt", b"leaf", 0o600)])

    unzip(archive, working_dir)

    assert (working_dir / "a" / "b" / "c" / "leaf.txt").read_bytes() == b"leaf"


def test_content_spanning_several_blocks_is_byte_identical(
    make_archive,
    working_dir: Path,
) -> None:
    payload = bytes(range(256)) * 300 + b"tail"
    archive = make_archive("big.tar.gz", [("big.bin", payload, 0o644), ("after", b"x", 0o644)])

    unzip(archive, working_dir)

    assert (working_dir / "big.bin").read_bytes() == payload
    assert (working_dir / "after").read_bytes() == b"x"


@unix_only
def test_maintains_file_permissions(make_archive, working_dir: Path) -> None:
    archive = make_archive(
        "executableFileTest.tar.gz",
        [("executableFileTest", b"#!/bin/sh\necho 'hello!'\n", 0o755)],
    )

    unzip(archive, working_dir)

    executable = working_dir / "executableFileTest"
    assert stat.S_IMODE(executable.stat().st_mode) == 0o755
    completed = subprocess.run(  # noqa: S603
        [str(executable)],
        capture_output=True,
        text=True,
        check=False,
    )
    assert completed.returncode == 0
    assert completed.stdout == "hello!\n"


@unix_only
def test_applies_directory_modes_after_children(make_archive, working_dir: Path) -> None:
    archive = make_archive(
        "readonly.tar.gz",
        [("locked", None, 0o555), ("locked/file", b"inside", 0o444)],
    )

    unzip(archive, working_dir)

    locked = working_dir / "locked"
    assert (locked / "file").read_text() == "inside"
    assert stat.S_IMODE(locked.stat().st_mode) == 0o555
    locked.chmod(0o755)


def test_unzips_a_file_name_longer_than_100_characters(make_archive, working_dir: Path) -> None:
    archive = make_archive(
        "long_file_name.tar.gz",
        [
            ("long_file_name", None, 0o755),
            (f"long_file_name/{LONG_NAME}", b"long", 0o644),
        ],
        fmt=tarfile.GNU_FORMAT,
    )

    unzip(archive, working_dir)

    long_file = working_dir / "long_file_name" / LONG_NAME
    assert long_file.exists()
    assert long_file.read_bytes() == b"long"


def test_long_name_applies_only_to_next_entry(make_archive, working_dir: Path) -> None:
    archive = make_archive(
        "long_then_short.tar.gz",
        [(f"dir/{LONG_NAME}", b"long", 0o644), ("dir/short", b"short", 0o644)],
        fmt=tarfile.GNU_FORMAT,
    )

    unzip(archive, working_dir)

    assert (working_dir / "dir" / LONG_NAME).read_bytes() == b"long"
    assert (working_dir / "dir" / "short").read_bytes() == b"short"


def test_unzips_pax_long_names(make_archive, working_dir: Path) -> None:
    archive = make_archive(
        "pax.tar.gz",
        [(f"pax_dir/{LONG_NAME}", b"pax", 0o644)],
        fmt=tarfile.PAX_FORMAT,
    )

    unzip(archive, working_dir)

    assert (working_dir / "pax_dir" / LONG_NAME).read_bytes() == b"pax"


def test_unzips_ustar_prefixed_names(make_archive, working_dir: Path) -> None:
    directory = "/".join(["segment"] * 12)
    archive = make_archive(
        "ustar.tar.gz",
        [(f"{directory}/file.txt", b"ustar", 0o644)],
        fmt=tarfile.USTAR_FORMAT,
    )

    unzip(archive, working_dir)

    assert (working_dir / directory / "file.txt").read_bytes() == b"ustar"


def test_skips_unsupported_entries_with_warning(tmp_path: Path, working_dir: Path, caplog) -> None:
    buffer_path = tmp_path / "symlink.tar.gz"
    with tarfile.open(buffer_path, mode="w:gz", format=tarfile.GNU_FORMAT) as archive:
        link = tarfile.TarInfo("link")
        link.type = tarfile.SYMTYPE
        link.linkname = "/etc/passwd"
        archive.addfile(link)

    with caplog.at_level(logging.WARNING):
        extracted = unzip(buffer_path, working_dir)

    assert extracted == []
    assert not (working_dir / "link").exists()
    assert "Skipping unsupported tar entry 'link'" in caplog.text


@pytest.mark.parametrize("name", ["../escape.txt", "/abs/escape.txt", "ok/../../escape.txt"])
def test_rejects_entries_outside_destination(make_archive, working_dir: Path, name: str) -> None:
    archive = make_archive("escape.tar.gz", [(name, b"nope", 0o644)])

    with pytest.raises(ArchiveFormatError, match="outside destination"):
        unzip(archive, working_dir)


def test_rejects_corrupt_gzip_stream(tmp_path: Path, working_dir: Path) -> None:
    archive = tmp_path / "corrupt.tar.gz"
    archive.write_bytes(b"this is not gzip data")

    with pytest.raises(ArchiveFormatError, match="Corrupt gzip stream"):
        unzip(archive, working_dir)


def test_rejects_truncated_gzip_stream(tmp_path: Path, working_dir: Path) -> None:
    compressed = gzip.compress(build_tar_bytes([("file", b"x" * 4096, 0o644)]))
    archive = tmp_path / "truncated_gzip.tar.gz"
    archive.write_bytes(compressed[: len(compressed) // 2])

    with pytest.raises(ArchiveFormatError):
        unzip(archive, working_dir)


def test_rejects_checksum_mismatch(tmp_path: Path, working_dir: Path) -> None:
    raw = bytearray(build_tar_bytes([("file", b"data", 0o644)]))
    raw[0] = ord("g")
    archive = tmp_path / "checksum.tar.gz"
    archive.write_bytes(gzip.compress(bytes(raw)))

    with pytest.raises(ArchiveFormatError, match="checksum mismatch"):
        unzip(archive, working_dir)


def test_rejects_truncated_tar_content(tmp_path: Path, working_dir: Path) -> None:
    raw = build_tar_bytes([("file", b"y" * 2000, 0o644)])
    archive = tmp_path / "truncated_tar.tar.gz"
    archive.write_bytes(gzip.compress(raw[: BLOCK_SIZE + 100]))

    with pytest.raises(ArchiveFormatError, match="Truncated tar stream"):
        unzip(archive, working_dir)


def test_rejects_dangling_long_name_record(tmp_path: Path, working_dir: Path) -> None:
    raw = build_tar_bytes([(LONG_NAME, b"z", 0o644)], fmt=tarfile.GNU_FORMAT)
    long_name_record_size = BLOCK_SIZE + BLOCK_SIZE
    archive = tmp_path / "dangling.tar.gz"
    archive.write_bytes(gzip.compress(raw[:long_name_record_size]))

    with pytest.raises(ArchiveFormatError, match="long-name record"):
        unzip(archive, working_dir)


def test_rejects_archive_cut_on_a_block_boundary(tmp_path: Path, working_dir: Path) -> None:
    raw = build_tar_bytes([("a", b"x" * 10, 0o644), ("b", b"y" * 10, 0o644)])
    archive = tmp_path / "cut.tar.gz"
    # Header and content block of the first entry only; no end-of-archive blocks.
    archive.write_bytes(gzip.compress(raw[: 2 * BLOCK_SIZE]))

    with pytest.raises(ArchiveFormatError, match="without an end-of-archive marker"):
        unzip(archive, working_dir)


def test_rejects_empty_archive(tmp_path: Path, working_dir: Path) -> None:
    archive = tmp_path / "empty.tar.gz"
    archive.write_bytes(b"")

    with pytest.raises(ArchiveFormatError, match="without an end-of-archive marker"):
        unzip(archive, working_dir)


def test_accepts_archive_with_only_end_marker(tmp_path: Path, working_dir: Path) -> None:
    archive = tmp_path / "no_entries.tar.gz"
    archive.write_bytes(gzip.compress(build_tar_bytes([])))

    assert unzip(archive, working_dir) == []


def test_parse_header_decodes_fixed_fields() -> None:
    block = build_tar_bytes([("dir/script.sh", b"12345", 0o750)])[:BLOCK_SIZE]

    header = parse_header(block)

    assert header.name == "dir/script.sh"
    assert header.mode == 0o750
    assert header.size == 5
    assert header.is_file
    assert not header.is_directory
    assert not header.is_long_name


def test_parse_number_handles_octal_and_base256() -> None:
    assert parse_number(b"0000644\0", field_name="mode") == 0o644
    assert parse_number(b"        ", field_name="size") == 0
    assert parse_number(b"\x80" + bytes(10) + b"\x01", field_name="size") == 1
    with pytest.raises(ArchiveFormatError, match="Invalid octal size"):
        parse_number(b"00009z\0", field_name="size")
