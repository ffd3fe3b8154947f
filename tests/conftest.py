"""Shared test fixtures."""

from __future__ import annotations

import gzip
import io
import os
import stat
import tarfile
from collections.abc import Callable
from pathlib import Path

import pytest

from cd4pe_job_runner.config import JobConfig

WEB_UI_ENDPOINT = "https://testtest.com"
JOB_TOKEN = "alksjdbhfnadhsbf"
JOB_OWNER = "carls cool carl"
JOB_INSTANCE_ID = "17"

# (name, content, mode); content None marks a directory.
ArchiveEntry = tuple[str, bytes | None, int]


@pytest.fixture()
def working_dir(tmp_path: Path) -> Path:
    return tmp_path / "test_working_dir"


@pytest.fixture()
def certs_dir(working_dir: Path) -> Path:
    return working_dir / "certs.d"


@pytest.fixture()
def make_config(working_dir: Path, certs_dir: Path) -> Callable[..., JobConfig]:
    """Build a JobConfig with test identifiers; keyword arguments override fields."""

    def _make(**overrides: object) -> JobConfig:
        values: dict[str, object] = {
            "working_dir": working_dir,
            "job_token": JOB_TOKEN,
            "web_ui_endpoint": WEB_UI_ENDPOINT,
            "job_owner": JOB_OWNER,
            "job_instance_id": JOB_INSTANCE_ID,
            "windows_job": False,
            "secrets": {"secret1": "hello", "secret2": "friend"},
            "certs_root": certs_dir,
        }
        values.update(overrides)
        return JobConfig(**values)

    return _make


def build_tar_bytes(entries: list[ArchiveEntry], *, fmt: int = tarfile.GNU_FORMAT) -> bytes:
    """Uncompressed tar stream with the given entries."""

    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w", format=fmt) as archive:
        for name, content, mode in entries:
            info = tarfile.TarInfo(name)
            info.mode = mode
            if content is None:
                info.type = tarfile.DIRTYPE
                archive.addfile(info)
            else:
                info.size = len(content)
                archive.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


@pytest.fixture()
def make_archive(tmp_path: Path) -> Callable[..., Path]:
    """Write a ``.tar.gz`` archive under ``tmp_path/archives`` and return its path."""

    archives_dir = tmp_path / "archives"
    archives_dir.mkdir()

    def _make(name: str, entries: list[ArchiveEntry], *, fmt: int = tarfile.GNU_FORMAT) -> Path:
        path = archives_dir / name
        path.write_bytes(gzip.compress(build_tar_bytes(entries, fmt=fmt)))
        return path

    return _make


def write_script(path: Path, body: str, *, shebang: bool = True) -> Path:
    """Write an executable shell script, with a ``/bin/sh`` shebang unless disabled."""

    path.parent.mkdir(parents=True, exist_ok=True)
    header = "#!/bin/sh\n" if shebang else ""
    path.write_text(f"{header}{body}\n", "utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


unix_only = pytest.mark.skipif(os.name == "nt", reason="requires a POSIX shell")
