"""Working directory layout and registry credential staging."""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from pathlib import Path

from cd4pe_job_runner.errors import JobConfigError
from cd4pe_job_runner.orchestrator.commands import script_file_name
from cd4pe_job_runner.orchestrator.models import ManifestType

JOB_ROOT_DIR_NAME = "cd4pe_job"
DOCKER_CONFIG_DIR_NAME = ".docker"
DOCKER_CONFIG_FILE_NAME = "config.json"
CA_CERT_FILE_NAME = "ca.crt"


@dataclass(frozen=True, slots=True)
class JobLayout:
    """Derived paths for one job working directory."""

    working_dir: Path
    job_root: Path
    repo_dir: Path
    jobs_dir: Path
    docker_config_dir: Path
    windows_job: bool

    def script_path(self, manifest_type: ManifestType) -> Path:
        return self.jobs_dir / script_file_name(manifest_type, windows_job=self.windows_job)


def make_dir(path: Path) -> Path:
    """Create ``path`` with parents; an existing directory is not an error."""

    path.mkdir(parents=True, exist_ok=True)
    return path


class JobWorkdirManager:
    """Creates the deterministic per-job directory layout."""

    def __init__(self, working_dir: Path, *, windows_job: bool) -> None:
        job_root = working_dir / JOB_ROOT_DIR_NAME
        self.layout = JobLayout(
            working_dir=working_dir,
            job_root=job_root,
            repo_dir=job_root / "repo",
            jobs_dir=job_root / "jobs" / ("windows" if windows_job else "unix"),
            docker_config_dir=working_dir / DOCKER_CONFIG_DIR_NAME,
            windows_job=windows_job,
        )

    def materialize(self) -> JobLayout:
        make_dir(self.layout.working_dir)
        make_dir(self.layout.repo_dir)
        make_dir(self.layout.jobs_dir)
        return self.layout

    def stage_registry_credentials(
        self,
        *,
        docker_pull_creds: str,
        ca_cert_base64: str | None,
        certs_root: Path,
    ) -> Path:
        """Write docker registry auth and per-host CA certificates.

        Returns the docker config directory to pass to ``docker --config``.
        """

        raw_config = decode_base64(docker_pull_creds, what="docker_pull_creds")
        hosts = registry_hosts(raw_config)
        cert_bytes = (
            decode_base64(ca_cert_base64, what="base_64_ca_cert") if ca_cert_base64 else None
        )

        config_dir = make_dir(self.layout.docker_config_dir)
        (config_dir / DOCKER_CONFIG_FILE_NAME).write_bytes(raw_config)

        if cert_bytes is not None:
            for host in hosts:
                host_dir = make_dir(certs_root / host)
                (host_dir / CA_CERT_FILE_NAME).write_bytes(cert_bytes)
        return config_dir


def decode_base64(value: str, *, what: str) -> bytes:
    try:
        # Line breaks from wrapped encoders are tolerated.
        return base64.b64decode("".join(value.split()), validate=True)
    except (binascii.Error, ValueError) as error:
        raise JobConfigError(f"{what} is not valid base64") from error


def registry_hosts(raw_config: bytes) -> list[str]:
    """Registry host names from the ``auths`` map of a docker config document."""

    try:
        document = json.loads(raw_config)
    except (UnicodeDecodeError, json.JSONDecodeError) as error:
        raise JobConfigError("docker_pull_creds does not decode to a JSON document") from error
    if not isinstance(document, dict) or not isinstance(document.get("auths"), dict):
        raise JobConfigError('docker_pull_creds must contain an "auths" object')

    hosts: list[str] = []
    for host in document["auths"]:
        if not host or host in {".", ".."} or "/" in host or "\\" in host:
            raise JobConfigError(f"Invalid registry host in docker_pull_creds: {host!r}")
        hosts.append(host)
    return hosts
