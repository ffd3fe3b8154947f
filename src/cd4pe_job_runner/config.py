"""Runtime configuration for one job run."""

from __future__ import annotations

import os
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path

from cd4pe_job_runner.errors import JobConfigError

DEFAULT_CERTS_ROOT = Path("/etc/docker/certs.d")

# Keys accepted as positional KEY=VALUE job parameters.
JOB_PARAMETER_FIELDS: dict[str, str] = {
    "job_token": "job_token",
    "web_ui_endpoint": "web_ui_endpoint",
    "job_owner": "job_owner",
    "job_instance_id": "job_instance_id",
    "docker_image": "docker_image",
    "docker_run_args": "docker_run_args",
    "docker_pull_creds": "docker_pull_creds",
    "base_64_ca_cert": "ca_cert_base64",
    "windows_job": "windows_job",
    "working_dir": "working_dir",
}


@dataclass(frozen=True, slots=True)
class JobConfig:
    """Immutable input bundle for one job run."""

    working_dir: Path
    job_token: str = ""
    web_ui_endpoint: str = ""
    job_owner: str = ""
    job_instance_id: str = ""
    windows_job: bool = False
    docker_image: str | None = None
    docker_run_args: tuple[str, ...] = ()
    docker_pull_creds: str | None = None
    ca_cert_base64: str | None = None
    secrets: Mapping[str, str] = field(default_factory=dict)
    certs_root: Path = DEFAULT_CERTS_ROOT
    timeout_seconds: int | None = None


@dataclass(slots=True)
class AgentSettings:
    """Agent settings resolved from environment, job parameters and CLI options."""

    working_dir: Path = field(default_factory=Path.cwd)
    job_token: str = ""
    web_ui_endpoint: str = ""
    job_owner: str = ""
    job_instance_id: str = ""
    windows_job: bool = False
    docker_image: str | None = None
    docker_run_args: tuple[str, ...] = ()
    docker_pull_creds: str | None = None
    ca_cert_base64: str | None = None
    certs_root: Path = DEFAULT_CERTS_ROOT
    timeout_seconds: int | None = None
    download_timeout_seconds: float = 60.0

    @classmethod
    def from_env(cls) -> AgentSettings:
        """Load settings from ``CD4PE_JOB_*`` environment variables."""

        timeout_raw = os.getenv("CD4PE_JOB_TIMEOUT_SECONDS", "").strip()
        return cls(
            working_dir=Path(os.getenv("CD4PE_JOB_WORKING_DIR", str(Path.cwd()))).absolute(),
            job_token=os.getenv("CD4PE_JOB_TOKEN", ""),
            web_ui_endpoint=os.getenv("CD4PE_JOB_WEB_UI_ENDPOINT", ""),
            job_owner=os.getenv("CD4PE_JOB_OWNER", ""),
            job_instance_id=os.getenv("CD4PE_JOB_INSTANCE_ID", ""),
            windows_job=_env_bool("CD4PE_JOB_WINDOWS", default=os.name == "nt"),
            docker_image=os.getenv("CD4PE_JOB_DOCKER_IMAGE") or None,
            docker_run_args=tuple(shlex.split(os.getenv("CD4PE_JOB_DOCKER_RUN_ARGS", ""))),
            docker_pull_creds=os.getenv("CD4PE_JOB_DOCKER_PULL_CREDS") or None,
            ca_cert_base64=os.getenv("CD4PE_JOB_CA_CERT") or None,
            certs_root=Path(os.getenv("CD4PE_JOB_CERTS_ROOT", str(DEFAULT_CERTS_ROOT))),
            timeout_seconds=_positive_int_or_none("CD4PE_JOB_TIMEOUT_SECONDS", timeout_raw),
            download_timeout_seconds=float(
                os.getenv("CD4PE_JOB_DOWNLOAD_TIMEOUT_SECONDS", "60.0"),
            ),
        )

    def with_job_parameters(self, params: Mapping[str, str]) -> AgentSettings:
        """Return a copy with ``KEY=VALUE`` job parameters applied."""

        updates: dict[str, object] = {}
        for key, value in params.items():
            field_name = JOB_PARAMETER_FIELDS.get(key)
            if field_name is None:
                raise JobConfigError(
                    f"Unknown job parameter {key!r}. "
                    f"Expected one of: {', '.join(sorted(JOB_PARAMETER_FIELDS))}",
                )
            if field_name == "docker_run_args":
                updates[field_name] = tuple(shlex.split(value))
            elif field_name == "windows_job":
                updates[field_name] = _parse_bool(key, value)
            elif field_name == "working_dir":
                updates[field_name] = Path(value).absolute()
            elif field_name in _OPTIONAL_FIELDS:
                updates[field_name] = value or None
            else:
                updates[field_name] = value
        return replace(self, **updates)

    def to_job_config(self, *, secrets: Mapping[str, str] | None = None) -> JobConfig:
        """Freeze settings into the job configuration consumed by the runner."""

        if not self.working_dir.is_absolute():
            raise JobConfigError(f"Working directory must be absolute: {self.working_dir}")
        return JobConfig(
            working_dir=self.working_dir,
            job_token=self.job_token,
            web_ui_endpoint=self.web_ui_endpoint,
            job_owner=self.job_owner,
            job_instance_id=self.job_instance_id,
            windows_job=self.windows_job,
            docker_image=self.docker_image,
            docker_run_args=self.docker_run_args,
            docker_pull_creds=self.docker_pull_creds,
            ca_cert_base64=self.ca_cert_base64,
            secrets=dict(secrets or {}),
            certs_root=self.certs_root,
            timeout_seconds=self.timeout_seconds,
        )


_OPTIONAL_FIELDS = frozenset({"docker_image", "docker_pull_creds", "ca_cert_base64"})


def _positive_int_or_none(name: str, raw: str) -> int | None:
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {raw!r}") from error
    if value < 0:
        raise ValueError(f"{name} must be >= 0.")
    return value or None


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return _parse_bool(name, value)


def _parse_bool(name: str, value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off", ""}:
        return False
    raise JobConfigError(f"Invalid boolean value for {name}: {value!r}")
