"""Command assembly for container pulls, container runs and host scripts."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

from cd4pe_job_runner.orchestrator.models import ManifestType

CONTAINER_REPO_DIR = "/repo"
CONTAINER_JOBS_DIR = "/cd4pe_job"


def script_file_name(manifest_type: ManifestType, *, windows_job: bool) -> str:
    """File name of a lifecycle script inside the host jobs directory."""

    if windows_job:
        return f"{manifest_type.value}.ps1"
    return manifest_type.value


def build_docker_pull_cmd(image: str, *, config_dir: Path | None = None) -> str:
    """Render ``docker [--config <dir>] pull <image>``."""

    if config_dir is None:
        return f"docker pull {image}"
    return f"docker --config {config_dir} pull {image}"


def build_docker_run_cmd(  # noqa: PLR0913
    *,
    image: str,
    manifest_type: ManifestType,
    repo_dir: Path,
    jobs_dir: Path,
    run_args: Iterable[str] = (),
    secret_names: Iterable[str] = (),
) -> str:
    """Render the ``docker run`` command for one lifecycle script.

    Secret values are never part of the command: ``-e <name>`` makes docker
    copy the value from the environment of the spawning process.
    """

    parts = ["docker", "run", "--rm"]
    parts.extend(run_args)
    for name in secret_names:
        parts.extend(["-e", name])
    parts.extend(
        [
            "-v",
            f'"{repo_dir}:{CONTAINER_REPO_DIR}"',
            "-v",
            f'"{jobs_dir}:{CONTAINER_JOBS_DIR}"',
            image,
            f'"{CONTAINER_JOBS_DIR}/{manifest_type.value}"',
        ],
    )
    return " ".join(parts)


def build_host_script_cmd(script_path: Path, *, windows_job: bool) -> str:
    """Render the command that runs a lifecycle script directly on the host."""

    if windows_job:
        return f"powershell \"& {{&'{script_path}'}}\""
    return f'"{script_path}"'
