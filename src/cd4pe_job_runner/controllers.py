"""Controllers for job runner CLI commands."""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from cd4pe_job_runner.archive import unzip
from cd4pe_job_runner.config import AgentSettings
from cd4pe_job_runner.errors import JobConfigError
from cd4pe_job_runner.http.payload import PayloadFetcher, stage_job_payload
from cd4pe_job_runner.logs import JobLogger
from cd4pe_job_runner.orchestrator.models import get_combined_exit_code
from cd4pe_job_runner.orchestrator.params import parse_args, set_job_env_vars
from cd4pe_job_runner.orchestrator.runner import JobRunner


@dataclass(slots=True)
class RunJobCommand:
    """CLI input for one job run."""

    job_parameters: tuple[str, ...] = ()
    working_dir: Path | None = None
    docker_image: str | None = None
    docker_run_args: tuple[str, ...] = ()
    env_vars: tuple[str, ...] = ()
    secrets: tuple[str, ...] = ()
    secrets_file: Path | None = None
    windows_job: bool | None = None
    timeout_seconds: int | None = None
    skip_download: bool = False


@dataclass(slots=True)
class RunJobResult:
    """Job report and the process exit code derived from it."""

    exit_code: int
    report: dict[str, Any] = field(default_factory=dict)

    def render(self) -> str:
        return json.dumps(self.report, ensure_ascii=False, indent=2)


@dataclass(slots=True)
class UnzipCommand:
    """CLI input for archive extraction."""

    archive_path: Path
    destination_dir: Path


class JobCliController:
    """Wires settings, the job logger and the runner for CLI commands."""

    def __init__(
        self,
        settings_loader: Callable[[], AgentSettings] = AgentSettings.from_env,
    ) -> None:
        self._settings_loader = settings_loader

    def run(self, command: RunJobCommand) -> RunJobResult:
        settings = self._resolve_settings(command)
        set_job_env_vars({"env_vars": list(command.env_vars)})
        secrets = _load_secrets(command)
        config = settings.to_job_config(secrets=secrets)

        job_logger = JobLogger()
        job_logger.log(
            f"Starting job instance {config.job_instance_id or '<unknown>'} "
            f"for {config.job_owner or '<unknown>'} in {config.working_dir}.",
        )
        runner = JobRunner(config, logger=job_logger)
        if not command.skip_download:
            with PayloadFetcher(timeout_seconds=settings.download_timeout_seconds) as fetcher:
                stage_job_payload(config, fetcher=fetcher, job_logger=job_logger)

        runner.update_docker_image()
        outcome = runner.run_job()
        exit_code = get_combined_exit_code(outcome)
        job_logger.log(f"Job finished with combined exit code {exit_code}.")
        return RunJobResult(
            exit_code=exit_code,
            report={"logs": job_logger.get_logs(), **outcome.to_dict()},
        )

    def unzip(self, command: UnzipCommand) -> list[str]:
        extracted = unzip(command.archive_path, command.destination_dir)
        return [f"Extracted {len(extracted)} entries into {command.destination_dir}"]

    def _resolve_settings(self, command: RunJobCommand) -> AgentSettings:
        settings = self._settings_loader().with_job_parameters(
            parse_args(command.job_parameters),
        )
        updates: dict[str, object] = {}
        if command.working_dir is not None:
            updates["working_dir"] = command.working_dir.absolute()
        if command.docker_image:
            updates["docker_image"] = command.docker_image
        if command.docker_run_args:
            updates["docker_run_args"] = command.docker_run_args
        if command.windows_job is not None:
            updates["windows_job"] = command.windows_job
        if command.timeout_seconds is not None:
            updates["timeout_seconds"] = command.timeout_seconds or None
        return replace(settings, **updates)


def _load_secrets(command: RunJobCommand) -> dict[str, str]:
    secrets: dict[str, str] = {}
    if command.secrets_file is not None:
        try:
            loaded = json.loads(command.secrets_file.read_text("utf-8"))
        except json.JSONDecodeError as error:
            raise JobConfigError(
                f"Secrets file is not valid JSON: {command.secrets_file}",
            ) from error
        if not isinstance(loaded, dict) or not all(
            isinstance(key, str) and isinstance(value, str) for key, value in loaded.items()
        ):
            raise JobConfigError("Secrets file must contain a JSON object of string values.")
        secrets.update(loaded)
    secrets.update(parse_args(command.secrets))
    return secrets
