"""Job lifecycle: environment, registry trust, job script and one hook script."""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from cd4pe_job_runner.config import JobConfig
from cd4pe_job_runner.errors import JobConfigError
from cd4pe_job_runner.logs import JobLogger
from cd4pe_job_runner.orchestrator.commands import (
    build_docker_pull_cmd,
    build_docker_run_cmd,
    build_host_script_cmd,
)
from cd4pe_job_runner.orchestrator.models import (
    HookResult,
    JobOutcome,
    ManifestType,
    RunResult,
    hook_for,
)
from cd4pe_job_runner.orchestrator.process import run_command
from cd4pe_job_runner.orchestrator.workdir import JobWorkdirManager

RESERVED_ENV_NAMES = frozenset({"HOME", "REPO_DIR"})


class JobRunner:
    """Runs one job and exactly one of its hook scripts.

    All environment injections live in ``self.environment``, which is passed
    to every subprocess; the process environment itself is never modified.
    """

    def __init__(
        self,
        config: JobConfig,
        *,
        logger: JobLogger | None = None,
        base_environment: Mapping[str, str] | None = None,
    ) -> None:
        self.config = config
        self.logger = logger or JobLogger()

        manager = JobWorkdirManager(config.working_dir, windows_job=config.windows_job)
        self.layout = manager.materialize()
        self.environment = self._build_environment(
            os.environ if base_environment is None else base_environment,
        )

        self.docker_config_dir: Path | None = None
        if config.docker_pull_creds:
            self.docker_config_dir = manager.stage_registry_credentials(
                docker_pull_creds=config.docker_pull_creds,
                ca_cert_base64=config.ca_cert_base64,
                certs_root=config.certs_root,
            )
            self.logger.log(f"Staged docker registry config in {self.docker_config_dir}.")

    @property
    def docker_run_args(self) -> str:
        return " ".join(self.config.docker_run_args)

    def _build_environment(self, base: Mapping[str, str]) -> dict[str, str]:
        reserved = RESERVED_ENV_NAMES.intersection(self.config.secrets)
        if reserved:
            raise JobConfigError(
                f"Secret names clash with job environment variables: {', '.join(sorted(reserved))}",
            )
        environment = dict(base)
        home = base.get("HOME") or str(self.config.working_dir)
        environment["HOME"] = str(Path(home).expanduser().resolve())
        environment["REPO_DIR"] = str(self.layout.repo_dir)
        environment.update(self.config.secrets)
        return environment

    def get_docker_pull_cmd(self) -> str:
        return build_docker_pull_cmd(self._require_image(), config_dir=self.docker_config_dir)

    def get_docker_run_cmd(self, manifest_type: ManifestType | str) -> str:
        return build_docker_run_cmd(
            image=self._require_image(),
            manifest_type=ManifestType(manifest_type),
            repo_dir=self.layout.repo_dir,
            jobs_dir=self.layout.jobs_dir,
            run_args=self.config.docker_run_args,
            secret_names=self.config.secrets.keys(),
        )

    def update_docker_image(self) -> RunResult | None:
        """Pull the configured image; returns ``None`` when jobs run on the host."""

        if not self.config.docker_image:
            return None
        self.logger.log(f"Pulling docker image {self.config.docker_image}.")
        result = self._execute(self.get_docker_pull_cmd())
        if result.succeeded:
            self.logger.log(f"Pulled docker image {self.config.docker_image}.")
        else:
            self.logger.log(
                f"Docker pull exited with code {result.exit_code}: {result.message.strip()}",
            )
        return result

    def run_job(self) -> JobOutcome:
        """Run the job script, then the hook selected by its exit code."""

        job = self._run_script(ManifestType.JOB)
        hook_type = hook_for(job)
        self.logger.log(
            f"Job script exited with code {job.exit_code}; running {hook_type.value}.",
        )
        hook = HookResult(manifest_type=hook_type, result=self._run_script(hook_type))
        return JobOutcome(job=job, hook=hook)

    def _run_script(self, manifest_type: ManifestType) -> RunResult:
        if self.config.docker_image:
            command = self.get_docker_run_cmd(manifest_type)
        else:
            command = build_host_script_cmd(
                self.layout.script_path(manifest_type),
                windows_job=self.config.windows_job,
            )
        self.logger.log(f"Running {manifest_type.value}: {command}")
        result = self._execute(command)
        self.logger.log(f"{manifest_type.value} exited with code {result.exit_code}.")
        return result

    def _execute(self, command: str) -> RunResult:
        return run_command(
            command,
            env=self.environment,
            timeout_seconds=self.config.timeout_seconds,
        )

    def _require_image(self) -> str:
        if not self.config.docker_image:
            raise JobConfigError("No docker image is configured for this job.")
        return self.config.docker_image
