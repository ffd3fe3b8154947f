"""CLI entrypoint for cd4pe-job-runner."""

import logging
from pathlib import Path

import rich_click as click

from cd4pe_job_runner import __version__
from cd4pe_job_runner.controllers import JobCliController, RunJobCommand, UnzipCommand
from cd4pe_job_runner.errors import ArchiveFormatError, JobConfigError, PayloadFetchError

click.rich_click.USE_MARKDOWN = True
JOB_CONTROLLER = JobCliController()


@click.group()
@click.version_option(version=__version__, prog_name="cd4pe-job-runner")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Log level for diagnostics written to stderr.",
)
def cd4pe_job_runner(log_level: str) -> None:
    """Run one CI/CD job and report its combined outcome."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cd4pe_job_runner.command("run")
@click.argument("job_parameters", nargs=-1)
@click.option(
    "--working-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Job working directory. Defaults to CD4PE_JOB_WORKING_DIR or the current directory.",
)
@click.option("--docker-image", default=None, help="Run lifecycle scripts in this image.")
@click.option(
    "--docker-run-arg",
    "docker_run_args",
    multiple=True,
    help="Extra `docker run` argument, passed verbatim. Can be repeated.",
)
@click.option(
    "--env-var",
    "env_vars",
    multiple=True,
    help="`KEY=VALUE` exported to the job environment. Can be repeated.",
)
@click.option(
    "--secret",
    "secrets",
    multiple=True,
    help="`NAME=VALUE` secret exposed to the job by name only. Can be repeated.",
)
@click.option(
    "--secrets-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="JSON object of secret names to values.",
)
@click.option(
    "--windows-job/--unix-job",
    default=None,
    help="Select Windows (PowerShell) or Unix job scripts.",
)
@click.option(
    "--timeout-seconds",
    type=click.IntRange(min=0),
    default=None,
    help="Deadline for each script; 0 disables it.",
)
@click.option(
    "--skip-download/--download",
    default=False,
    show_default=True,
    help="Use the payload already present in the working directory.",
)
def run(  # noqa: PLR0913
    job_parameters: tuple[str, ...],
    working_dir: Path | None,
    docker_image: str | None,
    docker_run_args: tuple[str, ...],
    env_vars: tuple[str, ...],
    secrets: tuple[str, ...],
    secrets_file: Path | None,
    windows_job: bool | None,
    timeout_seconds: int | None,
    skip_download: bool,
) -> None:
    """Run the job script and one hook; exit 0 only when both succeed.

    JOB_PARAMETERS are `KEY=VALUE` pairs such as `job_instance_id=17`.
    """

    try:
        result = JOB_CONTROLLER.run(
            RunJobCommand(
                job_parameters=job_parameters,
                working_dir=working_dir,
                docker_image=docker_image,
                docker_run_args=docker_run_args,
                env_vars=env_vars,
                secrets=secrets,
                secrets_file=secrets_file,
                windows_job=windows_job,
                timeout_seconds=timeout_seconds,
                skip_download=skip_download,
            ),
        )
    except (JobConfigError, ArchiveFormatError, PayloadFetchError) as error:
        raise click.ClickException(str(error)) from error
    click.echo(result.render())
    click.get_current_context().exit(result.exit_code)


@cd4pe_job_runner.command("unzip")
@click.argument("archive_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("destination_dir", type=click.Path(file_okay=False, path_type=Path))
def unzip_archive(archive_path: Path, destination_dir: Path) -> None:
    """Extract a `.tar.gz` job payload, preserving file modes."""

    try:
        lines = JOB_CONTROLLER.unzip(
            UnzipCommand(archive_path=archive_path, destination_dir=destination_dir),
        )
    except ArchiveFormatError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    cd4pe_job_runner()
