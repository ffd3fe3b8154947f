"""Download and staging of job payload archives from the web UI."""

from __future__ import annotations

import logging
from pathlib import Path

import httpx

from cd4pe_job_runner import __version__
from cd4pe_job_runner.archive import unzip
from cd4pe_job_runner.config import JobConfig
from cd4pe_job_runner.errors import JobConfigError, PayloadFetchError
from cd4pe_job_runner.logs import JobLogger

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_USER_AGENT = f"cd4pe-job-runner/{__version__}"
PAYLOAD_PATH = "getJobScriptAndControlRepo"
PAYLOAD_FILE_NAME = "cd4pe_job.tar.gz"


class PayloadFetcher:
    """HTTP client that streams one job payload archive to disk."""

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers={"User-Agent": user_agent},
            transport=transport,
            follow_redirects=True,
        )

    def download(self, config: JobConfig, target: Path) -> Path:
        """Stream the payload for ``config.job_instance_id`` into ``target``."""

        if not config.web_ui_endpoint:
            raise JobConfigError("web_ui_endpoint is required to download the job payload.")
        if not config.job_instance_id:
            raise JobConfigError("job_instance_id is required to download the job payload.")

        url = f"{config.web_ui_endpoint.rstrip('/')}/{PAYLOAD_PATH}"
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            with self._client.stream(
                "GET",
                url,
                params={"jobInstanceId": config.job_instance_id},
                headers={"Authorization": f"Bearer {config.job_token}"},
            ) as response:
                if not response.is_success:
                    raise PayloadFetchError(
                        f"Job payload download failed: HTTP {response.status_code} from {url}",
                        status_code=response.status_code,
                    )
                with target.open("wb") as handle:
                    for chunk in response.iter_bytes():
                        handle.write(chunk)
        except httpx.TimeoutException as error:
            logger.warning("Timeout downloading job payload from %s", url)
            raise PayloadFetchError(f"Timeout downloading job payload from {url}") from error
        except httpx.HTTPError as error:
            logger.warning("HTTP error downloading job payload from %s: %s", url, error)
            raise PayloadFetchError(f"Job payload download failed: {error}") from error
        return target

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> PayloadFetcher:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def stage_job_payload(
    config: JobConfig,
    *,
    fetcher: PayloadFetcher,
    job_logger: JobLogger,
) -> list[Path]:
    """Download the payload archive into the working dir and extract it there."""

    archive_path = config.working_dir / PAYLOAD_FILE_NAME
    job_logger.log(f"Downloading job scripts and control repo from {config.web_ui_endpoint}.")
    fetcher.download(config, archive_path)
    job_logger.log(f"Extracting {archive_path} into {config.working_dir}.")
    extracted = unzip(archive_path, config.working_dir)
    archive_path.unlink()
    job_logger.log(f"Extracted {len(extracted)} entries from the job payload.")
    return extracted
