"""Domain models for one job run."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any


class ManifestType(str, Enum):
    """Lifecycle script identifiers, also used as script file names."""

    JOB = "JOB"
    AFTER_JOB_SUCCESS = "AFTER_JOB_SUCCESS"
    AFTER_JOB_FAILURE = "AFTER_JOB_FAILURE"


HOOK_MANIFEST_TYPES = (ManifestType.AFTER_JOB_SUCCESS, ManifestType.AFTER_JOB_FAILURE)


@dataclass(frozen=True, slots=True)
class RunResult:
    """Outcome of one script execution with combined stdout and stderr."""

    exit_code: int
    message: str

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True, slots=True)
class HookResult:
    """Result of the single hook script selected by the job result."""

    manifest_type: ManifestType
    result: RunResult

    def __post_init__(self) -> None:
        if self.manifest_type not in HOOK_MANIFEST_TYPES:
            raise ValueError(f"Not a hook manifest type: {self.manifest_type.value}")


@dataclass(frozen=True, slots=True)
class JobOutcome:
    """Job result plus exactly one hook result."""

    job: RunResult
    hook: HookResult

    @property
    def after_job_success(self) -> RunResult | None:
        if self.hook.manifest_type is ManifestType.AFTER_JOB_SUCCESS:
            return self.hook.result
        return None

    @property
    def after_job_failure(self) -> RunResult | None:
        if self.hook.manifest_type is ManifestType.AFTER_JOB_FAILURE:
            return self.hook.result
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job": asdict(self.job),
            self.hook.manifest_type.value.lower(): asdict(self.hook.result),
        }


def hook_for(job: RunResult) -> ManifestType:
    """Select the hook script that follows a job result."""

    if job.succeeded:
        return ManifestType.AFTER_JOB_SUCCESS
    return ManifestType.AFTER_JOB_FAILURE


def get_combined_exit_code(outcome: JobOutcome) -> int:
    """Reduce job and hook exit codes to 0 (both succeeded) or 1."""

    if outcome.job.succeeded and outcome.hook.result.succeeded:
        return 0
    return 1
