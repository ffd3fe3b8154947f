"""``KEY=VALUE`` parameter handling for job invocations."""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping, MutableMapping
from typing import Any

from cd4pe_job_runner.errors import JobConfigError


def split_key_value(entry: str) -> tuple[str, str]:
    """Split ``KEY=VALUE`` on the first ``=``; the value may contain more ``=``."""

    key, separator, value = entry.partition("=")
    if not separator:
        raise JobConfigError(f"Invalid KEY=VALUE entry (missing '='): {entry!r}")
    if not key:
        raise JobConfigError(f"Invalid KEY=VALUE entry (empty key): {entry!r}")
    return key, value


def parse_args(args: Iterable[str]) -> dict[str, str]:
    """Parse ``KEY=VALUE`` arguments; the last occurrence of a key wins."""

    parsed: dict[str, str] = {}
    for entry in args:
        key, value = split_key_value(entry)
        parsed[key] = value
    return parsed


def set_job_env_vars(
    params: Mapping[str, Any],
    environ: MutableMapping[str, str] | None = None,
) -> None:
    """Export ``params["env_vars"]`` entries into ``environ`` (process env by default).

    Every entry is validated before the first one is applied, so a malformed
    entry leaves the environment untouched.
    """

    target = os.environ if environ is None else environ
    entries = params.get("env_vars") or []
    if isinstance(entries, str):
        raise JobConfigError("env_vars must be a sequence of KEY=VALUE strings")
    pairs = [split_key_value(str(entry)) for entry in entries]
    for key, value in pairs:
        target[key] = value
