"""Job log sink collecting timestamped entries for the final report."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LogEntry:
    """One timestamped log message."""

    timestamp: str
    message: str


class JobLogger:
    """Records job messages for the JSON report and mirrors them to ``logging``."""

    def __init__(self) -> None:
        self._entries: list[LogEntry] = []

    def log(self, message: str, *, level: int = logging.INFO) -> None:
        self._entries.append(
            LogEntry(timestamp=datetime.now(UTC).isoformat(), message=message),
        )
        logger.log(level, "%s", message)

    @property
    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    def get_logs(self) -> list[dict[str, str]]:
        """Serialize recorded entries for the job report."""

        return [asdict(entry) for entry in self._entries]
