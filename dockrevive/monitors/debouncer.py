from dataclasses import replace
from datetime import datetime, timedelta

from dockrevive.models import RestartRecord


class RestartDebouncer:
    """Tracks restart attempts per container within a rolling window.

    The count is kept for observability only: recording an attempt never
    suppresses or delays the restart itself.
    """

    def __init__(self, window_seconds: int = 600):
        self.window_seconds = window_seconds
        self._records: dict[str, RestartRecord] = {}

    def record(self, container_id: str, now: datetime | None = None) -> RestartRecord:
        """Record a restart attempt and return the updated record."""
        now = now or datetime.now()
        record = self._records.setdefault(
            container_id, RestartRecord(last_restart=now, restart_count=0)
        )

        if now - record.last_restart > timedelta(seconds=self.window_seconds):
            record.restart_count = 0

        record.restart_count += 1
        record.last_restart = now
        return replace(record)

    def clear(self, container_id: str) -> None:
        """Forget a container's history (it started cleanly)."""
        self._records.pop(container_id, None)

    def get(self, container_id: str) -> RestartRecord | None:
        record = self._records.get(container_id)
        return replace(record) if record else None

    def __len__(self) -> int:
        return len(self._records)
