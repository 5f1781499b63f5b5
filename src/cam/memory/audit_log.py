"""JSONL append-only operational audit trail."""

from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


class AuditLog:
    """Append-only JSONL event log, one file per stream.

    Streams separate event families (``extraction``, ``validation``,
    ``hyperedge``). Writers on different threads share one lock.
    """

    def __init__(self, audit_dir: Path) -> None:
        self._dir = Path(audit_dir)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _log_file(self, stream: str) -> Path:
        safe_name = stream.replace(":", "_").replace("/", "_")
        return self._dir / f"{safe_name}.jsonl"

    def log(
        self,
        event: str,
        stream: str = "global",
        details: dict[str, Any] | None = None,
    ) -> None:
        """Append an event."""
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": event,
            "stream": stream,
            **(details or {}),
        }
        line = json.dumps(entry, default=str)
        with self._lock, open(self._log_file(stream), "a") as f:
            f.write(line + "\n")

    def read(self, stream: str = "global", limit: int = 100) -> list[dict[str, Any]]:
        """Read the last N events of a stream."""
        path = self._log_file(stream)
        if not path.exists():
            return []
        with self._lock:
            lines = path.read_text().strip().split("\n")
        entries = [json.loads(line) for line in lines if line]
        return entries[-limit:]
