"""JSON document store for per-instance job results with atomic replace writes."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

EVENT_LOG_NAME = "events.jsonl"


class ResultStore:
    """One JSON document per key; each writer owns its key exclusively."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        return self.root / f"{key}.json"

    def exists(self, key: str) -> bool:
        return self.path_for(key).exists()

    def create(self, key: str, document: dict[str, Any]) -> dict[str, Any]:
        self._write(self.path_for(key), document)
        return dict(document)

    def read(self, key: str) -> dict[str, Any]:
        return json.loads(self.path_for(key).read_text())

    def update(
        self, key: str, mutate: Callable[[dict[str, Any]], dict[str, Any] | None]
    ) -> dict[str, Any]:
        document = self.read(key)
        updated = mutate(document)
        if updated is None:
            updated = document
        self._write(self.path_for(key), updated)
        return updated

    def set_fields(self, key: str, **values: Any) -> dict[str, Any]:
        def _apply(document: dict[str, Any]) -> dict[str, Any]:
            document.update(values)
            return document

        return self.update(key, _apply)

    def append_check(self, key: str, check: dict[str, Any]) -> dict[str, Any]:
        def _apply(document: dict[str, Any]) -> dict[str, Any]:
            document.setdefault("checks", []).append(dict(check))
            return document

        document = self.update(key, _apply)
        self.append_event(
            "check_appended",
            {"key": key, "name": check.get("name", ""), "status": check.get("status", "")},
        )
        return document

    def list_documents(self) -> list[Path]:
        return sorted(path for path in self.root.glob("*.json") if path.is_file())

    def append_event(self, event_type: str, payload: dict[str, Any]) -> None:
        record = {
            "event_type": event_type,
            "recorded_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            "payload": payload,
        }
        with (self.root / EVENT_LOG_NAME).open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(record, sort_keys=True) + "\n")

    def list_events(self, event_type: str | None = None) -> list[dict[str, Any]]:
        log_path = self.root / EVENT_LOG_NAME
        if not log_path.exists():
            return []
        events = [json.loads(line) for line in log_path.read_text().splitlines() if line.strip()]
        if event_type is None:
            return events
        return [event for event in events if event["event_type"] == event_type]

    def _write(self, path: Path, document: dict[str, Any]) -> None:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}.", suffix=".tmp", dir=self.root)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2, sort_keys=False)
                handle.write("\n")
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
