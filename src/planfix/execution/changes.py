"""Change log of files created or modified while a plan runs."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

__all__ = ["ChangeLog", "ChangeType", "FileChangeEntry"]


TELEMETRY_LOGGER = logging.getLogger("planfix.telemetry")


class ChangeType(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"


@dataclass(slots=True)
class FileChangeEntry:
    """One material change recorded during a run."""

    file_path: str
    change_type: ChangeType
    summary: str
    diff_content: str = ""
    original_content: str = ""
    new_content: str = ""
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["change_type"] = self.change_type.value
        return payload


class ChangeLog:
    """Ordered list of changes for the current plan execution."""

    def __init__(self) -> None:
        self._entries: List[FileChangeEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> List[FileChangeEntry]:
        return list(self._entries)

    def log_change(self, entry: FileChangeEntry) -> None:
        self._entries.append(entry)
        TELEMETRY_LOGGER.info("%s %s: %s", entry.change_type.value, entry.file_path, entry.summary)

    def log_directory(self, path: str) -> None:
        self.log_change(
            FileChangeEntry(
                file_path=path,
                change_type=ChangeType.CREATED,
                summary=f"Created directory: '{path}'",
            )
        )

    def paths(self) -> List[str]:
        seen: Dict[str, None] = {}
        for entry in self._entries:
            seen.setdefault(entry.file_path, None)
        return list(seen)

    def format_recent(self, limit: Optional[int] = None) -> str:
        """Render recorded changes as a context block for later prompts."""
        entries = self._entries if limit is None else self._entries[-limit:]
        if not entries:
            return ""
        blocks = [
            f"--- File {entry.change_type.value.upper()}: {entry.file_path} ---\n"
            f"Summary: {entry.summary}\n"
            f"Diff:\n```diff\n{entry.diff_content}\n```\n"
            for entry in entries
        ]
        return (
            "--- Recent Project Changes (During Current Workflow) ---\n"
            + "\n".join(blocks)
            + "--- End Recent Project Changes ---\n"
        )

    def save_completed_plan(self, destination: Path, description: str, outcome: str) -> Path:
        """Persist the run as the last completed plan and return the written path."""
        summary = description
        if outcome == "cancelled":
            summary = f"{description} (Cancelled)"
        elif outcome == "failed":
            summary = f"{description} (Failed)"
        payload = {
            "plan_description": summary,
            "outcome": outcome,
            "completed_at": time.time(),
            "changes": [entry.to_dict() for entry in self._entries],
        }
        destination.parent.mkdir(parents=True, exist_ok=True)
        with destination.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2)
            handle.write("\n")
        return destination

    def clear(self) -> None:
        self._entries.clear()
