"""Filesystem storage for uploaded call recordings."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_component(value: str, *, fallback: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", Path(value or "").name).strip("._")
    return cleaned or fallback


@dataclass(frozen=True)
class StoredRecording:
    call_id: str
    filename: str
    path: Path
    size_bytes: int


class RecordingTooLargeError(ValueError):
    pass


class RecordingStorage:
    """Writes recordings under ``<root>/<call_id>/<timestamp>_<name>``."""

    def __init__(self, root: Path, *, max_bytes: int) -> None:
        self._root = root
        self._max_bytes = max_bytes

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    def save(self, call_id: str, original_name: str, data: bytes) -> StoredRecording:
        if len(data) > self._max_bytes:
            raise RecordingTooLargeError(f"Recording exceeds {self._max_bytes} bytes.")

        call_dir = self._root / safe_component(call_id, fallback="unknown")
        call_dir.mkdir(parents=True, exist_ok=True)

        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        filename = f"{stamp}_{safe_component(original_name, fallback='recording')}"
        path = call_dir / filename
        path.write_bytes(data)
        return StoredRecording(call_id=call_id, filename=filename, path=path, size_bytes=len(data))
