from __future__ import annotations

"""
Local persistence for saved jar notes.

Design intent:
- One named slot on local disk holds the whole list as a JSON array.
- Every mutation rewrites the slot before it becomes visible in memory.
- Unreadable slot content degrades to an empty jar instead of failing startup.
"""

import json
import logging
import os
import random
import tempfile
import time
from pathlib import Path
from threading import RLock
from typing import Optional

from pydantic import ValidationError

from .contracts import Note

logger = logging.getLogger(__name__)


class JsonNoteStore:
    def __init__(self, path: Optional[Path] = None, rng: Optional[random.Random] = None):
        self._path = Path(path) if path is not None else None
        self._rng = rng or random.Random()
        self._lock = RLock()
        self._notes: list[Note] = []

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def load(self) -> int:
        notes = self._read_slot()
        with self._lock:
            self._notes = notes
        return len(notes)

    def _read_slot(self) -> list[Note]:
        if self._path is None or not self._path.exists():
            return []
        try:
            raw = self._path.read_text(encoding="utf-8")
            if not raw.strip():
                return []
            payload = json.loads(raw)
            if not isinstance(payload, list):
                raise ValueError(f"expected a JSON array, got {type(payload).__name__}")
            parsed = [Note.model_validate(item) for item in payload]
        except (OSError, ValueError, ValidationError) as exc:
            # UnicodeDecodeError and json.JSONDecodeError are both ValueErrors.
            logger.warning("note slot unreadable, starting with an empty jar path=%s error=%s", self._path, exc)
            self._quarantine_slot()
            return []

        notes: list[Note] = []
        seen: set[str] = set()
        for note in parsed:
            if note.id in seen:
                logger.warning("duplicate note id dropped on load id=%s", note.id)
                continue
            seen.add(note.id)
            notes.append(note)
        return notes

    def _quarantine_slot(self) -> None:
        if self._path is None:
            return
        target = self._path.with_name(f"{self._path.name}.{int(time.time())}.corrupt")
        try:
            self._path.replace(target)
            logger.warning("unreadable note slot moved aside to %s", target)
        except OSError as exc:
            logger.warning("could not move unreadable note slot aside: %s", exc)

    def _write_slot(self, notes: list[Note]) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        body = json.dumps([note.to_storage() for note in notes], ensure_ascii=False)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self._path.name}.", dir=str(self._path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(body)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def persist(self) -> None:
        with self._lock:
            self._write_slot(list(self._notes))

    def notes(self) -> list[Note]:
        with self._lock:
            return list(self._notes)

    def __len__(self) -> int:
        with self._lock:
            return len(self._notes)

    def is_empty(self) -> bool:
        return len(self) == 0

    def get(self, note_id: str) -> Optional[Note]:
        with self._lock:
            for note in self._notes:
                if note.id == note_id:
                    return note
        return None

    def contains(self, note_id: str) -> bool:
        return self.get(note_id) is not None

    def append(self, note: Note) -> bool:
        with self._lock:
            if any(item.id == note.id for item in self._notes):
                return False
            updated = [note, *self._notes]
            self._write_slot(updated)
            self._notes = updated
        return True

    def remove(self, note_id: str) -> bool:
        with self._lock:
            updated = [item for item in self._notes if item.id != note_id]
            if len(updated) == len(self._notes):
                return False
            self._write_slot(updated)
            self._notes = updated
        return True

    def pick_random(self, rng: Optional[random.Random] = None) -> Note:
        with self._lock:
            if not self._notes:
                raise LookupError("note store is empty")
            return (rng or self._rng).choice(self._notes)
