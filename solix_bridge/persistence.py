from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional, Protocol


class PersistenceError(RuntimeError):
    """Raised when the login store cannot be written or cleared."""


class Persistence(Protocol):
    def retrieve(self) -> Optional[Dict[str, Any]]:
        ...

    def store(self, record: Dict[str, Any]) -> None:
        ...

    def clear(self) -> None:
        ...


class FilePersistence:
    """Single JSON record kept in a local file.

    A missing, unreadable or malformed file reads as empty. Writes go through a
    temp file + rename so a crash mid-write never leaves a truncated record.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def retrieve(self) -> Optional[Dict[str, Any]]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError:
            return None

        try:
            parsed = json.loads(raw)
        except ValueError:
            return None
        if not isinstance(parsed, dict):
            return None
        return parsed

    def store(self, record: Dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(record, indent=2, sort_keys=True), encoding="utf-8")
            tmp.replace(self.path)
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceError(f"failed to write {self.path}: {exc}") from exc

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            raise PersistenceError(f"failed to remove {self.path}: {exc}") from exc
