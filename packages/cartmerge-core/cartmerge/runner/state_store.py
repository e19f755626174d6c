"""State store: persist the run state and the review pack across restarts."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Protocol

from cartmerge.models.review import ReviewPack
from cartmerge.models.state import RunState


class StateStore(Protocol):
    """Protocol for state persistence.

    ``save_state`` is called after every transition and must be durable by
    the time it returns.
    """

    def save_state(self, state: RunState) -> None: ...
    def load_state(self) -> RunState | None: ...
    def save_review_pack(self, pack: ReviewPack) -> None: ...
    def load_review_pack(self) -> ReviewPack | None: ...
    def clear_review_pack(self) -> None: ...


class InMemoryStateStore:
    """In-memory state store, lost on process exit.

    Keeps the serialized JSON rather than the objects so a load behaves
    like a real round trip.
    """

    def __init__(self) -> None:
        self._state: dict | None = None
        self._pack: dict | None = None
        self.save_count = 0

    def save_state(self, state: RunState) -> None:
        self._state = state.to_json_dict()
        self.save_count += 1

    def load_state(self) -> RunState | None:
        if self._state is None:
            return None
        return RunState.model_validate(self._state)

    def save_review_pack(self, pack: ReviewPack) -> None:
        self._pack = pack.to_json_dict()

    def load_review_pack(self) -> ReviewPack | None:
        if self._pack is None:
            return None
        return ReviewPack.model_validate(self._pack)

    def clear_review_pack(self) -> None:
        self._pack = None


class FileStateStore:
    """File-backed state store: ``run_state.json`` and ``review_pack.json`` in a directory."""

    STATE_FILE = "run_state.json"
    PACK_FILE = "review_pack.json"

    def __init__(self, state_dir: Path):
        self._dir = Path(state_dir)
        self._dir.mkdir(parents=True, exist_ok=True)

    @property
    def directory(self) -> Path:
        return self._dir

    def save_state(self, state: RunState) -> None:
        self._write(self.STATE_FILE, state.to_json_dict())

    def load_state(self) -> RunState | None:
        data = self._read(self.STATE_FILE)
        return None if data is None else RunState.model_validate(data)

    def save_review_pack(self, pack: ReviewPack) -> None:
        self._write(self.PACK_FILE, pack.to_json_dict())

    def load_review_pack(self) -> ReviewPack | None:
        data = self._read(self.PACK_FILE)
        return None if data is None else ReviewPack.model_validate(data)

    def clear_review_pack(self) -> None:
        path = self._dir / self.PACK_FILE
        if path.exists():
            path.unlink()

    def _read(self, name: str) -> dict | None:
        path = self._dir / name
        if not path.exists():
            return None
        with open(path) as f:
            return json.load(f)

    def _write(self, name: str, data: dict) -> None:
        # Readers see either the old file or the new one.
        fd, tmp = tempfile.mkstemp(dir=self._dir, prefix=f".{name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self._dir / name)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
