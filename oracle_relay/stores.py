"""Durable watermark and retry-queue persistence."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import List, Optional

from pydantic import TypeAdapter, ValidationError

from .errors import OracleError
from .models import FailedJob, Watermark

_LOGGER = logging.getLogger(__name__)

_JOB_LIST = TypeAdapter(List[FailedJob])


class StateStoreError(OracleError):
    """Raised when a persisted state file cannot be read or written."""


def _atomic_write(path: Path, payload: object, lock: threading.Lock) -> None:
    serialized = json.dumps(payload, ensure_ascii=False, indent=2)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with lock:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(serialized, encoding="utf-8")
            tmp_path.replace(path)
        except OSError as exc:
            raise StateStoreError(f"Failed to write {path}: {exc}") from exc


def _read_json(path: Path) -> object:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise StateStoreError(f"Failed to load {path}: {exc}") from exc


class WatermarkStore:
    """Abstract persistence backend for the processing watermark."""

    def load(self) -> Optional[Watermark]:
        raise NotImplementedError

    def save(self, watermark: Watermark) -> None:
        raise NotImplementedError

    def advance(self, block_number: int, log_index: Optional[int] = None) -> bool:
        """Move the watermark forward; positions at or behind it are ignored.

        Returns ``True`` when the stored watermark changed.
        """

        candidate = Watermark(last_processed_block=block_number, last_processed_log_index=log_index)
        current = self.load()
        if current is not None and candidate.position <= current.position:
            return False
        self.save(candidate)
        return True


class FileWatermarkStore(WatermarkStore):
    """Persist the watermark to a small JSON file with atomic swaps."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._cached: Optional[Watermark] = None
        self._loaded = False

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Optional[Watermark]:
        if self._loaded:
            return self._cached
        if not self._path.exists():
            self._loaded = True
            return None
        data = _read_json(self._path)
        try:
            self._cached = Watermark.model_validate(data)
        except ValidationError as exc:
            raise StateStoreError(f"Invalid watermark payload in {self._path}: {exc}") from exc
        self._loaded = True
        return self._cached

    def save(self, watermark: Watermark) -> None:
        _atomic_write(self._path, watermark.to_json(), self._lock)
        self._cached = watermark
        self._loaded = True


class MemoryWatermarkStore(WatermarkStore):
    def __init__(self, watermark: Optional[Watermark] = None) -> None:
        self._watermark = watermark
        self.saves = 0

    def load(self) -> Optional[Watermark]:
        return self._watermark

    def save(self, watermark: Watermark) -> None:
        self._watermark = watermark
        self.saves += 1


class QueueStore:
    """Abstract persistence backend for the retry queue."""

    def load(self) -> List[FailedJob]:
        raise NotImplementedError

    def save(self, jobs: List[FailedJob]) -> None:
        raise NotImplementedError

    def append(self, job: FailedJob) -> None:
        jobs = self.load()
        jobs.append(job)
        self.save(jobs)


class FileQueueStore(QueueStore):
    """Persist the retry queue as a JSON array rewritten in full on change."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> List[FailedJob]:
        if not self._path.exists():
            return []
        data = _read_json(self._path)
        try:
            return _JOB_LIST.validate_python(data)
        except ValidationError as exc:
            raise StateStoreError(f"Invalid retry queue payload in {self._path}: {exc}") from exc

    def save(self, jobs: List[FailedJob]) -> None:
        _atomic_write(self._path, [job.to_json() for job in jobs], self._lock)
        _LOGGER.debug("Persisted %d retry job(s) to %s", len(jobs), self._path)


class MemoryQueueStore(QueueStore):
    def __init__(self, jobs: Optional[List[FailedJob]] = None) -> None:
        self._jobs = [job.model_copy(deep=True) for job in jobs or []]
        self.saves = 0

    def load(self) -> List[FailedJob]:
        return [job.model_copy(deep=True) for job in self._jobs]

    def save(self, jobs: List[FailedJob]) -> None:
        self._jobs = [job.model_copy(deep=True) for job in jobs]
        self.saves += 1


__all__ = [
    "FileQueueStore",
    "FileWatermarkStore",
    "MemoryQueueStore",
    "MemoryWatermarkStore",
    "QueueStore",
    "StateStoreError",
    "WatermarkStore",
]
