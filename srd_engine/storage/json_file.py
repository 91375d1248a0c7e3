"""
JSON file entry store.

Layout under the data directory:

    official/<type>.json   official entries, in insertion order
    custom/<type>.json     custom entries, in insertion order
    status/<type>.json     one SyncStatus record per type

Every file is written to a temporary sibling and moved into place with
os.replace, so a crash or a concurrent reader never sees a half-written
collection. Files rewritten by another process are picked up on the next read
(mtime check), which lets several processes sharing a data directory converge.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from srd_engine.config import get_settings
from srd_engine.domain.models import DataType, Entry, Origin, SyncStatus
from srd_engine.storage.memory import IndexedEntry, InMemoryEntryStore, Partition
from srd_engine.utils.logging import get_logger

log = get_logger(__name__)

_STATUS_DIR = "status"


def _mtime_ns(path: Path) -> Optional[int]:
    try:
        return path.stat().st_mtime_ns
    except FileNotFoundError:
        return None


def _read_json(path: Path, default: Any) -> Any:
    """Read a JSON document, returning `default` when missing or unreadable."""
    try:
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return default
    except (OSError, json.JSONDecodeError) as exc:
        log.warning("Unreadable SRD file, treating as empty", extra={"path": str(path), "error": str(exc)})
        return default


def _write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, sort_keys=True)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class JsonFileEntryStore(InMemoryEntryStore):
    """
    Durable store backed by one JSON file per collection.
    """

    name: str = "json"

    def __init__(self, data_dir: Union[Path, str, None] = None) -> None:
        super().__init__()
        self.data_dir = Path(data_dir) if data_dir is not None else get_settings().data_dir
        self._mtimes: Dict[Path, Optional[int]] = {}
        for sub in (Origin.OFFICIAL.value, Origin.CUSTOM.value, _STATUS_DIR):
            (self.data_dir / sub).mkdir(parents=True, exist_ok=True)
        for data_type in DataType:
            for origin in Origin:
                self._reload(data_type, origin)
            self._reload_status(data_type)
        log.debug("JSON store opened", extra={"data_dir": str(self.data_dir)})

    def _path(self, data_type: DataType, origin: Origin) -> Path:
        return self.data_dir / origin.value / f"{data_type.value}.json"

    def _status_path(self, data_type: DataType) -> Path:
        return self.data_dir / _STATUS_DIR / f"{data_type.value}.json"

    def _changed_on_disk(self, path: Path) -> bool:
        return _mtime_ns(path) != self._mtimes.get(path)

    # -- loading -------------------------------------------------------------

    def _reload(self, data_type: DataType, origin: Origin) -> None:
        path = self._path(data_type, origin)
        mtime = _mtime_ns(path)
        raw = _read_json(path, default=[])
        items = []
        for record in raw if isinstance(raw, list) else []:
            try:
                items.append(IndexedEntry.of(Entry.model_validate(record)))
            except ValidationError as exc:
                log.warning(
                    "Dropping invalid stored entry",
                    extra={"path": str(path), "error": exc.errors()[0].get("msg", str(exc))},
                )
        super()._publish(data_type, origin, tuple(items))
        self._mtimes[path] = mtime

    def _reload_status(self, data_type: DataType) -> None:
        path = self._status_path(data_type)
        mtime = _mtime_ns(path)
        raw = _read_json(path, default=None)
        if raw is not None:
            try:
                super()._publish_status(SyncStatus.model_validate(raw))
            except ValidationError:
                log.warning("Ignoring invalid status file", extra={"path": str(path)})
        self._mtimes[path] = mtime

    # -- persistence hooks ---------------------------------------------------

    def _snapshot(self, data_type: DataType, origin: Origin) -> Partition:
        path = self._path(data_type, origin)
        if self._changed_on_disk(path):
            with self._locks[data_type]:
                if self._changed_on_disk(path):
                    self._reload(data_type, origin)
        return super()._snapshot(data_type, origin)

    def _publish(self, data_type: DataType, origin: Origin, partition: Partition) -> None:
        path = self._path(data_type, origin)
        # Disk first: if the write fails the in-memory view keeps the old collection.
        _write_json(path, [item.entry.to_dict() for item in partition])
        super()._publish(data_type, origin, partition)
        self._mtimes[path] = _mtime_ns(path)

    def _publish_status(self, status: SyncStatus) -> None:
        path = self._status_path(status.data_type)
        _write_json(path, status.model_dump(mode="json"))
        super()._publish_status(status)
        self._mtimes[path] = _mtime_ns(path)

    def load_statuses(self) -> Dict[DataType, SyncStatus]:
        with self._status_lock:
            for data_type in DataType:
                if self._changed_on_disk(self._status_path(data_type)):
                    self._reload_status(data_type)
        return super().load_statuses()


__all__ = ["JsonFileEntryStore"]
