"""Versioned JSON collections and a repository keyed by entity id.

Each collection is one JSON file::

    {"version": 7, "items": [ {...}, {...} ]}

Writes are whole-collection and optimistic: a commit names the version it
read, and is refused with ``VersionConflictError`` when the file moved on in
the meantime. ``transact`` wraps read-mutate-commit and re-applies the
mutation on conflict, a bounded number of times.

Every commit first copies the current file to ``<name>.bak``, writes a
``.tmp`` sibling and renames it into place. If any step fails the backup is
restored and ``StorageError`` is raised, so the previous snapshot survives.
"""

from __future__ import annotations

import copy
import json
import os
import shutil
import threading
from pathlib import Path
from typing import Any, Callable, Generic, Protocol, TypeVar

from ecosync.errors import StorageError, VersionConflictError
from shared.log import get_logger

logger = get_logger("store")

R = TypeVar("R")


class JsonCollectionStore:
    """One versioned JSON list on disk."""

    def __init__(
        self,
        path: Path | str,
        retention: int | None = None,
        max_retries: int = 3,
    ) -> None:
        self.path = Path(path)
        self.retention = retention
        self.max_retries = max_retries
        self._lock = threading.RLock()
        self.path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def _backup_path(self) -> Path:
        return self.path.with_name(self.path.name + ".bak")

    @property
    def _tmp_path(self) -> Path:
        return self.path.with_name(self.path.name + ".tmp")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read(self) -> tuple[int, list[dict[str, Any]]]:
        """Return ``(version, items)``. A missing file is version 0, empty."""
        with self._lock:
            return self._read_unlocked()

    def _read_unlocked(self) -> tuple[int, list[dict[str, Any]]]:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return 0, []
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"cannot read {self.path}: {exc}") from exc

        # Bare lists predate the version envelope
        if isinstance(raw, list):
            return 0, raw
        if not isinstance(raw, dict):
            raise StorageError(f"unexpected document in {self.path}")
        return int(raw.get("version", 0)), list(raw.get("items", []))

    def items(self) -> list[dict[str, Any]]:
        return self.read()[1]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def commit(self, items: list[dict[str, Any]], expected_version: int) -> int:
        """Persist ``items`` if the file is still at ``expected_version``.

        Returns the new version.
        """
        with self._lock:
            current, _ = self._read_unlocked()
            if current != expected_version:
                raise VersionConflictError(str(self.path), expected_version, current)

            if self.retention is not None and len(items) > self.retention:
                items = items[-self.retention:]

            new_version = current + 1
            self._write_unlocked({"version": new_version, "items": items})
            return new_version

    def _write_unlocked(self, document: dict[str, Any]) -> None:
        had_file = self.path.exists()
        try:
            if had_file:
                shutil.copy2(self.path, self._backup_path)
            self._tmp_path.write_text(
                json.dumps(document, ensure_ascii=False, indent=2),
                encoding="utf-8",
            )
            os.replace(self._tmp_path, self.path)
        except (OSError, TypeError, ValueError) as exc:
            self._restore_backup(had_file)
            logger.error("store_write_failed", path=str(self.path), error=str(exc))
            raise StorageError(f"cannot write {self.path}: {exc}") from exc

    def _restore_backup(self, had_file: bool) -> None:
        try:
            self._tmp_path.unlink(missing_ok=True)
            if had_file and self._backup_path.exists():
                os.replace(self._backup_path, self.path)
        except OSError:
            logger.exception("store_restore_failed", path=str(self.path))

    def transact(self, mutate: Callable[[list[dict[str, Any]]], R]) -> R:
        """Read, let ``mutate`` edit the list in place, commit.

        On a version conflict the whole cycle is repeated with fresh data,
        up to ``max_retries`` extra times. A mutation that leaves the items
        unchanged writes nothing.
        """
        for attempt in range(self.max_retries + 1):
            version, items = self.read()
            before = copy.deepcopy(items)
            result = mutate(items)
            if items == before:
                return result
            try:
                self.commit(items, version)
                return result
            except VersionConflictError as exc:
                if attempt == self.max_retries:
                    raise
                logger.warning(
                    "store_version_conflict",
                    path=str(self.path),
                    attempt=attempt + 1,
                    expected=exc.expected,
                    actual=exc.actual,
                )
        raise RuntimeError("unreachable")

    def append(self, item: dict[str, Any]) -> None:
        self.transact(lambda items: items.append(item))

    def clear(self) -> None:
        self.transact(lambda items: items.clear())


# ------------------------------------------------------------------
# Repository
# ------------------------------------------------------------------


class Record(Protocol):
    def to_dict(self) -> dict[str, Any]: ...


T = TypeVar("T", bound=Record)


class Repository(Generic[T]):
    """Typed view over a ``JsonCollectionStore`` keyed by an id field."""

    def __init__(
        self,
        store: JsonCollectionStore,
        from_dict: Callable[[dict[str, Any]], T],
        key: str = "id",
    ) -> None:
        self.store = store
        self._from_dict = from_dict
        self._key = key

    def _decode(self, raw: list[dict[str, Any]]) -> list[T]:
        return [self._from_dict(item) for item in raw]

    def snapshot(self) -> tuple[int, list[T]]:
        version, raw = self.store.read()
        return version, self._decode(raw)

    def all(self) -> list[T]:
        return self.snapshot()[1]

    def get(self, entity_id: str) -> T | None:
        for item in self.all():
            if getattr(item, self._key) == entity_id:
                return item
        return None

    def replace_all(self, items: list[T], expected_version: int) -> int:
        return self.store.commit([item.to_dict() for item in items], expected_version)

    def update(self, mutate: Callable[[list[T]], R]) -> R:
        """Typed ``transact``: ``mutate`` edits a list of entities in place."""

        def _apply(raw: list[dict[str, Any]]) -> R:
            entities = self._decode(raw)
            result = mutate(entities)
            raw[:] = [entity.to_dict() for entity in entities]
            return result

        return self.store.transact(_apply)

    def add(self, entity: T) -> None:
        self.store.append(entity.to_dict())
