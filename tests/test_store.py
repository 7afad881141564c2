from __future__ import annotations

import json

import pytest

from ecosync.errors import StorageError, VersionConflictError
from ecosync.models import Routine, RoutineAction, Schedule
from ecosync.store import JsonCollectionStore


def test_missing_file_reads_empty(tmp_path):
    assert JsonCollectionStore(tmp_path / "x.json").read() == (0, [])


def test_commit_bumps_version(tmp_path):
    store = JsonCollectionStore(tmp_path / "x.json")
    assert store.commit([{"a": 1}], 0) == 1
    assert store.read() == (1, [{"a": 1}])
    on_disk = json.loads((tmp_path / "x.json").read_text())
    assert on_disk == {"version": 1, "items": [{"a": 1}]}


def test_stale_version_is_refused(tmp_path):
    store = JsonCollectionStore(tmp_path / "x.json")
    store.commit([{"a": 1}], 0)
    with pytest.raises(VersionConflictError):
        store.commit([{"a": 2}], 0)
    assert store.items() == [{"a": 1}]


def test_failed_write_keeps_previous_snapshot(tmp_path, monkeypatch):
    store = JsonCollectionStore(tmp_path / "x.json")
    store.commit([{"a": 1}], 0)

    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("ecosync.store.os.replace", broken_replace)
    with pytest.raises(StorageError):
        store.commit([{"a": 2}], 1)
    monkeypatch.undo()

    assert store.read() == (1, [{"a": 1}])


def test_bare_list_reads_as_version_zero(tmp_path):
    path = tmp_path / "legacy.json"
    path.write_text(json.dumps([{"uid": "A"}]))
    store = JsonCollectionStore(path)
    assert store.read() == (0, [{"uid": "A"}])
    store.append({"uid": "B"})
    assert store.read() == (1, [{"uid": "A"}, {"uid": "B"}])


def test_corrupt_file_raises_storage_error(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("{not json")
    with pytest.raises(StorageError):
        JsonCollectionStore(path).read()


def test_retention_keeps_newest(tmp_path):
    store = JsonCollectionStore(tmp_path / "log.json", retention=3)
    for i in range(5):
        store.append({"n": i})
    assert [item["n"] for item in store.items()] == [2, 3, 4]


def test_transact_reapplies_after_concurrent_write(tmp_path):
    path = tmp_path / "x.json"
    store = JsonCollectionStore(path)
    other = JsonCollectionStore(path)
    attempts = []

    def mutate(items):
        attempts.append(len(items))
        if len(attempts) == 1:
            # Another writer sneaks in between our read and our commit
            other.append({"by": "other"})
        items.append({"by": "us"})

    store.transact(mutate)
    assert len(attempts) == 2
    assert store.items() == [{"by": "other"}, {"by": "us"}]


def test_transact_gives_up_after_max_retries(tmp_path):
    path = tmp_path / "x.json"
    store = JsonCollectionStore(path, max_retries=1)
    other = JsonCollectionStore(path)

    def always_interfere(items):
        other.append({"by": "other"})
        items.append({"by": "us"})

    with pytest.raises(VersionConflictError):
        store.transact(always_interfere)


def test_unchanged_transact_writes_nothing(tmp_path):
    path = tmp_path / "x.json"
    store = JsonCollectionStore(path)
    store.commit([{"a": 1}], 0)
    store.commit([{"a": 2}], 1)
    backup = path.with_name("x.json.bak").read_text()

    assert store.transact(lambda items: len(items)) == 1

    assert store.read() == (2, [{"a": 2}])
    assert path.with_name("x.json.bak").read_text() == backup


def test_unknown_routine_delete_keeps_version(tmp_path, routines):
    routines.add(Routine("r1", "Morning", Schedule("07:00", ["Monday"]), [RoutineAction("A1", "turnOn")]))
    on_disk = JsonCollectionStore(tmp_path / "routines.json")
    version = on_disk.read()[0]

    assert routines.delete("missing") is None
    assert routines.modify("missing", {"name": "x"}) is None
    assert on_disk.read()[0] == version
