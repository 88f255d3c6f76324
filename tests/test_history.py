# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

import pytest

from flowmigrate.core.exceptions import PersistenceError
from flowmigrate.core.history import UploadHistoryStore, UploadRecord, UploadStatus


def _store():
    store = UploadHistoryStore()
    store.add(UploadRecord.create("A", "1", UploadStatus.FAILED, error="HTTP 500"))
    store.add(UploadRecord.create("B", "2", UploadStatus.SUCCESS, new_id="n2"))
    store.add(UploadRecord.create("A", "1", UploadStatus.SUCCESS, new_id="n1"))
    return store


def test_find_by_name_returns_most_recent():
    record = _store().find_by_name("A")

    assert record.status == UploadStatus.SUCCESS
    assert record.new_id == "n1"


def test_find_by_name_unknown():
    assert _store().find_by_name("Z") is None


def test_last_is_newest_first():
    names = [r.name for r in _store().last(2)]

    assert names == ["A", "B"]


def test_last_rejects_zero():
    with pytest.raises(ValueError):
        _store().last(0)


def test_summary_counts_by_status():
    summary = _store().summary()

    assert summary == {"success": 2, "failed": 1, "skipped": 0, "total": 3}


def test_records_is_a_copy():
    store = _store()
    store.records.clear()

    assert len(store) == 3


def test_persist_then_load(tmp_path):
    path = tmp_path / "history.jsonl"
    store = _store()

    store.persist(path)
    loaded = UploadHistoryStore.load(path)

    assert [r.to_dict() for r in loaded.records] == [r.to_dict() for r in store.records]
    assert len(path.read_text().splitlines()) == 3


def test_load_missing_file_is_empty(tmp_path):
    assert len(UploadHistoryStore.load(tmp_path / "none.jsonl")) == 0


def test_load_bad_line_raises(tmp_path):
    path = tmp_path / "history.jsonl"
    path.write_text('{"name": "A"}\n')

    with pytest.raises(PersistenceError, match="line 1"):
        UploadHistoryStore.load(path)


def test_record_serialisation_keys():
    data = UploadRecord.create("A", "1", UploadStatus.FAILED, error="boom").to_dict()

    assert data["errorMessage"] == "boom"
    assert data["newId"] is None
    assert UploadRecord.from_dict(data).status == UploadStatus.FAILED
