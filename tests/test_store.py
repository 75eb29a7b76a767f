"""Tests for the instance metadata stores."""

from __future__ import annotations

from pathlib import Path

import pytest

from atlas_broker.state.store import (
    FileInstanceStore,
    InstanceStore,
    InstanceStoreError,
    MemoryInstanceStore,
)


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path: Path) -> InstanceStore:
    if request.param == "memory":
        return MemoryInstanceStore()
    return FileInstanceStore(tmp_path / "state" / "instances.jsonl")


class TestInstanceStore:
    def test_satisfies_protocol(self, store: InstanceStore):
        assert isinstance(store, InstanceStore)

    def test_missing_is_none(self, store: InstanceStore):
        assert store.get("nope") is None

    def test_put_and_get(self, store: InstanceStore):
        store.put("i1", {"groupID": "p1", "clusterName": "i1"})
        assert store.get("i1") == {"groupID": "p1", "clusterName": "i1"}

    def test_put_overwrites(self, store: InstanceStore):
        store.put("i1", {"groupID": "p1"})
        store.put("i1", {"groupID": "p2"})
        assert store.get("i1") == {"groupID": "p2"}

    def test_delete(self, store: InstanceStore):
        store.put("i1", {"groupID": "p1"})
        store.delete("i1")
        store.delete("never-existed")
        assert store.get("i1") is None

    def test_returned_document_is_a_copy(self, store: InstanceStore):
        store.put("i1", {"groupID": "p1"})
        store.get("i1")["groupID"] = "changed"
        assert store.get("i1") == {"groupID": "p1"}


class TestFileInstanceStore:
    def test_persists_across_instances(self, tmp_path: Path):
        path = tmp_path / "instances.jsonl"
        FileInstanceStore(path).put("i1", {"groupID": "p1"})
        assert FileInstanceStore(path).get("i1") == {"groupID": "p1"}

    def test_one_line_per_instance(self, tmp_path: Path):
        store = FileInstanceStore(tmp_path / "instances.jsonl")
        store.put("i1", {"groupID": "p1"})
        store.put("i2", {"groupID": "p2"})
        store.put("i1", {"groupID": "p3"})
        assert len(store.path.read_text(encoding="utf-8").splitlines()) == 2

    def test_corrupt_line(self, tmp_path: Path):
        path = tmp_path / "instances.jsonl"
        path.write_text("{not json\n", encoding="utf-8")
        with pytest.raises(InstanceStoreError, match="line 1"):
            FileInstanceStore(path).get("i1")

    def test_blank_lines_ignored(self, tmp_path: Path):
        path = tmp_path / "instances.jsonl"
        path.write_text(
            '\n{"instance_id": "i1", "parameters": {"groupID": "p1"}}\n\n',
            encoding="utf-8",
        )
        assert FileInstanceStore(path).get("i1") == {"groupID": "p1"}
