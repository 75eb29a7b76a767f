"""Instance metadata store.

Records, per service instance, the project (``groupID``) and cluster name
chosen at provisioning time so later operations on the same instance
reuse them instead of re-resolving from request parameters.

A missing document is not an error: it means the instance is new.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from atlas_broker.errors import BrokerError

GROUP_ID_KEY = "groupID"
CLUSTER_NAME_KEY = "clusterName"


class InstanceStoreError(BrokerError):
    """Raised when the instance store cannot be read or written."""


@runtime_checkable
class InstanceStore(Protocol):
    """Protocol for instance metadata backends."""

    def get(self, instance_id: str) -> dict[str, Any] | None: ...

    def put(self, instance_id: str, document: dict[str, Any]) -> None: ...

    def delete(self, instance_id: str) -> None: ...


class MemoryInstanceStore:
    """Dict-backed store for tests and single-process development."""

    def __init__(self, documents: dict[str, dict[str, Any]] | None = None) -> None:
        self._docs: dict[str, dict[str, Any]] = dict(documents or {})
        self._lock = threading.Lock()

    def get(self, instance_id: str) -> dict[str, Any] | None:
        with self._lock:
            doc = self._docs.get(instance_id)
            return dict(doc) if doc is not None else None

    def put(self, instance_id: str, document: dict[str, Any]) -> None:
        with self._lock:
            self._docs[instance_id] = dict(document)

    def delete(self, instance_id: str) -> None:
        with self._lock:
            self._docs.pop(instance_id, None)

    def __len__(self) -> int:
        return len(self._docs)


class FileInstanceStore:
    """JSONL-backed instance store.

    Each line is ``{"instance_id": ..., "parameters": {...}}``. Updates
    rewrite the file; instance metadata is low-volume. Thread-safe via a lock.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def get(self, instance_id: str) -> dict[str, Any] | None:
        with self._lock:
            return self._read_all().get(instance_id)

    def put(self, instance_id: str, document: dict[str, Any]) -> None:
        with self._lock:
            docs = self._read_all()
            docs[instance_id] = dict(document)
            self._write_all(docs)

    def delete(self, instance_id: str) -> None:
        with self._lock:
            docs = self._read_all()
            if docs.pop(instance_id, None) is not None:
                self._write_all(docs)

    def _read_all(self) -> dict[str, dict[str, Any]]:
        if not self._path.exists():
            return {}
        docs: dict[str, dict[str, Any]] = {}
        try:
            text = self._path.read_text(encoding="utf-8")
        except OSError as e:
            raise InstanceStoreError(f"Cannot read instance store {self._path}: {e}") from e
        for lineno, line in enumerate(text.splitlines(), start=1):
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
                docs[entry["instance_id"]] = entry["parameters"]
            except (json.JSONDecodeError, KeyError, TypeError) as e:
                raise InstanceStoreError(
                    f"Corrupt entry at line {lineno} of {self._path}: {e}"
                ) from e
        return docs

    def _write_all(self, docs: dict[str, dict[str, Any]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        lines = [
            json.dumps({"instance_id": k, "parameters": v}, sort_keys=True)
            for k, v in docs.items()
        ]
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
        tmp.replace(self._path)
