"""Storage backends for OnlyGate."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Iterator, Protocol, runtime_checkable
import json
import os
import sqlite3
import threading
from uuid import uuid4

from .core import CounterRecord, StorageError


@runtime_checkable
class Store(Protocol):
    """Protocol for counter record storage backends.

    Every method must be safe to call from any thread. A ``save`` must be
    visible to every later ``load`` once it returns. Backend failures are
    raised as StorageError.
    """

    def load(self, name: str) -> CounterRecord:
        """Return the record for name, or the default record if absent."""
        ...

    def save(self, name: str, record: CounterRecord) -> None:
        """Persist all fields of record under name."""
        ...

    def delete(self, name: str) -> None:
        """Remove the record for name."""
        ...

    def delete_all(self) -> None:
        """Remove every record created through this store."""
        ...


@contextmanager
def _storage_errors(op: str, *errors: type[BaseException]) -> Iterator[None]:
    """Re-raise backend exceptions as StorageError."""
    try:
        yield
    except errors as exc:
        raise StorageError(f"{op} failed: {exc}") from exc


class MemoryStore:
    """Thread-safe in-memory record store.

    State is lost when the process exits. Suitable for tests, debug builds
    and single-process scripts.
    """

    __slots__ = ("_records", "_lock")

    def __init__(self) -> None:
        self._records: dict[str, CounterRecord] = {}
        self._lock = threading.Lock()

    def load(self, name: str) -> CounterRecord:
        with self._lock:
            record = self._records.get(name)
            if record is None:
                return CounterRecord.default(name)
            return replace(record)

    def save(self, name: str, record: CounterRecord) -> None:
        with self._lock:
            self._records[name] = replace(record, name=name)

    def delete(self, name: str) -> None:
        with self._lock:
            self._records.pop(name, None)

    def delete_all(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


_file_locks: dict[Path, threading.Lock] = {}
_file_locks_guard = threading.Lock()


def _lock_for_path(path: Path) -> threading.Lock:
    """One lock per resolved file, shared by every FileStore in the process."""
    key = path.resolve()
    with _file_locks_guard:
        lock = _file_locks.get(key)
        if lock is None:
            lock = _file_locks[key] = threading.Lock()
        return lock


class FileStore:
    """Records kept in a JSON preference file.

    The file is a flat object of composite keys, one per field:

        {"only:welcome.count": 1, "only:welcome.version": "1.0.0",
         "only:welcome.marking": ""}

    Keys outside ``prefix`` belong to the host and are never touched. Every
    write replaces the file atomically. Stores opened on the same file share
    one lock, so differently prefixed stores can write concurrently.
    """

    FIELDS = ("count", "version", "marking")

    __slots__ = ("_path", "_prefix", "_lock")

    def __init__(self, path: str | os.PathLike[str], prefix: str = "only:") -> None:
        self._path = Path(path)
        self._prefix = prefix
        self._lock = _lock_for_path(self._path)

    @property
    def path(self) -> Path:
        return self._path

    def _key(self, name: str, field: str) -> str:
        return f"{self._prefix}{name}.{field}"

    def _read(self) -> dict[str, object]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise StorageError(f"read {self._path} failed: {exc}") from exc
        if not text.strip():
            return {}
        with _storage_errors(f"parse {self._path}", ValueError):
            data = json.loads(text)
        if not isinstance(data, dict):
            raise StorageError(f"parse {self._path} failed: top level is not an object")
        return data

    def _write(self, data: dict[str, object]) -> None:
        tmp = self._path.with_name(f"{self._path.name}.{uuid4().hex}.tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
            os.replace(tmp, self._path)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            raise StorageError(f"write {self._path} failed: {exc}") from exc

    def load(self, name: str) -> CounterRecord:
        with self._lock:
            data = self._read()
        count = data.get(self._key(name, "count"), 0)
        with _storage_errors(f"load {name!r}", TypeError, ValueError):
            return CounterRecord(
                name=name,
                count=int(count),
                version=str(data.get(self._key(name, "version"), "")),
                marking=str(data.get(self._key(name, "marking"), "")),
            )

    def save(self, name: str, record: CounterRecord) -> None:
        with self._lock:
            data = self._read()
            data[self._key(name, "count")] = record.count
            data[self._key(name, "version")] = record.version
            data[self._key(name, "marking")] = record.marking
            self._write(data)

    def delete(self, name: str) -> None:
        with self._lock:
            data = self._read()
            keys = [self._key(name, f) for f in self.FIELDS if self._key(name, f) in data]
            if not keys:
                return
            for key in keys:
                del data[key]
            self._write(data)

    def delete_all(self) -> None:
        with self._lock:
            data = self._read()
            kept = {k: v for k, v in data.items() if not k.startswith(self._prefix)}
            if len(kept) != len(data):
                self._write(kept)


class SqliteStore:
    """Records kept in an embedded SQLite database, one row per name.

    Only the ``only_records`` table is created or cleared; other tables in
    the same database file are left alone.
    """

    __slots__ = ("_path", "_conn", "_lock")

    _SCHEMA = """
        CREATE TABLE IF NOT EXISTS only_records (
            name    TEXT PRIMARY KEY,
            count   INTEGER NOT NULL DEFAULT 0,
            version TEXT NOT NULL DEFAULT '',
            marking TEXT NOT NULL DEFAULT ''
        )
    """

    def __init__(self, path: str | os.PathLike[str] = ":memory:") -> None:
        self._path = str(path)
        self._lock = threading.Lock()
        with _storage_errors(f"open {self._path}", sqlite3.Error):
            self._conn = sqlite3.connect(self._path, check_same_thread=False)
            with self._conn:
                self._conn.execute(self._SCHEMA)

    def load(self, name: str) -> CounterRecord:
        with self._lock, _storage_errors(f"load {name!r}", sqlite3.Error):
            row = self._conn.execute(
                "SELECT count, version, marking FROM only_records WHERE name = ?",
                (name,),
            ).fetchone()
        if row is None:
            return CounterRecord.default(name)
        return CounterRecord(name=name, count=row[0], version=row[1], marking=row[2])

    def save(self, name: str, record: CounterRecord) -> None:
        with self._lock, _storage_errors(f"save {name!r}", sqlite3.Error):
            with self._conn:
                self._conn.execute(
                    "INSERT INTO only_records (name, count, version, marking) "
                    "VALUES (?, ?, ?, ?) "
                    "ON CONFLICT(name) DO UPDATE SET "
                    "count = excluded.count, version = excluded.version, "
                    "marking = excluded.marking",
                    (name, record.count, record.version, record.marking),
                )

    def delete(self, name: str) -> None:
        with self._lock, _storage_errors(f"delete {name!r}", sqlite3.Error):
            with self._conn:
                self._conn.execute("DELETE FROM only_records WHERE name = ?", (name,))

    def delete_all(self) -> None:
        with self._lock, _storage_errors("delete_all", sqlite3.Error):
            with self._conn:
                self._conn.execute("DELETE FROM only_records")

    def close(self) -> None:
        with self._lock:
            self._conn.close()
