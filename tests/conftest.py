"""Pytest fixtures for OnlyGate tests."""

from collections.abc import Iterator
from pathlib import Path

import pytest

from onlygate import FileStore, MemoryStore, Registry, SqliteStore, Store

VERSION = "1.0.0"


@pytest.fixture(params=["memory", "file", "sqlite"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> Iterator[Store]:
    """Every backend, so state machine tests run against each."""
    if request.param == "memory":
        yield MemoryStore()
    elif request.param == "file":
        yield FileStore(tmp_path / "prefs.json")
    else:
        sqlite = SqliteStore(tmp_path / "only.sqlite3")
        yield sqlite
        sqlite.close()


@pytest.fixture()
def registry(store: Store) -> Iterator[Registry]:
    """Initialized registry, cleared after each test."""
    reg = Registry(store).initialize(VERSION, app_id="tests")
    yield reg
    reg.clear_all()


@pytest.fixture()
def memory_registry() -> Registry:
    return Registry(MemoryStore(), version=VERSION)


class Calls:
    """Counts invocations of each callback slot in order."""

    def __init__(self) -> None:
        self.log: list[str] = []

    def hook(self, slot: str):
        return lambda: self.log.append(slot)

    def count(self, slot: str) -> int:
        return self.log.count(slot)

    def callbacks(self) -> dict:
        return {
            "on_do": self.hook("do"),
            "on_last_do": self.hook("last"),
            "on_before_done": self.hook("before_done"),
            "on_done": self.hook("done"),
        }


@pytest.fixture()
def calls() -> Calls:
    return Calls()
