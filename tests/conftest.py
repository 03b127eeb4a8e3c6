"""Pytest configuration and fixtures for record-keeper tests."""

from __future__ import annotations

import os
import tempfile
from collections.abc import Iterator
from pathlib import Path

import pytest
import pytest_asyncio

from record_keeper.models import BOND_LOG, BOND_STYLING_CONFIG, MISC_VALUE, POKEMON, Record
from record_keeper.persistence.memory import MemoryRecordStore


@pytest.fixture()
def db_path() -> Iterator[Path]:
    """Temporary SQLite database path, removed with its WAL files afterwards."""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    os.unlink(path)
    db = Path(path)
    yield db
    for suffix in ("", "-wal", "-shm"):
        candidate = Path(str(db) + suffix)
        if candidate.exists():
            os.unlink(candidate)


@pytest.fixture()
def bond_store() -> MemoryRecordStore:
    return MemoryRecordStore(BOND_LOG)


@pytest.fixture()
def config_store() -> MemoryRecordStore:
    return MemoryRecordStore(BOND_STYLING_CONFIG)


@pytest.fixture()
def misc_store() -> MemoryRecordStore:
    return MemoryRecordStore(MISC_VALUE)


@pytest.fixture()
def pokemon_list() -> list[Record]:
    """Three Pokemon, one without a name."""
    return [
        Record(key="pkm-1", fields={"name": "Sparky", "species": "Pikachu"}),
        Record(key="pkm-2", fields={"name": None, "species": "Eevee"}),
        Record(key="pkm-3", fields={"name": "Bulby", "species": None}),
    ]


@pytest_asyncio.fixture()
async def pokemon_store(pokemon_list: list[Record]) -> MemoryRecordStore:
    store = MemoryRecordStore(POKEMON)
    for pkm in pokemon_list:
        await store.create(pkm)
    return store
