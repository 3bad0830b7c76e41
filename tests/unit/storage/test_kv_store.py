"""
Tests for key-value storage backends.
"""

import pytest

from calmward.storage.kv_store import (
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    StorageError,
)


@pytest.mark.asyncio
async def test_memory_store_missing_key_is_none():
    store = InMemoryKeyValueStore()

    assert await store.get("missing") is None
    await store.remove("missing")


@pytest.mark.asyncio
async def test_file_store_persists_across_instances(tmp_path):
    path = tmp_path / "nested" / "session.json"
    first = JsonFileKeyValueStore(path)

    await first.set("calmward_token", "tok-1")
    await first.set("calmward_email", "ana@example.com")
    await first.remove("calmward_email")

    second = JsonFileKeyValueStore(path)
    assert await second.get("calmward_token") == "tok-1"
    assert await second.get("calmward_email") is None


@pytest.mark.asyncio
async def test_file_store_missing_file_reads_empty(tmp_path):
    store = JsonFileKeyValueStore(tmp_path / "absent.json")

    assert await store.get("calmward_token") is None


@pytest.mark.asyncio
async def test_file_store_corrupted_file_raises_storage_error(tmp_path):
    path = tmp_path / "session.json"
    path.write_text("{not json", encoding="utf-8")
    store = JsonFileKeyValueStore(path)

    with pytest.raises(StorageError):
        await store.get("calmward_token")


@pytest.mark.asyncio
async def test_session_restore_from_corrupted_file_is_logged_out(tmp_path, make_manager):
    path = tmp_path / "session.json"
    path.write_text("[1, 2, 3]", encoding="utf-8")
    manager = make_manager(JsonFileKeyValueStore(path))

    await manager.restore()

    assert not manager.is_logged_in
