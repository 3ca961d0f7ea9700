"""Tests for the on-disk authentication state store."""

from pathlib import Path

import pytest


def test_ensure_creates_directory(auth_store):
    location = auth_store.ensure("tenant_1_temp_1")
    assert Path(location).is_dir()
    assert auth_store.exists("tenant_1_temp_1")
    # Idempotent
    assert auth_store.ensure("tenant_1_temp_1") == location


def test_delete_removes_everything(auth_store):
    location = Path(auth_store.ensure("tenant_1_5511987654321"))
    (location / "creds.json").write_text("{}")
    (location / "keys").mkdir()

    auth_store.delete("tenant_1_5511987654321")
    assert not location.exists()
    # Missing is not an error
    auth_store.delete("tenant_1_5511987654321")


def test_move_relocates_and_clears_target(auth_store):
    source = Path(auth_store.ensure("tenant_1_temp_1"))
    (source / "creds.json").write_text('{"me": 1}')
    target = Path(auth_store.ensure("tenant_1_5511987654321"))
    (target / "old.json").write_text("{}")

    auth_store.move("tenant_1_temp_1", "tenant_1_5511987654321")

    assert not source.exists()
    assert (target / "creds.json").read_text() == '{"me": 1}'
    assert not (target / "old.json").exists()


def test_move_missing_source_is_noop(auth_store):
    auth_store.move("tenant_1_temp_1", "tenant_1_5511987654321")
    assert not auth_store.exists("tenant_1_5511987654321")


@pytest.mark.parametrize("key", ["../escape", "a/b", ".."])
def test_path_escape_rejected(auth_store, key):
    with pytest.raises(ValueError):
        auth_store.ensure(key)
