"""
Unit tests for the backup store (app/backup/store.py).

Tests artifact naming, listing, atomic publish and deletion.
"""

import re
from pathlib import Path
from unittest.mock import patch

import pytest
from freezegun import freeze_time

from app.backup import store as store_module
from app.backup.store import (
    BackupStore,
    StorageError,
    artifact_timestamp,
    is_final_name,
    is_temp_name
)


class TestArtifactNames:
    """Test name classification."""

    @pytest.mark.parametrize("name", [
        'immich-db-backup-1.sql.gz',
        'immich-db-backup-1700000000000.sql.gz',
    ])
    def test_final_names(self, name):
        assert is_final_name(name) is True
        assert is_temp_name(name) is False

    @pytest.mark.parametrize("name", [
        'immich-db-backup-1.sql.gz.tmp',
        'immich-db-backup-1700000000000.sql.gz.tmp',
    ])
    def test_temp_names(self, name):
        assert is_temp_name(name) is True
        assert is_final_name(name) is False

    @pytest.mark.parametrize("name", [
        'immich-db-backup-.sql.gz',
        'immich-db-backup-abc.sql.gz',
        'immich-db-backup-100.sql',
        'immich-db-backup-100.sql.gz.bak',
        'other-backup-100.sql.gz',
        'immich-db-backup-100.sql.gz\n',
        'notes.txt',
    ])
    def test_unrelated_names(self, name):
        assert is_final_name(name) is False
        assert is_temp_name(name) is False

    def test_artifact_timestamp(self):
        assert artifact_timestamp('immich-db-backup-1234.sql.gz') == 1234
        assert artifact_timestamp('immich-db-backup-1234.sql.gz.tmp') == 1234
        assert artifact_timestamp('notes.txt') is None


class TestBackupStore:
    """Test BackupStore filesystem operations."""

    def test_creates_base_folder(self, tmp_path):
        target = tmp_path / 'a' / 'b'

        BackupStore(str(target))

        assert target.is_dir()

    def test_create_folder_failure_raises_storage_error(self, tmp_path):
        blocker = tmp_path / 'file'
        blocker.write_text('not a directory')

        with pytest.raises(StorageError, match="Failed to create backups folder"):
            BackupStore(str(blocker / 'backups'))

    @freeze_time("2024-01-15 12:00:00")
    def test_new_temp_path_uses_millisecond_timestamp(self, store, backup_dir):
        with patch.object(store_module, '_last_timestamp', 0):
            path = store.new_temp_path()

        assert path.parent == backup_dir
        assert path.name == 'immich-db-backup-1705320000000.sql.gz.tmp'

    @freeze_time("2024-01-15 12:00:00")
    def test_new_temp_paths_never_collide(self, store):
        first = store.new_temp_path()
        second = store.new_temp_path()

        assert first != second
        assert artifact_timestamp(second.name) > artifact_timestamp(first.name)

    def test_new_temp_path_matches_pattern(self, store):
        path = store.new_temp_path()

        assert re.fullmatch(r'immich-db-backup-\d+\.sql\.gz\.tmp', path.name)

    def test_publish_renames_to_final_name(self, store):
        temp_path = store.new_temp_path()
        with store.open_for_write(temp_path) as f:
            f.write(b'compressed')

        final_path = store.publish(temp_path)

        assert not temp_path.exists()
        assert final_path.exists()
        assert final_path.read_bytes() == b'compressed'
        assert is_final_name(final_path.name)
        assert final_path.name == temp_path.name[:-len('.tmp')]

    def test_publish_missing_file_raises_storage_error(self, store):
        temp_path = store.new_temp_path()

        with pytest.raises(StorageError, match="Failed to publish"):
            store.publish(temp_path)

    def test_publish_rejects_non_temp_name(self, store, backup_dir):
        with pytest.raises(StorageError, match="Not a temporary artifact name"):
            store.publish(backup_dir / 'immich-db-backup-1.sql.gz')

    def test_open_for_write_rejects_non_temp_name(self, store, backup_dir):
        with pytest.raises(StorageError, match="Not a temporary artifact name"):
            store.open_for_write(backup_dir / 'notes.txt')

    def test_list_entries_returns_everything(self, store, make_entries):
        make_entries('immich-db-backup-1.sql.gz', 'notes.txt')

        assert sorted(store.list_entries()) == ['immich-db-backup-1.sql.gz', 'notes.txt']

    def test_list_entries_missing_folder_raises(self, store, backup_dir):
        backup_dir.rmdir()

        with pytest.raises(StorageError, match="Failed to list"):
            store.list_entries()

    def test_list_artifacts_newest_first_finals_only(self, store, make_entries):
        make_entries(
            'immich-db-backup-100.sql.gz',
            'immich-db-backup-300.sql.gz',
            'immich-db-backup-200.sql.gz',
            'immich-db-backup-400.sql.gz.tmp',
            'notes.txt'
        )

        artifacts = store.list_artifacts()

        assert [a['name'] for a in artifacts] == [
            'immich-db-backup-300.sql.gz',
            'immich-db-backup-200.sql.gz',
            'immich-db-backup-100.sql.gz',
        ]
        assert artifacts[0]['timestamp'] == 300
        assert artifacts[0]['size'] == 4

    def test_delete_artifact(self, store, make_entries, backup_dir):
        make_entries('immich-db-backup-1.sql.gz')

        store.delete('immich-db-backup-1.sql.gz')

        assert not (backup_dir / 'immich-db-backup-1.sql.gz').exists()

    def test_delete_refuses_unrelated_entry(self, store, make_entries, backup_dir):
        make_entries('notes.txt')

        with pytest.raises(StorageError, match="Refusing to delete"):
            store.delete('notes.txt')

        assert (backup_dir / 'notes.txt').exists()

    def test_delete_missing_artifact_raises(self, store):
        with pytest.raises(StorageError, match="Failed to delete"):
            store.delete('immich-db-backup-1.sql.gz')
