#!/usr/bin/env python3

import os
import pytest
from unittest.mock import patch, call

from yumsync_entrypoint.permissions.repair import iter_entries, owner_matches, repair_permissions


class TestIterEntries:

    def test_lists_every_entry_once(self, populated_data_dir):
        entries = list(iter_entries(populated_data_dir))

        relative = sorted(os.path.relpath(p, populated_data_dir) for p in entries)
        assert relative == sorted([
            ".",
            "centos",
            "centos/repodata",
            "centos/Packages",
            "centos/latest",
            "centos/repodata/repomd.xml",
            "centos/Packages/bash-5.1.8-6.el9.x86_64.rpm",
        ])

    def test_does_not_descend_into_symlinked_directories(self, populated_data_dir):
        entries = list(iter_entries(populated_data_dir))

        assert not any("latest/" in p for p in entries)


class TestRepairPermissions:
    """Test ownership repair of the data directory"""

    def test_noop_when_owner_matches(self, entrypoint_config, populated_data_dir):
        with patch('os.walk') as mock_walk, patch('os.chown') as mock_chown:
            changed = repair_permissions(entrypoint_config)

        assert changed == 0
        mock_walk.assert_not_called()
        mock_chown.assert_not_called()

    def test_forced_scan_with_matching_owner_changes_nothing(self, entrypoint_config, populated_data_dir):
        with patch('os.chown') as mock_chown:
            changed = repair_permissions(entrypoint_config, force=True)

        assert changed == 0
        mock_chown.assert_not_called()

    def test_mismatched_owner_reowns_everything(self, entrypoint_config, populated_data_dir):
        entrypoint_config.user_id += 1

        with patch('os.chown') as mock_chown:
            changed = repair_permissions(entrypoint_config)

        expected = list(iter_entries(os.path.realpath(populated_data_dir)))
        assert changed == len(expected) == 7
        uid, gid = entrypoint_config.user_id, entrypoint_config.group_id
        mock_chown.assert_has_calls(
            [call(path, uid, gid, follow_symlinks=False) for path in expected],
            any_order=True,
        )

    def test_group_mismatch_alone_triggers_repair(self, entrypoint_config, populated_data_dir):
        entrypoint_config.group_id += 1

        with patch('os.chown') as mock_chown:
            changed = repair_permissions(entrypoint_config)

        assert changed == 7
        assert mock_chown.call_count == 7

    def test_only_mismatched_entries_are_changed(self, entrypoint_config, populated_data_dir):
        foreign = os.path.join(os.path.realpath(populated_data_dir), "centos", "repodata", "repomd.xml")
        real_lstat = os.lstat
        uid, gid = entrypoint_config.user_id, entrypoint_config.group_id

        class ForeignStat:
            st_uid = uid + 1
            st_gid = gid

        def fake_lstat(path):
            if path == foreign:
                return ForeignStat()
            return real_lstat(path)

        with patch('os.lstat', side_effect=fake_lstat), patch('os.chown') as mock_chown:
            changed = repair_permissions(entrypoint_config, force=True)

        assert changed == 1
        mock_chown.assert_called_once_with(foreign, uid, gid, follow_symlinks=False)

    def test_symlinks_are_not_followed(self, entrypoint_config, populated_data_dir):
        entrypoint_config.user_id += 1

        with patch('os.chown') as mock_chown:
            repair_permissions(entrypoint_config)

        for recorded in mock_chown.call_args_list:
            assert recorded.kwargs == {'follow_symlinks': False}

    def test_symlinked_data_dir(self, entrypoint_config, populated_data_dir, temp_dir):
        link = os.path.join(temp_dir, "data-link")
        os.symlink(populated_data_dir, link)
        entrypoint_config.data_dir = link

        # Ownership is read through the link
        assert owner_matches(link, entrypoint_config.user_id, entrypoint_config.group_id)

        entrypoint_config.user_id += 1
        with patch('os.chown') as mock_chown:
            changed = repair_permissions(entrypoint_config)

        assert changed == 7
        changed_paths = {c.args[0] for c in mock_chown.call_args_list}
        assert os.path.realpath(populated_data_dir) in changed_paths
        assert link not in changed_paths

    def test_entries_vanishing_during_scan(self, entrypoint_config, populated_data_dir):
        entrypoint_config.user_id += 1

        with patch('os.chown', side_effect=FileNotFoundError) as mock_chown:
            changed = repair_permissions(entrypoint_config)

        assert changed == 0
        assert mock_chown.call_count == 7

    def test_missing_data_dir(self, entrypoint_config, temp_dir):
        entrypoint_config.data_dir = os.path.join(temp_dir, "absent")

        with patch('os.chown') as mock_chown:
            assert repair_permissions(entrypoint_config, force=True) == 0

        mock_chown.assert_not_called()

    def test_logs_when_work_begins(self, entrypoint_config, populated_data_dir, caplog):
        entrypoint_config.user_id += 1

        with patch('os.chown'), caplog.at_level("INFO"):
            repair_permissions(entrypoint_config)

        assert "Repairing ownership" in caplog.text
