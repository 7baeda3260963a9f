"""Tests for installation state tracking and content hashing."""

import pytest

from devbox_lock import __version__
from devbox_lock.core.cachehash import bytes_hash, file_hash, json_hash
from devbox_lock.core.state import (
    StateHash,
    StateHashArgs,
    current_state_hash,
    is_state_up_to_date,
    print_dev_env_cache_path,
    profile_manifest_path,
    read_state_hash_file,
    state_file_path,
    update_state_hash_file,
)
from devbox_lock.errors import StateError


# ═══════════════════════════════════════════
# Hashing
# ═══════════════════════════════════════════


class TestHashing:
    def test_json_hash_ignores_key_order(self):
        assert json_hash({"a": 1, "b": [1, 2]}) == json_hash({"b": [1, 2], "a": 1})

    def test_json_hash_sees_list_order(self):
        assert json_hash([1, 2]) != json_hash([2, 1])

    def test_bytes_hash_is_sha256(self):
        assert bytes_hash(b"") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"

    def test_file_hash_missing_file(self, tmp_path):
        assert file_hash(tmp_path / "nope") == ""

    def test_file_hash_matches_bytes_hash(self, tmp_path):
        path = tmp_path / "data.bin"
        path.write_bytes(b"x" * 20000)
        assert file_hash(path) == bytes_hash(b"x" * 20000)


# ═══════════════════════════════════════════
# State File
# ═══════════════════════════════════════════


@pytest.fixture
def args(tmp_path):
    (tmp_path / "devbox.lock").write_text('{"lockfile_version": "1", "packages": {}}\n')
    return StateHashArgs(project_dir=tmp_path, config_hash="cfg")


class TestStateFile:
    def test_missing_state_is_not_up_to_date(self, args):
        assert read_state_hash_file(args.project_dir) is None
        assert is_state_up_to_date(args) is False

    def test_update_then_up_to_date(self, args):
        written = update_state_hash_file(args)
        assert state_file_path(args.project_dir).exists()
        assert read_state_hash_file(args.project_dir) == written
        assert is_state_up_to_date(args) is True

    def test_current_state_records_tool_version(self, args):
        state = current_state_hash(args)
        assert state.tool_version == __version__
        assert state.lock_file_hash == file_hash(args.project_dir / "devbox.lock")
        assert state.nix_profile_manifest_hash == ""

    def test_lockfile_change_invalidates(self, args):
        update_state_hash_file(args)
        (args.project_dir / "devbox.lock").write_text('{"lockfile_version": "1"}\n')
        assert is_state_up_to_date(args) is False

    def test_config_change_invalidates(self, args):
        update_state_hash_file(args)
        changed = StateHashArgs(project_dir=args.project_dir, config_hash="other")
        assert is_state_up_to_date(changed) is False

    def test_shell_flavor_change_invalidates(self, args):
        update_state_hash_file(args)
        fish = StateHashArgs(project_dir=args.project_dir, config_hash="cfg", is_fish=True)
        assert is_state_up_to_date(fish) is False

    def test_profile_and_env_cache_are_tracked(self, args):
        update_state_hash_file(args)
        manifest = profile_manifest_path(args.project_dir)
        manifest.parent.mkdir(parents=True)
        manifest.write_text("{}")
        assert is_state_up_to_date(args) is False

        update_state_hash_file(args)
        print_dev_env_cache_path(args.project_dir).write_text("export FOO=1")
        assert is_state_up_to_date(args) is False

    def test_corrupt_state_raises(self, args):
        path = state_file_path(args.project_dir)
        path.parent.mkdir(parents=True)
        path.write_text("{broken")
        with pytest.raises(StateError):
            read_state_hash_file(args.project_dir)

    def test_unknown_fields_are_ignored(self):
        state = StateHash.from_dict({"config_hash": "cfg", "future_field": 1})
        assert state == StateHash(config_hash="cfg")
