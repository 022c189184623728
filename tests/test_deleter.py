"""Tests for the protected deletion collaborator."""

import json
from pathlib import Path

from diskscope.deleter import MAX_DELETE_BYTES, ProtectedDeleter, delete_path, is_path_safe
from diskscope.models import DeleteRequest

from helpers import MB, make_file


class TestIsPathSafe:
    def test_blocks_system_paths(self):
        assert is_path_safe(Path("/System")) is False
        assert is_path_safe(Path("/usr")) is False
        assert is_path_safe(Path("/")) is False

    def test_blocks_home_and_its_parents(self):
        assert is_path_safe(Path.home()) is False
        assert is_path_safe(Path.home().parent) is False

    def test_blocks_user_folders(self):
        assert is_path_safe(Path.home() / "Documents") is False
        assert is_path_safe(Path.home() / "Library") is False

    def test_allows_contents_of_user_folders(self):
        assert is_path_safe(Path.home() / "Library" / "Caches" / "SomeApp") is True

    def test_tilde_is_expanded(self):
        assert is_path_safe(Path("~/Desktop")) is False


class TestDeletePath:
    def test_delete_file(self, tmp_path):
        target = make_file(tmp_path / "f.bin", 2 * MB)
        freed, error = delete_path(target)
        assert error is None
        assert freed == 2 * MB
        assert not target.exists()

    def test_delete_directory(self, tmp_path):
        make_file(tmp_path / "d" / "x.bin", 1 * MB)
        make_file(tmp_path / "d" / "y" / "z.bin", 1 * MB)
        freed, error = delete_path(tmp_path / "d")
        assert error is None
        assert freed == 2 * MB
        assert not (tmp_path / "d").exists()

    def test_delete_symlink_keeps_target(self, tmp_path):
        target = make_file(tmp_path / "real.bin", 1 * MB)
        link = tmp_path / "link"
        link.symlink_to(target)
        freed, error = delete_path(link)
        assert error is None
        assert freed == 0
        assert target.exists()

    def test_missing_path(self, tmp_path):
        freed, error = delete_path(tmp_path / "gone")
        assert freed == 0
        assert error == "Path no longer exists"


class TestProtectedDeleter:
    def test_deletes_and_reports(self, tmp_path):
        target = make_file(tmp_path / "f.bin", 3 * MB)
        result = ProtectedDeleter().delete(DeleteRequest(path=str(target), size_bytes=3 * MB))
        assert result.success
        assert result.bytes_freed == 3 * MB
        assert not target.exists()

    def test_refuses_protected_path(self):
        result = ProtectedDeleter().delete(DeleteRequest(path="/System", size_bytes=1))
        assert not result.success
        assert "Protected" in result.error

    def test_refuses_relative_path(self):
        result = ProtectedDeleter().delete(DeleteRequest(path="some/dir", size_bytes=1))
        assert not result.success
        assert "relative" in result.error

    def test_refuses_oversized_request(self, tmp_path):
        target = make_file(tmp_path / "f.bin", 1)
        request = DeleteRequest(path=str(target), size_bytes=MAX_DELETE_BYTES + 1)
        result = ProtectedDeleter().delete(request)
        assert not result.success
        assert "safety limit" in result.error
        assert target.exists()

    def test_dry_run_leaves_file(self, tmp_path):
        target = make_file(tmp_path / "f.bin", 1 * MB)
        result = ProtectedDeleter(dry_run=True).delete(
            DeleteRequest(path=str(target), size_bytes=1 * MB)
        )
        assert result.success
        assert result.dry_run
        assert target.exists()

    def test_failure_reported(self, tmp_path):
        result = ProtectedDeleter().delete(DeleteRequest(path=str(tmp_path / "gone")))
        assert not result.success
        assert result.bytes_freed is None

    def test_operation_log(self, tmp_path):
        target = make_file(tmp_path / "f.bin", 1 * MB)
        log_path = tmp_path / "logs" / "ops.jsonl"
        deleter = ProtectedDeleter(operation_log=log_path)
        deleter.delete(DeleteRequest(path=str(target), size_bytes=1 * MB))
        deleter.delete(DeleteRequest(path="/System", size_bytes=1))

        records = [json.loads(line) for line in log_path.read_text().splitlines()]
        assert len(records) == 2
        assert records[0]["path"] == str(target)
        assert records[0]["success"] is True
        assert records[0]["bytes_freed"] == 1 * MB
        assert records[1]["success"] is False
