"""Tests for publishing the backup archive."""

from pathlib import Path

import pytest

from conftest import FakeObjectStore
from teamcity_backup.errors import FileOpenError, FileSystemError, UploadError
from teamcity_backup.locator import parse_locator
from teamcity_backup.publisher import BackupArtifact, publish

DESTINATION = parse_locator("s3://dest/prefix")


@pytest.fixture
def archive(tmp_path):
    backup_dir = tmp_path / "backup"
    backup_dir.mkdir()
    path = backup_dir / "backup_2024.zip"
    path.write_bytes(b"archive-bytes")
    return path


class TestPublish:
    """Tests for publish."""

    def test_uploads_under_prefix(self, archive):
        """Test the object is stored at <prefix>/<basename>."""
        store = FakeObjectStore()
        location = publish(archive, DESTINATION, store)
        assert location == "s3://dest/prefix/backup_2024.zip"
        assert store.uploads == {("dest", "prefix/backup_2024.zip"): b"archive-bytes"}

    def test_removes_file_after_success(self, archive):
        """Test the local archive is deleted after a successful upload."""
        publish(archive, DESTINATION, FakeObjectStore())
        assert not archive.exists()

    def test_removes_file_after_failed_upload(self, archive):
        """Test the local archive is deleted even when the upload fails."""
        with pytest.raises(UploadError):
            publish(archive, DESTINATION, FakeObjectStore(fail_upload=True))
        assert not archive.exists()

    def test_removes_file_after_unexpected_error(self, archive):
        """Test cleanup also runs for errors outside the taxonomy."""

        class ExplodingStore:
            def upload(self, fileobj, bucket, key):
                raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            publish(archive, DESTINATION, ExplodingStore())
        assert not archive.exists()

    def test_missing_file_raises_open_error(self, tmp_path):
        """Test a file the server never wrote raises FileOpenError."""
        store = FakeObjectStore()
        with pytest.raises(FileOpenError, match="Cannot open backup file"):
            publish(tmp_path / "backup" / "missing.zip", DESTINATION, store)
        assert store.uploads == {}

    def test_accepts_string_path(self, archive):
        """Test local_path may be given as a string."""
        publish(str(archive), DESTINATION, FakeObjectStore())
        assert not Path(archive).exists()

    def test_removal_failure_after_success_raises(self, archive, monkeypatch):
        """Test a failed cleanup after a good upload raises FileSystemError."""

        def refuse_unlink(self, missing_ok=False):
            raise PermissionError("read-only volume")

        monkeypatch.setattr(Path, "unlink", refuse_unlink)
        with pytest.raises(FileSystemError, match="Cannot remove local backup file"):
            publish(archive, DESTINATION, FakeObjectStore())

    def test_removal_failure_keeps_upload_error(self, archive, monkeypatch):
        """Test a failed cleanup after a failed upload keeps the upload error."""

        def refuse_unlink(self, missing_ok=False):
            raise PermissionError("read-only volume")

        monkeypatch.setattr(Path, "unlink", refuse_unlink)
        with pytest.raises(UploadError):
            publish(archive, DESTINATION, FakeObjectStore(fail_upload=True))


class TestBackupArtifact:
    """Tests for BackupArtifact."""

    def test_upload_key(self, tmp_path):
        """Test the upload key joins the prefix and the file name."""
        artifact = BackupArtifact(local_path=tmp_path / "backup" / "backup_2024.zip", destination=DESTINATION)
        assert artifact.upload_key == "prefix/backup_2024.zip"
