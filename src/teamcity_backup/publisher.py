from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .aws import ObjectStore
from .errors import FileOpenError, FileSystemError
from .locator import ObjectLocator

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackupArtifact:
    local_path: Path
    destination: ObjectLocator

    @property
    def upload_key(self) -> str:
        return self.destination.child(self.local_path.name).key


def publish(local_path: Path, destination: ObjectLocator, object_store: ObjectStore) -> str:
    """Stream ``local_path`` to ``destination`` and delete the local file.

    The file is removed whether or not the upload succeeds. Returns the remote
    location of the uploaded object.
    """
    artifact = BackupArtifact(local_path=Path(local_path), destination=destination)
    try:
        location = _upload(artifact, object_store)
    except BaseException:
        _discard(artifact.local_path, strict=False)
        raise
    _discard(artifact.local_path, strict=True)
    LOG.info("Uploaded TeamCity backup to: %s", location)
    return location


def _upload(artifact: BackupArtifact, object_store: ObjectStore) -> str:
    try:
        reader = artifact.local_path.open("rb")
    except OSError as exc:
        raise FileOpenError(f"Cannot open backup file {str(artifact.local_path)!r}: {exc}") from exc

    with reader:
        LOG.info("Uploading TeamCity backup to: %s", artifact.upload_key)
        return object_store.upload(reader, artifact.destination.bucket, artifact.upload_key)


def _discard(path: Path, strict: bool) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        if strict:
            raise FileSystemError(f"Cannot remove local backup file {str(path)!r}: {exc}") from exc
        LOG.error("Cannot remove local backup file %s: %s", path, exc)
    else:
        LOG.debug("Removed local backup file %s", path)
