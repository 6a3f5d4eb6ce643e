"""
Shared pytest fixtures and fakes for teamcity-backup tests.

The fakes implement the capability interfaces in ``teamcity_backup.aws`` so
pipeline code can be exercised without AWS or a TeamCity server.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from teamcity_backup.config import BackupConfig
from teamcity_backup.errors import DecryptionError, ObjectFetchError, UploadError

CREDENTIALS_TAG = "teamcity:backup:credentials_key"
DESTINATION_TAG = "teamcity:backup:destination_prefix"


class FakeMetadata:
    def __init__(self, instance_id: str = "i-0123456789abcdef0", region: str = "eu-west-1"):
        self._instance_id = instance_id
        self._region = region

    def instance_id(self) -> str:
        return self._instance_id

    def region(self) -> str:
        return self._region


class FakeTagStore:
    def __init__(self, tags: Optional[Dict[str, List[str]]] = None):
        self.tags = tags or {}
        self.queries = []

    def tag_values(self, instance_id: str, tag_name: str) -> List[str]:
        self.queries.append((instance_id, tag_name))
        return list(self.tags.get(tag_name, []))


class FakeObjectStore:
    def __init__(self, objects: Optional[Dict[tuple, bytes]] = None, fail_upload: bool = False):
        self.objects = objects or {}
        self.fail_upload = fail_upload
        self.uploads: Dict[tuple, bytes] = {}

    def fetch(self, bucket: str, key: str) -> bytes:
        try:
            return self.objects[(bucket, key)]
        except KeyError:
            raise ObjectFetchError(f"Error downloading s3://{bucket}/{key}: NoSuchKey") from None

    def upload(self, fileobj, bucket: str, key: str) -> str:
        if self.fail_upload:
            raise UploadError(f"Error uploading backup to s3://{bucket}/{key}: AccessDenied")
        self.uploads[(bucket, key)] = fileobj.read()
        return f"s3://{bucket}/{key}"


class FakeDecryptor:
    """Treats ciphertext as ``b"enc:" + plaintext``."""

    def __init__(self):
        self.calls = 0

    def decrypt(self, ciphertext: bytes) -> bytes:
        self.calls += 1
        if not ciphertext.startswith(b"enc:"):
            raise DecryptionError("Error decrypting downloaded credentials: InvalidCiphertextException")
        return ciphertext[len(b"enc:"):]


def encrypt(plaintext: bytes) -> bytes:
    return b"enc:" + plaintext


class FakeTeamCityClient:
    """Stands in for TeamCityClient; writes the archive when a backup starts."""

    def __init__(self, data_dir: Path, response: str = "  backup_2024.zip\n", statuses=("Idle",)):
        self.data_dir = Path(data_dir)
        self.response = response
        self.statuses = list(statuses)
        self.started = 0
        self.status_calls = 0
        self.closed = False

    def start_backup(self) -> str:
        self.started += 1
        name = self.response.strip()
        if name:
            backup_dir = self.data_dir / "backup"
            backup_dir.mkdir(parents=True, exist_ok=True)
            (backup_dir / name).write_bytes(b"PK\x03\x04 backup archive")
        return name

    def backup_status(self) -> str:
        self.status_calls += 1
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.closed = True


class RecordingSleep:
    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture(autouse=True)
def restore_root_logger():
    """Undo configure_logging calls made by a test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def credentials_document():
    return json.dumps({"user": "backup-bot", "password": "s3cret"}).encode("utf-8")


@pytest.fixture
def tag_store():
    return FakeTagStore(
        {
            CREDENTIALS_TAG: ["s3://bk/creds.enc"],
            DESTINATION_TAG: ["s3://dest/prefix"],
        }
    )


@pytest.fixture
def object_store(credentials_document):
    return FakeObjectStore({("bk", "creds.enc"): encrypt(credentials_document)})


@pytest.fixture
def decryptor():
    return FakeDecryptor()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def backup_config(tmp_path):
    return BackupConfig(data_dir=tmp_path / "teamcity", poll_interval=5.0, poll_timeout=None)
