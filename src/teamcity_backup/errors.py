from __future__ import annotations

from typing import Optional


class BackupError(Exception):
    """Base class for every failure that aborts a backup run.

    ``stage`` names the pipeline stage that failed. Components leave it unset;
    the orchestrator fills it in when the error crosses a stage boundary.
    """

    def __init__(self, message: str, stage: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage

    def __str__(self) -> str:
        return self.message


# --- Configuration -----------------------------------------------------------


class ConfigurationError(BackupError):
    """Raised when operator supplied configuration is missing or malformed."""


class InvalidLocatorFormat(ConfigurationError):
    """Raised when an object locator is not ``scheme://bucket/key``."""


class TagNotFound(ConfigurationError):
    """Raised when an instance carries no tag with the requested key."""


class TagAmbiguous(ConfigurationError):
    """Raised when an instance carries more than one value for a tag key."""


# --- Transport ---------------------------------------------------------------


class TransportError(BackupError):
    """Raised on network failures against any external service."""


class MetadataError(TransportError):
    """Raised when the instance metadata service cannot be queried."""


class TagLookupError(TransportError):
    """Raised when the tag store cannot be queried."""


class RemoteRequestError(TransportError):
    """Raised when a request to the TeamCity server fails.

    An authentication failure surfaces as a 401 or 403 ``status_code``.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, stage: Optional[str] = None) -> None:
        super().__init__(message, stage=stage)
        self.status_code = status_code

    @property
    def is_authentication_failure(self) -> bool:
        return self.status_code in (401, 403)


class TriggerRequestError(RemoteRequestError):
    """Raised when the backup could not be started."""


class StatusRequestError(RemoteRequestError):
    """Raised when the backup status could not be read."""


class BackupTimeoutError(BackupError):
    """Raised when the server does not report Idle before the poll deadline."""


# --- Credentials -------------------------------------------------------------


class DecryptionError(BackupError):
    """Raised when the decryption service rejects the ciphertext."""


class CredentialFormatError(BackupError):
    """Raised when decrypted credentials are not the expected JSON object."""


# --- Local filesystem --------------------------------------------------------


class FileSystemError(BackupError):
    """Raised when a local file cannot be opened or removed."""


class FileOpenError(FileSystemError):
    """Raised when the backup archive cannot be opened for reading."""


# --- Object storage ----------------------------------------------------------


class StorageError(BackupError):
    """Raised on object storage failures."""


class ObjectFetchError(StorageError):
    """Raised when an object cannot be downloaded."""


class UploadError(StorageError):
    """Raised when an object cannot be uploaded."""
