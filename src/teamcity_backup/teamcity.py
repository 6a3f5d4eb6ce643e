from __future__ import annotations

import enum
import logging
import time
from pathlib import Path
from typing import Callable, Dict, Optional, Type

import requests

from .credentials import Credentials
from .errors import BackupTimeoutError, RemoteRequestError, StatusRequestError, TriggerRequestError

LOG = logging.getLogger(__name__)

BACKUP_ENDPOINT = "httpAuth/app/rest/server/backup"
BACKUP_SUBDIRECTORY = "backup"
IDLE_STATUS = "Idle"
DEFAULT_POLL_INTERVAL = 5.0

# Full configuration and build log backup, no database dump.
BACKUP_PARAMETERS: Dict[str, str] = {
    "addTimestamp": "true",
    "fileName": "TeamCity_Backup",
    "includeBuildLogs": "true",
    "includeConfigs": "true",
    "includeDatabase": "false",
    "includePersonalChangers": "true",
}


class BackupJobState(enum.Enum):
    RUNNING = "Running"
    IDLE = "Idle"

    @classmethod
    def from_status(cls, status: str) -> "BackupJobState":
        # Anything other than Idle, error pages included, counts as still running.
        return cls.IDLE if status.strip() == IDLE_STATUS else cls.RUNNING


class TeamCityClient:
    """Minimal client for the TeamCity server backup REST endpoint."""

    def __init__(
        self,
        base_url: str,
        credentials: Credentials,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.auth = (credentials.username, credentials.password)
        self._session.headers.update({"Accept": "text/plain", "User-Agent": "teamcity-backup"})
        self._log = logging.getLogger(self.__class__.__name__)

    @property
    def backup_url(self) -> str:
        return f"{self._base_url}/{BACKUP_ENDPOINT}"

    def start_backup(self) -> str:
        """Ask the server to start a backup and return the generated file name."""
        return self._request("post", TriggerRequestError, params=BACKUP_PARAMETERS).strip()

    def backup_status(self) -> str:
        return self._request("get", StatusRequestError).strip()

    def close(self) -> None:
        self._session.auth = None
        self._session.close()

    def __enter__(self) -> "TeamCityClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _request(self, method: str, error_cls: Type[RemoteRequestError], **kwargs) -> str:
        try:
            response = self._session.request(method.upper(), self.backup_url, timeout=self._timeout, **kwargs)
        except requests.RequestException as exc:
            raise error_cls(f"Error on {method.upper()} {self.backup_url}: {exc}") from exc

        if response.status_code >= 400:
            self._log.error("TeamCity request failed: %s %s", response.status_code, response.text[:200])
            hint = " (check the backup credentials)" if response.status_code in (401, 403) else ""
            raise error_cls(
                f"TeamCity returned HTTP {response.status_code} for {method.upper()} {self.backup_url}{hint}",
                status_code=response.status_code,
            )
        return response.text


def trigger_backup(client: TeamCityClient, data_dir: Path) -> Path:
    """Start a server backup and return the path the archive will be written to."""
    file_name = client.start_backup()
    if not file_name:
        raise TriggerRequestError("TeamCity did not return a backup file name")
    if Path(file_name).name != file_name:
        raise TriggerRequestError(f"TeamCity returned an unexpected backup file name {file_name!r}")

    backup_path = Path(data_dir) / BACKUP_SUBDIRECTORY / file_name
    LOG.info("Started TeamCity backup to %s", backup_path)
    return backup_path


def wait_for_backup(
    client: TeamCityClient,
    interval: float = DEFAULT_POLL_INTERVAL,
    timeout: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    """Poll the backup status until the server reports Idle.

    Returns the number of sleeps performed. With ``timeout`` set, raises
    :class:`BackupTimeoutError` rather than sleeping past the deadline; with
    ``timeout`` of ``None`` the loop waits indefinitely.
    """
    deadline = clock() + timeout if timeout is not None else None
    state = BackupJobState.RUNNING
    sleeps = 0

    while state is BackupJobState.RUNNING:
        state = BackupJobState.from_status(client.backup_status())
        if state is BackupJobState.IDLE:
            break
        if deadline is not None and clock() + interval > deadline:
            raise BackupTimeoutError(f"TeamCity backup did not finish within {timeout:g} seconds")
        LOG.info("Waiting for TeamCity backup to complete...")
        sleep(interval)
        sleeps += 1

    LOG.info("TeamCity backup completed")
    return sleeps
