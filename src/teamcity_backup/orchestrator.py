from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import Callable, Iterator, Optional

from .aws import AwsServices, Ec2InstanceMetadata, InstanceMetadata, build_aws_services
from .config import BackupConfig
from .credentials import Credentials, load_credentials
from .errors import BackupError
from .locator import ObjectLocator, parse_locator
from .publisher import BackupArtifact, publish
from .tags import resolve_tag
from .teamcity import TeamCityClient, trigger_backup, wait_for_backup

LOG = logging.getLogger(__name__)

AwsFactory = Callable[[str], AwsServices]
ClientFactory = Callable[[Credentials], TeamCityClient]

STAGE_INSTANCE_METADATA = "instance-metadata"
STAGE_RESOLVE_TAGS = "resolve-tags"
STAGE_PARSE_LOCATORS = "parse-locators"
STAGE_LOAD_CREDENTIALS = "load-credentials"
STAGE_TRIGGER_BACKUP = "trigger-backup"
STAGE_POLL_STATUS = "poll-status"
STAGE_PUBLISH_ARTIFACT = "publish-artifact"


@dataclass(frozen=True)
class InstanceContext:
    instance_id: str
    region: str


@dataclass
class BackupResult:
    instance: InstanceContext
    artifact: BackupArtifact
    location: str
    started_at: datetime
    completed_at: datetime

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()


class BackupOrchestrator:
    """Runs the backup pipeline once, stage by stage.

    Any stage failure aborts the run with a :class:`BackupError` tagged with
    the stage name. Stages already completed are not rolled back; a backup
    that was triggered on the server keeps running.
    """

    def __init__(
        self,
        config: BackupConfig,
        metadata: InstanceMetadata,
        aws_factory: AwsFactory,
        client_factory: Optional[ClientFactory] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._metadata = metadata
        self._aws_factory = aws_factory
        self._client_factory = client_factory or self._default_client
        self._sleep = sleep
        self._clock = clock

    def run(self) -> BackupResult:
        started_at = datetime.now(timezone.utc)

        with self._stage(STAGE_INSTANCE_METADATA):
            instance = InstanceContext(instance_id=self._metadata.instance_id(), region=self._metadata.region())
            services = self._aws_factory(instance.region)
        LOG.info("Running backup for instance %s in %s", instance.instance_id, instance.region)

        with self._stage(STAGE_RESOLVE_TAGS):
            credentials_path = resolve_tag(services.tag_store, instance.instance_id, self._config.credentials_tag)
            destination_path = resolve_tag(services.tag_store, instance.instance_id, self._config.destination_tag)

        with self._stage(STAGE_PARSE_LOCATORS):
            credentials_locator = parse_locator(credentials_path)
            destination = parse_locator(destination_path)

        backup_path = self._run_server_backup(credentials_locator, services)

        artifact = BackupArtifact(local_path=backup_path, destination=destination)
        with self._stage(STAGE_PUBLISH_ARTIFACT):
            location = publish(artifact.local_path, artifact.destination, services.object_store)

        return BackupResult(
            instance=instance,
            artifact=artifact,
            location=location,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
        )

    def _run_server_backup(self, credentials_locator: ObjectLocator, services: AwsServices) -> Path:
        # Credentials stay local to this call and die with the client session.
        with self._stage(STAGE_LOAD_CREDENTIALS):
            credentials = load_credentials(credentials_locator, services.object_store, services.decryptor)

        with self._client_factory(credentials) as client:
            with self._stage(STAGE_TRIGGER_BACKUP):
                backup_path = trigger_backup(client, self._config.data_dir)
            with self._stage(STAGE_POLL_STATUS):
                wait_for_backup(
                    client,
                    interval=self._config.poll_interval,
                    timeout=self._config.poll_timeout,
                    sleep=self._sleep,
                    clock=self._clock,
                )
        return backup_path

    def _default_client(self, credentials: Credentials) -> TeamCityClient:
        return TeamCityClient(self._config.server_url, credentials, timeout=self._config.request_timeout)

    @staticmethod
    @contextmanager
    def _stage(name: str) -> Iterator[None]:
        LOG.debug("Entering stage %s", name)
        try:
            yield
        except BackupError as exc:
            if exc.stage is None:
                exc.stage = name
            raise
        except Exception as exc:  # noqa: BLE001
            raise BackupError(f"Unexpected error: {exc}", stage=name) from exc


def build_orchestrator(config: BackupConfig) -> BackupOrchestrator:
    """Wire the orchestrator to the real EC2, S3, KMS and TeamCity collaborators."""
    return BackupOrchestrator(
        config=config,
        metadata=Ec2InstanceMetadata(),
        aws_factory=partial(build_aws_services, upload_settings=config.upload),
    )
