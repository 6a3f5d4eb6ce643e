from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import BinaryIO, List, Optional, Protocol

import boto3
import requests
from boto3.s3.transfer import TransferConfig
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import UploadSettings
from .errors import DecryptionError, MetadataError, ObjectFetchError, TagLookupError, UploadError

LOG = logging.getLogger(__name__)

METADATA_URL = "http://169.254.169.254/latest"
METADATA_TOKEN_TTL_SECONDS = 60
MB = 1024 * 1024


class InstanceMetadata(Protocol):
    def instance_id(self) -> str:
        ...

    def region(self) -> str:
        ...


class TagStore(Protocol):
    def tag_values(self, instance_id: str, tag_name: str) -> List[str]:
        ...


class ObjectStore(Protocol):
    def fetch(self, bucket: str, key: str) -> bytes:
        ...

    def upload(self, fileobj: BinaryIO, bucket: str, key: str) -> str:
        ...


class Decryptor(Protocol):
    def decrypt(self, ciphertext: bytes) -> bytes:
        ...


@dataclass
class AwsServices:
    """AWS collaborators bound to a single region."""

    tag_store: TagStore
    object_store: ObjectStore
    decryptor: Decryptor


class Ec2InstanceMetadata:
    """Reads instance identity from the EC2 instance metadata service (IMDSv2)."""

    def __init__(
        self,
        base_url: str = METADATA_URL,
        timeout: float = 2.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._token: Optional[str] = None

    def instance_id(self) -> str:
        return self._get("meta-data/instance-id")

    def region(self) -> str:
        return self._get("meta-data/placement/region")

    def _get(self, path: str) -> str:
        url = f"{self._base_url}/{path}"
        try:
            response = self._session.get(url, headers={"X-aws-ec2-metadata-token": self._session_token()}, timeout=self._timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise MetadataError(f"Error reading {path} from instance metadata: {exc}") from exc
        value = response.text.strip()
        if not value:
            raise MetadataError(f"Instance metadata returned an empty value for {path}")
        return value

    def _session_token(self) -> str:
        if self._token is None:
            response = self._session.put(
                f"{self._base_url}/api/token",
                headers={"X-aws-ec2-metadata-token-ttl-seconds": str(METADATA_TOKEN_TTL_SECONDS)},
                timeout=self._timeout,
            )
            response.raise_for_status()
            self._token = response.text
        return self._token


class Ec2TagStore:
    def __init__(self, client) -> None:
        self._client = client

    def tag_values(self, instance_id: str, tag_name: str) -> List[str]:
        filters = [
            {"Name": "resource-type", "Values": ["instance"]},
            {"Name": "resource-id", "Values": [instance_id]},
            {"Name": "key", "Values": [tag_name]},
        ]
        values: List[str] = []
        try:
            for page in self._client.get_paginator("describe_tags").paginate(Filters=filters):
                values.extend(tag.get("Value", "") for tag in page.get("Tags", []))
        except (BotoCoreError, ClientError) as exc:
            raise TagLookupError(f"Error describing tags of instance {instance_id}: {exc}") from exc
        return values


class S3ObjectStore:
    def __init__(self, client, transfer_config: Optional[TransferConfig] = None) -> None:
        self._client = client
        self._transfer_config = transfer_config or TransferConfig()

    def fetch(self, bucket: str, key: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=bucket, Key=key)
            return response["Body"].read()
        except (BotoCoreError, ClientError) as exc:
            raise ObjectFetchError(f"Error downloading s3://{bucket}/{key}: {exc}") from exc

    def upload(self, fileobj: BinaryIO, bucket: str, key: str) -> str:
        try:
            self._client.upload_fileobj(fileobj, bucket, key, Config=self._transfer_config)
        except (BotoCoreError, ClientError) as exc:
            raise UploadError(f"Error uploading backup to s3://{bucket}/{key}: {exc}") from exc
        return f"s3://{bucket}/{key}"


class KmsDecryptor:
    def __init__(self, client) -> None:
        self._client = client

    def decrypt(self, ciphertext: bytes) -> bytes:
        try:
            response = self._client.decrypt(CiphertextBlob=ciphertext)
        except (BotoCoreError, ClientError) as exc:
            raise DecryptionError(f"Error decrypting downloaded credentials: {exc}") from exc
        return response["Plaintext"]


def build_transfer_config(settings: UploadSettings) -> TransferConfig:
    return TransferConfig(
        multipart_threshold=settings.multipart_threshold_mb * MB,
        multipart_chunksize=settings.multipart_chunksize_mb * MB,
        max_concurrency=settings.max_concurrency,
    )


def build_aws_services(region: str, upload_settings: Optional[UploadSettings] = None) -> AwsServices:
    """Create boto3 clients for ``region`` and wrap them in the capability adapters."""
    boto_config = BotoConfig(region_name=region, retries={"max_attempts": 3, "mode": "standard"})
    session = boto3.session.Session(region_name=region)
    LOG.debug("Creating AWS clients for region %s", region)
    return AwsServices(
        tag_store=Ec2TagStore(session.client("ec2", config=boto_config)),
        object_store=S3ObjectStore(
            session.client("s3", config=boto_config),
            build_transfer_config(upload_settings or UploadSettings()),
        ),
        decryptor=KmsDecryptor(session.client("kms", config=boto_config)),
    )
