from __future__ import annotations

import re
from dataclasses import dataclass

from .errors import InvalidLocatorFormat

LOCATOR_FORMAT = "s3://<bucket>/path/to/key"

_LOCATOR_PATTERN = re.compile(r"(?P<scheme>[A-Za-z][A-Za-z0-9+.-]*)://(?P<bucket>[^/]+)/(?P<key>.+)")


@dataclass(frozen=True)
class ObjectLocator:
    """A bucket and key inside an object store."""

    scheme: str
    bucket: str
    key: str

    def __str__(self) -> str:
        return f"{self.scheme}://{self.bucket}/{self.key}"

    def child(self, name: str) -> "ObjectLocator":
        """Return the locator for ``name`` directly under this key prefix."""
        return ObjectLocator(scheme=self.scheme, bucket=self.bucket, key=f"{self.key.rstrip('/')}/{name}")


def parse_locator(path: str) -> ObjectLocator:
    match = _LOCATOR_PATTERN.fullmatch(path or "")
    if match is None or not match.group("key").strip("/"):
        raise InvalidLocatorFormat(f"Path {path!r} is not in the format {LOCATOR_FORMAT!r}")
    return ObjectLocator(
        scheme=match.group("scheme"),
        bucket=match.group("bucket"),
        key=match.group("key"),
    )
