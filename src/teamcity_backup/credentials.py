from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .aws import Decryptor, ObjectStore
from .errors import CredentialFormatError
from .locator import ObjectLocator

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credentials:
    """TeamCity login. Lives in memory only; the password is kept out of repr."""

    username: str
    password: str = field(repr=False)


class _CredentialsDocument(BaseModel):
    model_config = ConfigDict(strict=True)

    user: str = Field(min_length=1)
    password: str = Field(min_length=1)


def load_credentials(locator: ObjectLocator, object_store: ObjectStore, decryptor: Decryptor) -> Credentials:
    """Download, decrypt and parse the credentials object at ``locator``."""
    LOG.info("Loading TeamCity credentials from %s", locator)
    ciphertext = object_store.fetch(locator.bucket, locator.key)
    plaintext = decryptor.decrypt(ciphertext)
    return parse_credentials(plaintext)


def parse_credentials(plaintext: bytes) -> Credentials:
    try:
        document = _CredentialsDocument.model_validate(json.loads(plaintext))
    except (ValueError, ValidationError):
        # Never chain or echo: the plaintext may hold the password.
        raise CredentialFormatError(
            'Decrypted credentials must be a JSON object with keys "user" and "password"'
        ) from None
    return Credentials(username=document.user, password=document.password)
