from __future__ import annotations

import logging

from .aws import TagStore
from .errors import TagAmbiguous, TagNotFound

LOG = logging.getLogger(__name__)


def resolve_tag(tag_store: TagStore, instance_id: str, tag_name: str) -> str:
    """Return the single value of ``tag_name`` on ``instance_id``."""
    values = tag_store.tag_values(instance_id, tag_name)
    if not values:
        raise TagNotFound(f"No tags named {tag_name} present on instance {instance_id}")
    if len(values) > 1:
        raise TagAmbiguous(f"Multiple tag values for tag named {tag_name} present on instance {instance_id}")
    LOG.debug("Resolved tag %s on instance %s", tag_name, instance_id)
    return values[0]
