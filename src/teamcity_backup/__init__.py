"""One-shot TeamCity server backup to S3."""

from __future__ import annotations

from .config import load_config, BackupConfig  # noqa: F401
from .orchestrator import BackupOrchestrator, build_orchestrator  # noqa: F401
