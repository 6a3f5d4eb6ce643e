from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import Callable, Optional, Sequence

from .config import BackupConfig, load_config
from .errors import BackupError, ConfigurationError
from .logger import configure_logging, get_logger
from .orchestrator import BackupOrchestrator, build_orchestrator

LOG = get_logger(__name__)

EXIT_SUCCESS = 0
EXIT_BACKUP_FAILED = 1
EXIT_CONFIG_ERROR = 2

OrchestratorFactory = Callable[[BackupConfig], BackupOrchestrator]


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Back up a TeamCity server to S3.")
    parser.add_argument(
        "--config",
        default=os.getenv("TEAMCITY_BACKUP_CONFIG"),
        help="Path to an optional configuration YAML file.",
    )
    parser.add_argument("--server-url", help="Base URL of the TeamCity server (overrides TEAMCITY_BASE_URL).")
    parser.add_argument("--data-dir", help="TeamCity data directory (overrides TEAMCITY_DATA_DIR).")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Log level (default INFO).",
    )
    return parser.parse_args(argv)


def load_configuration(args: argparse.Namespace) -> BackupConfig:
    config_path = Path(args.config).expanduser() if args.config else None
    return load_config(
        config_path,
        overrides={"server_url": args.server_url, "data_dir": args.data_dir},
    )


def main(
    argv: Optional[Sequence[str]] = None,
    orchestrator_factory: OrchestratorFactory = build_orchestrator,
) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    try:
        config = load_configuration(args)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        result = orchestrator_factory(config).run()
    except BackupError as exc:
        print(f"Backup failed at stage {exc.stage or 'setup'}: {exc}", file=sys.stderr)
        return EXIT_BACKUP_FAILED

    LOG.info("Backup of instance %s finished in %.2fs", result.instance.instance_id, result.duration_seconds)
    print(result.location)
    return EXIT_SUCCESS


if __name__ == "__main__":
    sys.exit(main())
