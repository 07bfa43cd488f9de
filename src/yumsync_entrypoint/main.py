#!/usr/bin/env python3

import sys
import logging
from typing import List, Optional, Tuple

from .config.manager import ConfigManager, EntrypointConfig
from .errors import EntrypointError, UsageError
from .identity.manager import reconcile_identity, require_superuser
from .permissions.repair import repair_permissions
from .storage.manager import StorageManager, format_size
from .sync.runner import run_sync

MODES = ("sync", "repair", "archive", "restore", "help")
DEFAULT_MODE = "sync"

USAGE = """\
Usage: entrypoint [sync|repair|archive|restore|help] [yumsync options...]

Modes:
  sync      Run yumsync against the data directory (default)
  repair    Re-own every file in the data directory to the yumsync user
  archive   Write the data directory to /archive/yumsync_<YYYYMMDD>.tar
  restore   Extract /restore into an empty data directory
  help      Show this message

Options after the mode are passed to yumsync and only apply to sync.

Examples:
  entrypoint                        # sync with repos.yml from the config dir
  entrypoint sync --show-progress   # pass extra options to yumsync
  entrypoint archive                # needs a volume mounted at /archive
  entrypoint restore                # needs an archive mounted at /restore
"""


def setup_logging(level: str = "INFO"):
    """Configure logging for the entrypoint.

    Diagnostics go to stderr so stdout stays with the wrapped tool.
    """
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=log_format,
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def parse_mode(argv: List[str]) -> Tuple[str, List[str]]:
    if not argv:
        return DEFAULT_MODE, []

    first = argv[0]
    if first in MODES:
        return first, list(argv[1:])

    # Option-only invocations still go to yumsync
    if first.startswith("-"):
        return DEFAULT_MODE, list(argv)

    raise UsageError(f"Unknown mode '{first}'")


def cmd_sync(config: EntrypointConfig, extra_args: List[str]) -> int:
    return run_sync(config, extra_args)


def cmd_repair(config: EntrypointConfig) -> int:
    # The forced repair already ran during startup
    return 0


def cmd_archive(config: EntrypointConfig, storage_manager: StorageManager) -> int:
    destination = storage_manager.archive_data()
    print(f"Archive written to {destination}", file=sys.stderr)
    return 0


def cmd_restore(config: EntrypointConfig, storage_manager: StorageManager) -> int:
    data_size = storage_manager.restore_data()
    print(f"Restored {format_size(data_size)} into {config.data_dir}", file=sys.stderr)
    return 0


def run(config: EntrypointConfig, mode: str, extra_args: List[str]) -> int:
    """Prepare the service account and data directory, then run one mode"""
    logger = logging.getLogger(__name__)

    reconcile_identity(config)
    repair_permissions(config, force=(mode == "repair"))

    if mode == "sync":
        return cmd_sync(config, extra_args)

    if extra_args:
        logger.warning(f"Ignoring extra arguments for {mode}: {' '.join(extra_args)}")

    if mode == "repair":
        return cmd_repair(config)

    storage_manager = StorageManager(config)
    if mode == "archive":
        return cmd_archive(config, storage_manager)
    return cmd_restore(config, storage_manager)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    argv = sys.argv[1:] if argv is None else argv
    logger = logging.getLogger(__name__)
    log_level = "INFO"

    try:
        config = ConfigManager().load_config()
        log_level = config.log_level
        setup_logging(log_level)

        require_superuser()

        try:
            mode, extra_args = parse_mode(argv)
        except UsageError:
            sys.stderr.write(USAGE)
            raise

        if mode == "help":
            sys.stderr.write(USAGE)
            return UsageError.exit_code

        return run(config, mode, extra_args)

    except EntrypointError as e:
        if not logging.getLogger().handlers:
            setup_logging(log_level)
        logger.error(str(e))
        return e.exit_code

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130

    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        if log_level == "DEBUG":
            import traceback
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
