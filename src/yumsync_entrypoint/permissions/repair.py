#!/usr/bin/env python3

import os
import logging
from typing import Iterator

from ..config.manager import EntrypointConfig

logger = logging.getLogger(__name__)


def owner_matches(path: str, uid: int, gid: int) -> bool:
    """Whether the data directory (following a symlink to it) is owned by uid:gid"""
    st = os.stat(path)
    return st.st_uid == uid and st.st_gid == gid


def iter_entries(root: str) -> Iterator[str]:
    """Yield root and every entry below it without descending through symlinks"""
    yield root
    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        for name in dirnames:
            yield os.path.join(dirpath, name)
        for name in filenames:
            yield os.path.join(dirpath, name)


def repair_permissions(config: EntrypointConfig, force: bool = False) -> int:
    """Re-own every entry under the data directory not owned by the target IDs.

    Unless forced, nothing is scanned when the data directory itself already
    has the right owner. Symlinks are re-owned themselves, never their
    targets. Entries created while the scan runs may be missed.

    Returns the number of entries that were changed.
    """
    data_dir = config.data_dir
    uid, gid = config.user_id, config.group_id

    if not os.path.exists(data_dir):
        logger.warning(f"Data directory {data_dir} does not exist, skipping permission repair")
        return 0

    if not force and owner_matches(data_dir, uid, gid):
        logger.debug(f"Ownership of {data_dir} already {uid}:{gid}")
        return 0

    logger.info(f"Repairing ownership of {data_dir} to {uid}:{gid}, this may take a while")

    # The data directory may itself be a symlink to the real volume
    root = os.path.realpath(data_dir)

    changed = 0
    for path in iter_entries(root):
        try:
            st = os.lstat(path)
        except FileNotFoundError:
            continue

        if st.st_uid == uid and st.st_gid == gid:
            continue

        try:
            os.chown(path, uid, gid, follow_symlinks=False)
        except FileNotFoundError:
            continue
        changed += 1

    logger.info(f"Repaired ownership of {changed} entries in {data_dir}")
    return changed
