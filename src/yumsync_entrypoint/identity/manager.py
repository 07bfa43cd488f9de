#!/usr/bin/env python3

import os
import grp
import pwd
import logging
import subprocess
from typing import Dict, List

from ..config.manager import EntrypointConfig
from ..errors import ConfigError, PrivilegeError

logger = logging.getLogger(__name__)


def require_superuser() -> None:
    if os.geteuid() != 0:
        raise PrivilegeError("This entrypoint must be run as root")


def reconcile_identity(config: EntrypointConfig) -> Dict[str, bool]:
    """Renumber the service account and group to the configured IDs.

    The group is changed first so the user's primary group stays valid
    while ``usermod`` runs. ``-o`` allows IDs that already belong to another
    account in the image, which is common with host-mounted volumes.
    """
    try:
        pw_record = pwd.getpwnam(config.user)
    except KeyError:
        raise ConfigError(f"User '{config.user}' does not exist")

    try:
        gr_record = grp.getgrnam(config.group)
    except KeyError:
        raise ConfigError(f"Group '{config.group}' does not exist")

    if config.user_id is None or config.group_id is None:
        raise ConfigError("Target user and group IDs could not be determined")

    changes = {'group': False, 'user': False}

    if gr_record.gr_gid != config.group_id:
        logger.info(f"Changing GID of group {config.group} from {gr_record.gr_gid} to {config.group_id}")
        subprocess.run(["groupmod", "-o", "-g", str(config.group_id), config.group], check=True)
        changes['group'] = True

    if pw_record.pw_uid != config.user_id:
        logger.info(f"Changing UID of user {config.user} from {pw_record.pw_uid} to {config.user_id}")
        subprocess.run(["usermod", "-o", "-u", str(config.user_id), config.user], check=True)
        changes['user'] = True

    if not any(changes.values()):
        logger.debug(f"{config.user}:{config.group} already has IDs {config.user_id}:{config.group_id}")

    return changes


def supplementary_groups(config: EntrypointConfig) -> List[int]:
    """Group IDs the service account belongs to, primary group included"""
    try:
        return os.getgrouplist(config.user, config.group_id)
    except KeyError:
        return [config.group_id]


def can_read(path: str, uid: int, gid: int, groups: List[int]) -> bool:
    """Check whether uid/gid may actually open path for reading.

    ``os.access`` answers for the calling (root) process, so ``test -r`` is
    run as the target identity instead. That covers search permission on
    every parent directory as well as ACLs.
    """
    result = subprocess.run(
        ["test", "-r", path],
        user=uid,
        group=gid,
        extra_groups=groups,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )
    return result.returncode == 0


def user_environment(config: EntrypointConfig) -> Dict[str, str]:
    """Environment for a process running as the service account"""
    env = dict(os.environ)
    try:
        pw_record = pwd.getpwnam(config.user)
        env['HOME'] = pw_record.pw_dir
    except KeyError:
        pass
    env['USER'] = config.user
    env['LOGNAME'] = config.user
    return env
