#!/usr/bin/env python3

import os
import re
import shutil
import signal
import logging
import tempfile
import subprocess
from typing import List

from ..config.manager import EntrypointConfig
from ..identity.manager import can_read, supplementary_groups, user_environment

logger = logging.getLogger(__name__)

FORWARDED_SIGNALS = (
    signal.SIGTERM, signal.SIGINT, signal.SIGHUP,
    signal.SIGQUIT, signal.SIGUSR1, signal.SIGUSR2,
)

_OVL_ENABLED = re.compile(r"^([ \t]*enabled[ \t]*=[ \t]*)1[ \t]*$", re.MULTILINE)


def resolve_config_path(config: EntrypointConfig) -> str:
    """Return a repos.yml path the service account can read.

    A config on a read-only or foreign-owned mount is copied to a private
    temporary directory owned by the service account. A missing config is
    passed through unchanged so yumsync can report it.
    """
    config_path = config.config_path
    if not os.path.exists(config_path):
        logger.warning(f"Config file {config_path} not found, yumsync will fail to load it")
        return config_path

    uid, gid = config.user_id, config.group_id
    if can_read(config_path, uid, gid, supplementary_groups(config)):
        return config_path

    logger.info(f"{config_path} is not readable by {config.user}, using a private copy")
    private_dir = tempfile.mkdtemp(prefix="yumsync-")
    os.chown(private_dir, uid, gid)
    os.chmod(private_dir, 0o700)

    private_path = os.path.join(private_dir, os.path.basename(config_path))
    shutil.copyfile(config_path, private_path)
    os.chown(private_path, uid, gid)
    os.chmod(private_path, 0o400)
    return private_path


def disable_overlay_plugin(path: str) -> bool:
    """Turn off the yum ovl plugin, which fails with permission denied as non-root"""
    if not os.path.exists(path):
        return False

    with open(path, 'r') as f:
        content = f.read()

    updated = _OVL_ENABLED.sub(r"\g<1>0", content)
    if updated == content:
        return False

    with open(path, 'w') as f:
        f.write(updated)
    logger.info(f"Disabled yum overlay plugin in {path}")
    return True


def build_sync_command(config: EntrypointConfig, config_path: str, extra_args: List[str]) -> List[str]:
    return [
        config.yumsync_bin,
        "--directory", config.data_dir,
        "--config", config_path,
        *extra_args,
    ]


def exit_status(returncode: int) -> int:
    """Map a Popen return code to a shell-style exit status"""
    if returncode < 0:
        return 128 + (-returncode)
    return returncode


def run_as_user(command: List[str], config: EntrypointConfig) -> int:
    """Run command in the foreground as the service account.

    Signals delivered to the entrypoint are passed on to the child, and the
    child's exit status is returned so it can become the entrypoint's own.
    Handlers go in before the child is spawned; a signal arriving before the
    child exists is held and delivered once it does.
    """
    logger.info(f"Running as {config.user} ({config.user_id}:{config.group_id}): {' '.join(command)}")

    proc = None
    pending = []

    def forward(signum, frame):
        if proc is None:
            pending.append(signum)
        elif proc.poll() is None:
            proc.send_signal(signum)

    previous = {signum: signal.signal(signum, forward) for signum in FORWARDED_SIGNALS}
    try:
        proc = subprocess.Popen(
            command,
            user=config.user_id,
            group=config.group_id,
            extra_groups=supplementary_groups(config),
            env=user_environment(config),
        )
        for signum in pending:
            proc.send_signal(signum)
        returncode = proc.wait()
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)

    logger.debug(f"{command[0]} exited with status {returncode}")
    return exit_status(returncode)


def run_sync(config: EntrypointConfig, extra_args: List[str]) -> int:
    config_path = resolve_config_path(config)
    disable_overlay_plugin(config.ovl_plugin_conf)
    try:
        return run_as_user(build_sync_command(config, config_path, extra_args), config)
    finally:
        if config_path != config.config_path:
            shutil.rmtree(os.path.dirname(config_path), ignore_errors=True)
