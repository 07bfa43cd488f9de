#!/usr/bin/env python3

import os
import grp
import pwd
import yaml
from dataclasses import dataclass, fields
from typing import Dict, Any, Mapping, Optional

from ..errors import ConfigError

DEFAULT_USER = "yumsync"
DEFAULT_GROUP = "yumsync"
CONFIG_FILE_NAME = "repos.yml"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}

# field name -> environment variable
ENV_VARS = {
    "user_id": "YUMSYNC_UID",
    "group_id": "YUMSYNC_GID",
    "user": "YUMSYNC_USER",
    "group": "YUMSYNC_GROUP",
    "data_dir": "YUMSYNC_DATA",
    "config_dir": "YUMSYNC_CONF",
    "archive_dir": "YUMSYNC_ARCHIVE_DIR",
    "restore_file": "YUMSYNC_RESTORE_FILE",
    "ovl_plugin_conf": "YUMSYNC_OVL_PLUGIN_CONF",
    "yumsync_bin": "YUMSYNC_BIN",
    "show_progress": "YUMSYNC_PROGRESS",
    "log_level": "YUMSYNC_LOG_LEVEL",
}

OVERRIDES_ENV_VAR = "YUMSYNC_ENTRYPOINT_CONFIG"


@dataclass
class EntrypointConfig:
    user_id: int = None
    group_id: int = None
    user: str = DEFAULT_USER
    group: str = DEFAULT_GROUP
    data_dir: str = "/data"
    config_dir: str = "/config"
    archive_dir: str = "/archive"
    restore_file: str = "/restore"
    ovl_plugin_conf: str = "/etc/yum/pluginconf.d/ovl.conf"
    yumsync_bin: str = "yumsync"
    show_progress: bool = True
    log_level: str = "INFO"

    def __post_init__(self):
        # Without explicit IDs the account keeps whatever the image gave it
        if self.user_id is None:
            self.user_id = _current_uid(self.user)
        if self.group_id is None:
            self.group_id = _current_gid(self.group)

    @property
    def config_path(self) -> str:
        return os.path.join(self.config_dir, CONFIG_FILE_NAME)


def _current_uid(user: str) -> Optional[int]:
    try:
        return pwd.getpwnam(user).pw_uid
    except KeyError:
        return None


def _current_gid(group: str) -> Optional[int]:
    try:
        return grp.getgrnam(group).gr_gid
    except KeyError:
        return None


def parse_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


def parse_id(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    try:
        parsed = int(str(value).strip())
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    if parsed < 0:
        raise ConfigError(f"{name} must not be negative, got {value!r}")
    return parsed


class ConfigManager:
    """Builds the entrypoint configuration from a YAML file and the environment.

    Values from the environment win over values from the YAML file, which in
    turn win over the dataclass defaults. The result is cached so every mode
    handler sees the same object.
    """

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None):
        self.environ = os.environ if environ is None else environ
        self.config_path = config_path or self.environ.get(OVERRIDES_ENV_VAR)
        self._config: Optional[EntrypointConfig] = None

    def load_config(self) -> EntrypointConfig:
        if self._config is not None:
            return self._config

        data = self._load_file()
        data.update(self._load_environment())
        self._config = EntrypointConfig(**self._normalize(data))
        return self._config

    def get_config(self) -> EntrypointConfig:
        if self._config is None:
            return self.load_config()
        return self._config

    def _load_file(self) -> Dict[str, Any]:
        if not self.config_path or not os.path.exists(self.config_path):
            return {}

        try:
            with open(self.config_path, 'r') as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Error loading config from {self.config_path}: {e}")

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {self.config_path} must contain a mapping")

        known = {f.name for f in fields(EntrypointConfig)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown keys in {self.config_path}: {', '.join(unknown)}")
        return data

    def _load_environment(self) -> Dict[str, Any]:
        return {
            field_name: self.environ[env_var]
            for field_name, env_var in ENV_VARS.items()
            if self.environ.get(env_var, "") != ""
        }

    def _normalize(self, data: Dict[str, Any]) -> Dict[str, Any]:
        for key in ("user_id", "group_id"):
            if data.get(key) is not None:
                data[key] = parse_id(data[key], key)

        if "show_progress" in data:
            data["show_progress"] = parse_bool(data["show_progress"], "show_progress")

        if "log_level" in data:
            level = str(data["log_level"]).upper()
            if level not in LOG_LEVELS:
                raise ConfigError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got {data['log_level']!r}")
            data["log_level"] = level

        for key in ("user", "group", "data_dir", "config_dir", "archive_dir",
                    "restore_file", "ovl_plugin_conf", "yumsync_bin"):
            if key in data:
                data[key] = str(data[key])

        return data
