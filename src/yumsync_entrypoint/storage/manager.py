#!/usr/bin/env python3

import os
import asyncio
import logging
import psutil
from datetime import date
from typing import Dict, Any, Optional

from ..config.manager import EntrypointConfig
from ..errors import (
    ArchiveDirectoryMissing, ArchiveExists, DataDirectoryNotEmpty,
    PipelineError, RestoreSourceMissing,
)
from .pipeline import file_to_tar, tar_to_file

logger = logging.getLogger(__name__)

ARCHIVE_NAME_FORMAT = "yumsync_{:%Y%m%d}.tar"


def format_size(num_bytes: int) -> str:
    """Human readable size in the style of ``du -h``"""
    if num_bytes < 1024:
        return f"{num_bytes}B"
    size = float(num_bytes)
    for unit in ("K", "M", "G"):
        size /= 1024
        if size < 1024:
            return f"{size:.1f}{unit}"
    return f"{size / 1024:.1f}T"


class StorageManager:
    def __init__(self, config: EntrypointConfig):
        self.config = config

    def archive_path(self, today: Optional[date] = None) -> str:
        today = today or date.today()
        return os.path.join(self.config.archive_dir, ARCHIVE_NAME_FORMAT.format(today))

    def get_directory_size(self, path: str) -> int:
        """Calculate total size of a directory recursively"""
        total_size = 0
        for dirpath, dirnames, filenames in os.walk(path):
            for filename in filenames:
                file_path = os.path.join(dirpath, filename)
                try:
                    if not os.path.islink(file_path):
                        total_size += os.path.getsize(file_path)
                except OSError:
                    # Skip files that vanish or can't be accessed
                    continue
        return total_size

    def is_empty_directory(self, path: str) -> bool:
        with os.scandir(path) as entries:
            return next(entries, None) is None

    def check_disk_space(self, path: str, required_bytes: int) -> Dict[str, Any]:
        """Check if the filesystem holding path has room for required_bytes"""
        disk_usage = psutil.disk_usage(path)
        return {
            'path': path,
            'available_bytes': disk_usage.free,
            'required_bytes': required_bytes,
            'sufficient': disk_usage.free >= required_bytes,
        }

    def archive_data(self, today: Optional[date] = None) -> str:
        """Write a tar of the data directory to the archive directory.

        One archive per calendar day: an existing file for today is never
        overwritten. Returns the path of the new archive.
        """
        archive_dir = self.config.archive_dir
        if not os.path.isdir(archive_dir):
            raise ArchiveDirectoryMissing(f"Archive directory {archive_dir} does not exist, mount a volume there")

        destination = self.archive_path(today)
        if os.path.exists(destination):
            raise ArchiveExists(f"Archive {destination} already exists")

        data_dir = self.config.data_dir
        data_size = self.get_directory_size(data_dir)
        logger.info(f"Archiving {data_dir} ({format_size(data_size)}) to {destination}")

        space = self.check_disk_space(archive_dir, data_size)
        if not space['sufficient']:
            logger.warning(
                f"Only {format_size(space['available_bytes'])} free in {archive_dir}, "
                f"archive needs about {format_size(data_size)}"
            )

        try:
            asyncio.run(tar_to_file(
                ["-C", data_dir, "-cf", "-", "."],
                destination, data_size, "Archiving",
                self.config.show_progress,
            ))
        except FileExistsError:
            raise ArchiveExists(f"Archive {destination} already exists")
        except (PipelineError, OSError):
            # A partial archive would block another attempt today
            if os.path.exists(destination):
                os.remove(destination)
            raise

        logger.info(f"Archive complete: {destination} ({format_size(os.path.getsize(destination))})")
        return destination

    def restore_data(self) -> int:
        """Extract the restore file into the empty data directory.

        Returns the total size of the data directory afterwards.
        """
        restore_file = self.config.restore_file
        if not os.path.isfile(restore_file):
            raise RestoreSourceMissing(f"Restore file {restore_file} does not exist, mount an archive there")

        data_dir = self.config.data_dir
        if not os.path.exists(data_dir):
            os.makedirs(data_dir, mode=0o755)
        elif not self.is_empty_directory(data_dir):
            raise DataDirectoryNotEmpty(f"Data directory {data_dir} is not empty, refusing to restore into it")

        restore_size = os.path.getsize(restore_file)
        logger.info(f"Restoring {restore_file} ({format_size(restore_size)}) into {data_dir}")

        asyncio.run(file_to_tar(
            restore_file,
            ["-C", data_dir, "-xf", "-"],
            restore_size, "Restoring",
            self.config.show_progress,
        ))

        data_size = self.get_directory_size(data_dir)
        logger.info(f"Restore complete: {data_dir} ({format_size(data_size)})")
        return data_size
