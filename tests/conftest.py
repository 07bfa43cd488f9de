#!/usr/bin/env python3

"""
Pytest configuration and shared fixtures for yumsync-entrypoint test suite.
"""

import os
import sys
import shutil
import tempfile
import pytest
from pathlib import Path

# Add src to Python path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from yumsync_entrypoint.config.manager import EntrypointConfig


@pytest.fixture
def temp_dir():
    """Provide a temporary directory that gets cleaned up after test"""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir

    # Cleanup
    if os.path.exists(temp_dir):
        shutil.rmtree(temp_dir)


@pytest.fixture
def current_ids(temp_dir):
    """uid/gid that own freshly created files in temp_dir"""
    st = os.stat(temp_dir)
    return st.st_uid, st.st_gid


@pytest.fixture
def entrypoint_config(temp_dir, current_ids):
    """Provide a config whose paths all live in temp_dir"""
    uid, gid = current_ids
    data_dir = os.path.join(temp_dir, "data")
    config_dir = os.path.join(temp_dir, "config")
    archive_dir = os.path.join(temp_dir, "archive")
    os.makedirs(data_dir)
    os.makedirs(config_dir)
    os.makedirs(archive_dir)

    return EntrypointConfig(
        user_id=uid,
        group_id=gid,
        user="yumsync",
        group="yumsync",
        data_dir=data_dir,
        config_dir=config_dir,
        archive_dir=archive_dir,
        restore_file=os.path.join(temp_dir, "restore"),
        ovl_plugin_conf=os.path.join(temp_dir, "ovl.conf"),
        yumsync_bin="yumsync",
        show_progress=False,
    )


@pytest.fixture
def populated_data_dir(entrypoint_config):
    """Fill the data directory with a small mirror-like tree"""
    data_dir = entrypoint_config.data_dir
    repodata = os.path.join(data_dir, "centos", "repodata")
    packages = os.path.join(data_dir, "centos", "Packages")
    os.makedirs(repodata)
    os.makedirs(packages)

    with open(os.path.join(repodata, "repomd.xml"), "w") as f:
        f.write("<repomd/>\n")
    with open(os.path.join(packages, "bash-5.1.8-6.el9.x86_64.rpm"), "wb") as f:
        f.write(b"\x00" * 4096)
    os.symlink("Packages", os.path.join(data_dir, "centos", "latest"))

    return data_dir


@pytest.fixture(autouse=True)
def setup_logging():
    """Set up logging for tests"""
    import logging

    logging.basicConfig(
        level=logging.WARNING,  # Only show warnings and errors in tests
        format="%(name)s - %(levelname)s - %(message)s"
    )

    logging.getLogger("asyncio").setLevel(logging.ERROR)


def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests that run real tar or switch identity"
    )
