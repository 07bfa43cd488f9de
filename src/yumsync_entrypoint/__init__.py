#!/usr/bin/env python3

"""
yumsync container entrypoint

Prepares the yumsync service account and data directory inside the
container, then runs yumsync or archives / restores the mirrored data.
"""

__version__ = "1.0.0"
__author__ = "yumsync-entrypoint contributors"
