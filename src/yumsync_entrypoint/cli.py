#!/usr/bin/env python3

"""
Command-line interface wrapper for yumsync-entrypoint.

This module serves as the entry point for the console script installed
by pip and used as the container ENTRYPOINT.
"""

import sys


def main():
    """Entry point for the yumsync-entrypoint command."""
    from .main import main as main_func
    sys.exit(main_func())

if __name__ == "__main__":
    main()
