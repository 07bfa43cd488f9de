#!/usr/bin/env python3

"""Failures that end an entrypoint invocation, each with its exit status."""


class EntrypointError(Exception):
    exit_code = 1


class UsageError(EntrypointError):
    exit_code = 1


class PrivilegeError(EntrypointError):
    exit_code = 1


class ConfigError(EntrypointError):
    exit_code = 1


class PipelineError(EntrypointError):
    exit_code = 1


class ArchiveDirectoryMissing(EntrypointError):
    exit_code = 2


class ArchiveExists(EntrypointError):
    exit_code = 2


class RestoreSourceMissing(EntrypointError):
    exit_code = 3


class DataDirectoryNotEmpty(EntrypointError):
    exit_code = 4
