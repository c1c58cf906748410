"""Choosing the deployment files and scripts that apply to a target."""

from __future__ import annotations

import logging
import os

logger = logging.getLogger(__name__)


def find_files_for_target(directory: str, target: str) -> list[str]:
    """Names of the ``.yaml`` files in *directory* to use for *target*."""
    return _files_for_target(directory, target, "file", ".yaml", strict=False)


def find_scripts_for_target(directory: str, target: str) -> list[str]:
    """Names of the ``.sh`` scripts in *directory* made for *target*."""
    return _files_for_target(directory, target, "script", ".sh", strict=True)


def _files_for_target(directory: str, target: str, filetype: str, suffix: str, strict: bool) -> list[str]:
    entries = os.listdir(directory)
    specific_suffix = f"-{target}{suffix}"
    matching: set[str] = set()

    for name in sorted(entries):
        if not name.endswith(suffix):
            continue
        logger.debug("considering %s '<yellow>%s</yellow>' for target: <green>%s</green>\n", filetype, name, target)
        if name.endswith(specific_suffix) or "-" not in name:
            matching.add(name)
        else:
            logger.debug("not using %s '<red>%s</red>' for target: <green>%s</green>\n", filetype, name, target)

    result = []
    for name in sorted(matching):
        if name.endswith(specific_suffix):
            use = True
        elif not strict:
            use = f"{name.removesuffix(suffix)}{specific_suffix}" not in matching
        else:
            use = False
        if use:
            logger.debug("using %s '<green>%s</green>' for target: <green>%s</green>\n", filetype, name, target)
            result.append(name)
        else:
            logger.debug("not using %s '<red>%s</red>' for target: <green>%s</green>\n", filetype, name, target)
    return sorted(result)