"""Helpers for Docker image tags, ignore files and Dockerfile stages."""

from __future__ import annotations

import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

_INVALID_TAG_CHARS = re.compile(r"[^a-zA-Z0-9.\-_]")
_STAGE = re.compile(r"^FROM .* AS (.*)$", re.IGNORECASE)
_MAX_TAG_LENGTH = 128


def _lines(content: str) -> list[str]:
    lines = content.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return [line.removesuffix("\r") for line in lines]


def slugify_tag(tag: str) -> str:
    """Make *tag* a valid Docker tag: drop invalid and leading '.'/'-' characters, cap the length."""
    cleaned = _INVALID_TAG_CHARS.sub("", tag).lstrip(".-")
    return cleaned[:_MAX_TAG_LENGTH]


def tag(registry: str, image: str, tag: str) -> str:
    """The full image reference ``registry/image:tag`` with a valid tag."""
    slug = slugify_tag(tag)
    if slug != tag:
        logger.debug(
            "<yellow>Warning: tag was changed from '%s' to '%s' due to Dockers rules.</yellow>\n",
            tag,
            slug,
        )
    return f"{registry}/{image}:{slug}"


def parse_dockerignore(directory: str, dockerfile: str) -> list[str]:
    """The ignore patterns for a build: ``k8s`` plus the lines of ``.dockerignore``."""
    result = ["k8s"]
    path = Path(directory) / ".dockerignore"
    if not path.exists():
        return result
    content = path.read_text()
    result.extend(line for line in _lines(content) if line and line != dockerfile)
    return result


def find_stages(content: str) -> list[str]:
    """Names of the named build stages in a Dockerfile."""
    return [match.group(1) for line in _lines(content) if (match := _STAGE.match(line))]