"""Command-line parsing with the flags every command shares."""

from __future__ import annotations

import argparse
import logging
from collections.abc import Sequence
from contextlib import redirect_stderr, redirect_stdout
from dataclasses import dataclass
from typing import Any

from buildtools.cli import LogWriter
from buildtools.config import ConfigError, load

_logger = logging.getLogger("buildtools")


@dataclass(frozen=True)
class VersionInfo:
    """Name, description and build information of a command."""

    name: str = ""
    description: str = ""
    version: str = "dev"
    commit: str = "none"
    date: str = "unknown"

    def __str__(self) -> str:
        return f"Version: {self.version}, commit {self.commit}, built at {self.date}\n"


class Done(Exception):
    """Raised when a flag such as --version or --help has done all the work."""


class _FlagAction(argparse.Action):
    def __init__(self, option_strings: list[str], dest: str, **kwargs: Any) -> None:
        super().__init__(option_strings, dest, nargs=0, default=False, **kwargs)


class _VersionAction(_FlagAction):
    def __init__(self, option_strings: list[str], dest: str, info: VersionInfo, **kwargs: Any) -> None:
        super().__init__(option_strings, dest, **kwargs)
        self.info = info

    def __call__(self, parser, namespace, values, option_string=None) -> None:
        _logger.info(str(self.info))
        raise Done()


class _VerboseAction(_FlagAction):
    def __call__(self, parser, namespace, values, option_string=None) -> None:
        _logger.setLevel(logging.DEBUG)
        setattr(namespace, self.dest, True)


class _ConfigAction(_FlagAction):
    def __init__(self, option_strings: list[str], dest: str, directory: str, **kwargs: Any) -> None:
        super().__init__(option_strings, dest, **kwargs)
        self.directory = directory

    def __call__(self, parser, namespace, values, option_string=None) -> None:
        cfg = load(self.directory)
        _logger.info("Current config\n%s", cfg.dump())
        raise Done()


def parse_args(
    directory: str,
    argv: Sequence[str],
    info: VersionInfo,
    parser: argparse.ArgumentParser,
) -> argparse.Namespace:
    """Add the shared flags to *parser* and parse *argv* with it.

    Help and usage text goes to the log. Raises :class:`Done` when --help,
    --version or --config has been handled, :class:`ConfigError` when --config
    finds a broken configuration and ``ValueError`` for invalid arguments.
    """
    if info.name:
        parser.prog = info.name
    if info.description and not parser.description:
        parser.description = info.description
    parser.add_argument("--version", action=_VersionAction, info=info, help="Print args information and exit")
    parser.add_argument("-v", "--verbose", action=_VerboseAction, help="Enable verbose mode")
    parser.add_argument("--config", action=_ConfigAction, directory=directory, help="Print parsed config and exit")

    writer = LogWriter(_logger)
    with redirect_stdout(writer), redirect_stderr(writer):  # type: ignore[type-var]
        try:
            return parser.parse_args(list(argv))
        except SystemExit as exc:
            if exc.code in (0, None):
                raise Done() from None
            raise ValueError(f"invalid arguments for {parser.prog}") from None
        except ConfigError as exc:
            writer.write(f"{parser.prog}: error: {exc}\n")
            raise