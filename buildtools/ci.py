"""Continuous-integration environments and how they describe the current build."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar, Optional

logger = logging.getLogger(__name__)


class VCS:
    """A version control system; the base class stands for "no VCS found"."""

    def name(self) -> str:
        return "none"

    def branch(self) -> str:
        return ""

    def commit(self) -> str:
        return ""


def branch_replace_slash(name: str) -> str:
    """Replace slashes and spaces in a branch name with underscores."""
    return name.replace("/", "_").replace(" ", "_")


@dataclass
class CI:
    """A CI environment, described by values normally read from the environment."""

    display_name: ClassVar[str] = ""
    commit_env: ClassVar[Optional[str]] = None
    build_name_env: ClassVar[Optional[str]] = None
    branch_env: ClassVar[Optional[str]] = None

    ci_commit: str = ""
    ci_build_name: str = ""
    ci_branch_name: str = ""
    vcs: VCS = field(default_factory=VCS)
    image_name: str = ""

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "CI":
        """Build an instance from the environment variables this CI sets."""
        env = os.environ if environ is None else environ
        values = {
            attr: env.get(var, "")
            for attr, var in (
                ("ci_commit", cls.commit_env),
                ("ci_build_name", cls.build_name_env),
                ("ci_branch_name", cls.branch_env),
            )
            if var is not None
        }
        return cls(**values)

    def name(self) -> str:
        return self.display_name

    def _build_name(self, name: str) -> str:
        if self.image_name:
            logger.info("Using %s as BuildName\n", self.image_name)
            return self.image_name
        if name:
            return name.lower()
        return Path.cwd().name.lower()

    def build_name(self) -> str:
        """The name of the current build, in lower case."""
        return self._build_name(self.ci_build_name)

    def _branch(self, name: str) -> str:
        return name if name else self.vcs.branch()

    def branch(self) -> str:
        return self._branch(self.ci_branch_name)

    def branch_replace_slash(self) -> str:
        return branch_replace_slash(self.branch())

    def commit(self) -> str:
        return self.ci_commit if self.ci_commit else self.vcs.commit()

    def configured(self) -> bool:
        return bool(self.ci_build_name)


@dataclass
class Azure(CI):
    display_name: ClassVar[str] = "Azure"
    commit_env: ClassVar[Optional[str]] = "BUILD_SOURCEVERSION"
    build_name_env: ClassVar[Optional[str]] = "BUILD_REPOSITORY_NAME"
    branch_env: ClassVar[Optional[str]] = "BUILD_SOURCEBRANCHNAME"


@dataclass
class Buildkite(CI):
    display_name: ClassVar[str] = "Buildkite"
    commit_env: ClassVar[Optional[str]] = "BUILDKITE_COMMIT"
    build_name_env: ClassVar[Optional[str]] = "BUILDKITE_PIPELINE_SLUG"
    branch_env: ClassVar[Optional[str]] = "BUILDKITE_BRANCH"


_GITHUB_WORKSPACE_PREFIX = "/home/runner/work/"


@dataclass
class Github(CI):
    display_name: ClassVar[str] = "Github"
    commit_env: ClassVar[Optional[str]] = "GITHUB_SHA"
    build_name_env: ClassVar[Optional[str]] = "RUNNER_WORKSPACE"
    branch_env: ClassVar[Optional[str]] = "GITHUB_REF"

    def build_name(self) -> str:
        return self._build_name(self.ci_build_name.removeprefix(_GITHUB_WORKSPACE_PREFIX))

    def branch(self) -> str:
        ref = self.ci_branch_name
        if ref.startswith("refs/heads"):
            ref = ref.removeprefix("refs/heads/")
        elif ref.startswith("refs/tags"):
            ref = ref.removeprefix("refs/tags/")
        return self._branch(ref)


@dataclass
class Gitlab(CI):
    display_name: ClassVar[str] = "Gitlab"
    commit_env: ClassVar[Optional[str]] = "CI_COMMIT_SHA"
    build_name_env: ClassVar[Optional[str]] = "CI_PROJECT_NAME"
    branch_env: ClassVar[Optional[str]] = "CI_COMMIT_REF_NAME"


@dataclass
class TeamCity(CI):
    display_name: ClassVar[str] = "TeamCity"
    commit_env: ClassVar[Optional[str]] = "BUILD_VCS_NUMBER"
    build_name_env: ClassVar[Optional[str]] = "TEAMCITY_PROJECT_NAME"
    branch_env: ClassVar[Optional[str]] = "BUILD_VCS_BRANCH"


@dataclass
class NoCI(CI):
    """Used when no CI environment is detected; everything comes from the VCS."""

    display_name: ClassVar[str] = "none"

    def build_name(self) -> str:
        return self._build_name("")

    def branch(self) -> str:
        return self.vcs.branch()

    def commit(self) -> str:
        return self.vcs.commit()

    def configured(self) -> bool:
        return False


def is_valid(ci: CI) -> bool:
    """True when the CI knows either a commit or a branch."""
    return bool(ci.commit()) or bool(ci.branch())