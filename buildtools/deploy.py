"""Applying the Kubernetes descriptors in a project's ``k8s`` directory to a target."""

from __future__ import annotations

import argparse
import logging
import os
import re
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional, Protocol

from buildtools.cli import LogWriter
from buildtools.config import Target
from buildtools.targetfiles import find_files_for_target, find_scripts_for_target

logger = logging.getLogger(__name__)

DESCRIPTION = "deploys the built image to a Kubernetes cluster"

_PLACEHOLDER = re.compile(r"\$\{(COMMIT|TIMESTAMP|IMAGE)\}")


class DeployError(RuntimeError):
    """A deployment step failed."""


@dataclass
class DeployArgs:
    """The options of a deployment."""

    target: str = ""
    context: str = ""
    namespace: str = ""
    tag: str = ""
    timeout: str = "2m"
    no_wait: bool = False


class _Client(Protocol):
    def apply(self, content: str) -> None: ...

    def deployment_exists(self, name: str) -> bool: ...

    def rollout_status(self, name: str, timeout: str) -> bool: ...

    def deployment_events(self, name: str) -> str: ...

    def pod_events(self, name: str) -> str: ...


_Runner = Callable[..., "subprocess.CompletedProcess[str]"]


class KubectlClient:
    """Runs ``kubectl`` against the context, namespace and kubeconfig of a target."""

    def __init__(
        self,
        target: Target,
        runner: _Runner = subprocess.run,
        executable: str = "kubectl",
    ) -> None:
        self.target = target
        self.executable = executable
        self._runner = runner

    def _command(self, *args: str) -> list[str]:
        command = [self.executable]
        if self.target.kubeconfig:
            command += ["--kubeconfig", self.target.kubeconfig]
        if self.target.context:
            command += ["--context", self.target.context]
        if self.target.namespace:
            command += ["--namespace", self.target.namespace]
        return command + list(args)

    def _run(self, *args: str, content: Optional[str] = None) -> "subprocess.CompletedProcess[str]":
        return self._runner(
            self._command(*args),
            input=content,
            capture_output=True,
            text=True,
            check=False,
        )

    def apply(self, content: str) -> None:
        """Apply *content* with ``kubectl apply``; raise :class:`DeployError` on failure."""
        result = self._run("apply", "-f", "-", content=content)
        if result.stdout:
            LogWriter(logger).write(result.stdout)
        if result.returncode != 0:
            message = (result.stderr or "").strip()
            raise DeployError(message or f"kubectl apply failed with exit status {result.returncode}")

    def deployment_exists(self, name: str) -> bool:
        return self._run("get", "deployment", name).returncode == 0

    def rollout_status(self, name: str, timeout: str) -> bool:
        result = self._run("rollout", "status", "deployment", name, f"--timeout={timeout}")
        if result.stdout:
            LogWriter(logger).write(result.stdout)
        return result.returncode == 0

    def deployment_events(self, name: str) -> str:
        result = self._run("describe", "deployment", name)
        return result.stdout or result.stderr or ""

    def pod_events(self, name: str) -> str:
        result = self._run("describe", "pods", "-l", f"app={name}")
        return result.stdout or result.stderr or ""


def build_parser() -> argparse.ArgumentParser:
    """The argument parser for the deploy command, without the shared flags."""
    parser = argparse.ArgumentParser(prog="deploy", description=DESCRIPTION)
    parser.add_argument("target", help="the target in the .buildtools.yaml")
    parser.add_argument(
        "-c", "--context", default="", help="override the context for default deployment target"
    )
    parser.add_argument(
        "-n", "--namespace", default="", help="override the namespace for default deployment target"
    )
    parser.add_argument(
        "--tag", default="", help="override the tag to deploy, not using the CI or VCS evaluated value"
    )
    parser.add_argument(
        "-t",
        "--timeout",
        default="2m",
        help="override the default deployment timeout (2 minutes). 0 means forever, all other values "
        "should contain a corresponding time unit (e.g. 1s, 2m, 3h)",
    )
    parser.add_argument(
        "--no-wait", dest="no_wait", action="store_true", help="don't wait for deployment to become ready"
    )
    return parser


def deploy(
    directory: str,
    registry_url: str,
    build_name: str,
    timestamp: str,
    client: _Client,
    deploy_args: DeployArgs,
) -> None:
    """Apply the descriptors and run the scripts for the target, then wait for the rollout."""
    image_name = f"{registry_url}/{build_name}:{deploy_args.tag}"
    deployment_files = os.path.join(directory, "k8s")
    _process_dir(deployment_files, deploy_args.tag, timestamp, deploy_args.target, image_name, client)

    if deploy_args.no_wait:
        logger.info("Not waiting for deployment to succeed\n")
        return

    if client.deployment_exists(build_name) and not client.rollout_status(build_name, deploy_args.timeout):
        logger.error("Rollout failed. Fetching events.\n")
        logger.error("%s", client.deployment_events(build_name))
        logger.error("%s", client.pod_events(build_name))
        raise DeployError("failed to rollout")


def _process_dir(
    directory: str, commit: str, timestamp: str, target: str, image_name: str, client: _Client
) -> None:
    files = find_files_for_target(directory, target)
    scripts = find_scripts_for_target(directory, target)
    for name in files:
        _process_file(os.path.join(directory, name), commit, timestamp, image_name, client)
    for name in scripts:
        _exec_file(os.path.join(directory, name))


def _exec_file(path: str) -> None:
    result = subprocess.run([path], stdout=subprocess.PIPE, stderr=subprocess.STDOUT, check=False)
    if result.stdout:
        LogWriter(logger).write(result.stdout)
    if result.returncode != 0:
        raise DeployError(f"exit status {result.returncode}")


def _process_file(path: str, commit: str, timestamp: str, image: str, client: _Client) -> None:
    with open(path, encoding="utf-8") as handle:
        content = handle.read()
    if not content.strip():
        logger.debug("ignoring empty file '<yellow>%s</yellow>'\n", os.path.basename(path))
        return
    values = {"COMMIT": commit, "TIMESTAMP": timestamp, "IMAGE": image}
    kube_content = _PLACEHOLDER.sub(lambda match: values[match.group(1)], content)
    logger.debug("trying to apply: \n---\n%s\n---\n", kube_content)
    client.apply(kube_content)