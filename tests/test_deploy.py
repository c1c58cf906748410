import logging
import os
import subprocess

import pytest

from buildtools.args import VersionInfo, parse_args
from buildtools.config import Target
from buildtools.deploy import DeployArgs, DeployError, KubectlClient, build_parser, deploy

NAMESPACE_YAML = """
apiVersion: v1
kind: Namespace
metadata:
  name: dummy
"""

APPLY_LOG = "trying to apply: \n---\n\napiVersion: v1\nkind: Namespace\nmetadata:\n  name: dummy\n\n---\n"


class FakeKubectl:
    def __init__(self, responses=None, deployment=False, status=False):
        self.responses = list(responses or [None])
        self.deployment = deployment
        self.status = status
        self.inputs = []

    def apply(self, content):
        self.inputs.append(content)
        response = self.responses[len(self.inputs) - 1] if len(self.inputs) <= len(self.responses) else None
        if response is not None:
            raise response

    def deployment_exists(self, name):
        return self.deployment

    def rollout_status(self, name, timeout):
        return self.status

    def deployment_events(self, name):
        return "Deployment events"

    def pod_events(self, name):
        return "Pod events"


@pytest.fixture
def messages(caplog):
    caplog.set_level(logging.DEBUG, logger="buildtools")
    return lambda: [record.getMessage() for record in caplog.records if record.name.startswith("buildtools")]


def _args(**kwargs):
    values = {"target": "", "tag": "abc123", "timeout": "2m"}
    values.update(kwargs)
    return DeployArgs(**values)


def _k8s(tmp_path):
    k8s = tmp_path / "k8s"
    k8s.mkdir(exist_ok=True)
    return k8s


def test_missing_deployment_files_dir(tmp_path, messages):
    client = FakeKubectl()
    with pytest.raises(FileNotFoundError):
        deploy(str(tmp_path), "abc123", "registryUrl", "20190513-17:22:36", client, _args(tag=""))
    assert messages() == []


def test_no_files(tmp_path, messages):
    _k8s(tmp_path)
    client = FakeKubectl()
    deploy(str(tmp_path), "image", "registryUrl", "20190513-17:22:36", client, _args())
    assert client.inputs == []
    assert messages() == []


def test_no_env_specific_files(tmp_path, messages):
    (_k8s(tmp_path) / "deploy.yaml").write_text(NAMESPACE_YAML)
    client = FakeKubectl()
    deploy(str(tmp_path), "image", "registryUrl", "20190513-17:22:36", client, _args())
    assert client.inputs == [NAMESPACE_YAML]
    assert messages() == [
        "considering file '<yellow>deploy.yaml</yellow>' for target: <green></green>\n",
        "using file '<green>deploy.yaml</green>' for target: <green></green>\n",
        APPLY_LOG,
    ]


def test_unreadable_file(tmp_path, messages):
    (_k8s(tmp_path) / "deploy.yaml").mkdir()
    client = FakeKubectl()
    with pytest.raises(IsADirectoryError):
        deploy(str(tmp_path), "image", "registryUrl", "20190513-17:22:36", client, _args())
    assert messages() == [
        "considering file '<yellow>deploy.yaml</yellow>' for target: <green></green>\n",
        "using file '<green>deploy.yaml</green>' for target: <green></green>\n",
    ]


def test_file_broken_symlink(tmp_path, messages):
    k8s = _k8s(tmp_path)
    real = k8s / "ns.yaml"
    real.write_text("test")
    os.symlink(real, k8s / "deploy.yaml")
    real.unlink()
    client = FakeKubectl()
    with pytest.raises(FileNotFoundError):
        deploy(str(tmp_path), "image", "registryUrl", "20190513-17:22:36", client, _args())
    assert messages() == [
        "considering file '<yellow>deploy.yaml</yellow>' for target: <green></green>\n",
        "using file '<green>deploy.yaml</green>' for target: <green></green>\n",
    ]


def test_env_specific_files_with_suffix(tmp_path, messages):
    (_k8s(tmp_path) / "ns-dummy.yaml").write_text(NAMESPACE_YAML)
    client = FakeKubectl()
    deploy(str(tmp_path), "image", "registryUrl", "20190513-17:22:36", client, _args(target="dummy"))
    assert client.inputs == [NAMESPACE_YAML]
    assert messages() == [
        "considering file '<yellow>ns-dummy.yaml</yellow>' for target: <green>dummy</green>\n",
        "using file '<green>ns-dummy.yaml</green>' for target: <green>dummy</green>\n",
        APPLY_LOG,
    ]


def test_env_specific_files(tmp_path, messages):
    k8s = _k8s(tmp_path)
    (k8s / "prod").mkdir()
    (k8s / "ns-dummy.yaml").write_text("dummy yaml content")
    (k8s / "ns-prod.yaml").write_text("prod content")
    (k8s / "other-dummy.sh").write_text("dummy script content")
    client = FakeKubectl()
    deploy(str(tmp_path), "image", "registryUrl", "20190513-17:22:36", client, _args(target="prod"))
    assert client.inputs == ["prod content"]
    assert messages() == [
        "considering file '<yellow>ns-dummy.yaml</yellow>' for target: <green>prod</green>\n",
        "not using file '<red>ns-dummy.yaml</red>' for target: <green>prod</green>\n",
        "considering file '<yellow>ns-prod.yaml</yellow>' for target: <green>prod</green>\n",
        "using file '<green>ns-prod.yaml</green>' for target: <green>prod</green>\n",
        "considering script '<yellow>other-dummy.sh</yellow>' for target: <green>prod</green>\n",
        "not using script '<red>other-dummy.sh</red>' for target: <green>prod</green>\n",
        "trying to apply: \n---\nprod content\n---\n",
    ]


def test_ignore_empty_files(tmp_path, messages):
    k8s = _k8s(tmp_path)
    (k8s / "prod").mkdir()
    (k8s / "ns-dummy.yaml").write_text("dummy yaml content")
    (k8s / "ns-prod.yaml").write_text("")
    (k8s / "other-dummy.sh").write_text("dummy script content")
    client = FakeKubectl()
    deploy(str(tmp_path), "image", "registryUrl", "20190513-17:22:36", client, _args(target="prod"))
    assert client.inputs == []
    assert messages() == [
        "considering file '<yellow>ns-dummy.yaml</yellow>' for target: <green>prod</green>\n",
        "not using file '<red>ns-dummy.yaml</red>' for target: <green>prod</green>\n",
        "considering file '<yellow>ns-prod.yaml</yellow>' for target: <green>prod</green>\n",
        "using file '<green>ns-prod.yaml</green>' for target: <green>prod</green>\n",
        "considering script '<yellow>other-dummy.sh</yellow>' for target: <green>prod</green>\n",
        "not using script '<red>other-dummy.sh</red>' for target: <green>prod</green>\n",
        "ignoring empty file '<yellow>ns-prod.yaml</yellow>'\n",
    ]


def _script(path, body, mode=0o777):
    path.write_text(f"#!/bin/sh\n{body}\n")
    path.chmod(mode)


def test_script_execution_name_suffix(tmp_path, messages):
    k8s = _k8s(tmp_path)
    (k8s / "prod").mkdir()
    _script(k8s / "setup-prod.sh", 'echo "Prod-script with suffix"')
    client = FakeKubectl()
    deploy(str(tmp_path), "image", "registryUrl", "20190513-17:22:36", client, _args(target="prod"))
    assert client.inputs == []
    assert messages() == [
        "considering script '<yellow>setup-prod.sh</yellow>' for target: <green>prod</green>\n",
        "using script '<green>setup-prod.sh</green>' for target: <green>prod</green>\n",
        "Prod-script with suffix\n",
    ]


def test_script_execution_no_execute_of_common_if_specific_exists(tmp_path, messages):
    k8s = _k8s(tmp_path)
    (k8s / "prod").mkdir()
    _script(k8s / "setup.sh", 'echo "Script without suffix should not execute"')
    _script(k8s / "setup-prod.sh", 'echo "Prod-script with suffix"')
    client = FakeKubectl()
    deploy(str(tmp_path), "image", "registryUrl", "20190513-17:22:36", client, _args(target="prod"))
    assert client.inputs == []
    assert messages() == [
        "considering script '<yellow>setup-prod.sh</yellow>' for target: <green>prod</green>\n",
        "considering script '<yellow>setup.sh</yellow>' for target: <green>prod</green>\n",
        "using script '<green>setup-prod.sh</green>' for target: <green>prod</green>\n",
        "not using script '<red>setup.sh</red>' for target: <green>prod</green>\n",
        "Prod-script with suffix\n",
    ]


def test_script_execution_not_executable(tmp_path):
    k8s = _k8s(tmp_path)
    (k8s / "prod").mkdir()
    _script(k8s / "setup-prod.sh", 'echo "Prod-script with suffix"', mode=0o666)
    client = FakeKubectl()
    with pytest.raises(PermissionError):
        deploy(str(tmp_path), "image", "registryUrl", "20190513-17:22:36", client, _args(target="prod"))


def test_script_failing_raises(tmp_path):
    k8s = _k8s(tmp_path)
    _script(k8s / "setup-prod.sh", "exit 3")
    client = FakeKubectl()
    with pytest.raises(DeployError, match="exit status 3"):
        deploy(str(tmp_path), "image", "registryUrl", "20190513-17:22:36", client, _args(target="prod"))


def test_error_from_apply(tmp_path, messages):
    (_k8s(tmp_path) / "deploy.yaml").write_text(NAMESPACE_YAML)
    client = FakeKubectl(responses=[RuntimeError("apply failed")])
    with pytest.raises(RuntimeError, match="apply failed"):
        deploy(str(tmp_path), "image", "registryUrl", "20190513-17:22:36", client, _args())
    assert messages() == [
        "considering file '<yellow>deploy.yaml</yellow>' for target: <green></green>\n",
        "using file '<green>deploy.yaml</green>' for target: <green></green>\n",
        APPLY_LOG,
    ]


def test_replacing_commit_and_timestamp_and_image(tmp_path, messages):
    content = """
apiVersion: v1
kind: Namespace
metadata:
  name: dummy
  commit: ${COMMIT}
  image: ${IMAGE}
  timestamp: ${TIMESTAMP}
"""
    (_k8s(tmp_path) / "deploy.yaml").write_text(content)
    client = FakeKubectl()
    deploy(str(tmp_path), "registryUrl", "image", "2019-05-13T17:22:36Z01:00", client, _args(target="test"))
    expected = """
apiVersion: v1
kind: Namespace
metadata:
  name: dummy
  commit: abc123
  image: registryUrl/image:abc123
  timestamp: 2019-05-13T17:22:36Z01:00
"""
    assert client.inputs == [expected]
    assert messages() == [
        "considering file '<yellow>deploy.yaml</yellow>' for target: <green>test</green>\n",
        "using file '<green>deploy.yaml</green>' for target: <green>test</green>\n",
        f"trying to apply: \n---\n{expected}\n---\n",
    ]


@pytest.mark.parametrize("status", [False])
def test_rollout_failure(tmp_path, messages, status):
    (_k8s(tmp_path) / "deploy.yaml").write_text(NAMESPACE_YAML)
    client = FakeKubectl(deployment=True, status=status)
    with pytest.raises(DeployError, match="failed to rollout"):
        deploy(str(tmp_path), "image", "registryUrl", "20190513-17:22:36", client, _args())
    assert client.inputs == [NAMESPACE_YAML]
    assert messages() == [
        "considering file '<yellow>deploy.yaml</yellow>' for target: <green></green>\n",
        "using file '<green>deploy.yaml</green>' for target: <green></green>\n",
        APPLY_LOG,
        "Rollout failed. Fetching events.\n",
        "Deployment events",
        "Pod events",
    ]


def test_rollout_success(tmp_path, messages):
    (_k8s(tmp_path) / "deploy.yaml").write_text(NAMESPACE_YAML)
    client = FakeKubectl(deployment=True, status=True)
    deploy(str(tmp_path), "image", "registryUrl", "20190513-17:22:36", client, _args())
    assert client.inputs == [NAMESPACE_YAML]
    assert "Rollout failed. Fetching events.\n" not in messages()


def test_no_wait(tmp_path, messages):
    (_k8s(tmp_path) / "deploy.yaml").write_text(NAMESPACE_YAML)
    client = FakeKubectl(deployment=True)
    deploy(str(tmp_path), "image", "registryUrl", "20190513-17:22:36", client, _args(no_wait=True, timeout=""))
    assert client.inputs == [NAMESPACE_YAML]
    assert messages() == [
        "considering file '<yellow>deploy.yaml</yellow>' for target: <green></green>\n",
        "using file '<green>deploy.yaml</green>' for target: <green></green>\n",
        APPLY_LOG,
        "Not waiting for deployment to succeed\n",
    ]


def test_parser_defaults(tmp_path):
    namespace = parse_args(str(tmp_path), ["dummy"], VersionInfo(name="deploy"), build_parser())
    assert namespace.target == "dummy"
    assert namespace.context == ""
    assert namespace.namespace == ""
    assert namespace.tag == ""
    assert namespace.timeout == "2m"
    assert namespace.no_wait is False


def test_parser_options(tmp_path):
    argv = ["--context", "other", "-n", "dev", "--tag", "123", "-t", "20s", "--no-wait", "dummy"]
    namespace = parse_args(str(tmp_path), argv, VersionInfo(name="deploy"), build_parser())
    assert (namespace.context, namespace.namespace, namespace.tag, namespace.timeout) == (
        "other",
        "dev",
        "123",
        "20s",
    )
    assert namespace.no_wait is True


def test_parser_missing_target(tmp_path):
    with pytest.raises(ValueError):
        parse_args(str(tmp_path), [], VersionInfo(name="deploy"), build_parser())


class RecordingRunner:
    def __init__(self, returncode=0, stdout="", stderr=""):
        self.calls = []
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

    def __call__(self, args, **kwargs):
        self.calls.append((args, kwargs.get("input")))
        return subprocess.CompletedProcess(args, self.returncode, self.stdout, self.stderr)


def test_kubectl_apply_command():
    runner = RecordingRunner()
    client = KubectlClient(Target(context="local", namespace="dev"), runner=runner)
    client.apply("content")
    assert runner.calls == [
        (["kubectl", "--context", "local", "--namespace", "dev", "apply", "-f", "-"], "content")
    ]


def test_kubectl_apply_failure():
    runner = RecordingRunner(returncode=1, stderr="boom\n")
    client = KubectlClient(Target(context="local"), runner=runner)
    with pytest.raises(DeployError, match="boom"):
        client.apply("content")


def test_kubectl_rollout_status_and_exists():
    runner = RecordingRunner(returncode=0)
    client = KubectlClient(Target(kubeconfig="/tmp/kube"), runner=runner)
    assert client.deployment_exists("app") is True
    assert client.rollout_status("app", "2m") is True
    assert runner.calls[1][0] == [
        "kubectl",
        "--kubeconfig",
        "/tmp/kube",
        "rollout",
        "status",
        "deployment",
        "app",
        "--timeout=2m",
    ]


def test_kubectl_missing_deployment():
    client = KubectlClient(Target(), runner=RecordingRunner(returncode=1))
    assert client.deployment_exists("app") is False
    assert client.rollout_status("app", "1s") is False


def test_kubectl_events():
    runner = RecordingRunner(stdout="events here")
    client = KubectlClient(Target(), runner=runner)
    assert client.deployment_events("app") == "events here"
    assert client.pod_events("app") == "events here"
    assert runner.calls[1][0] == ["kubectl", "describe", "pods", "-l", "app=app"]