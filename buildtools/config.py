"""Loading and merging the ``.buildtools.yaml`` configuration."""

from __future__ import annotations

import base64
import binascii
import dataclasses
import logging
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from buildtools.ci import CI, VCS, Azure, Buildkite, Github, Gitlab, NoCI, TeamCity

logger = logging.getLogger(__name__)

ENV_BUILDTOOLS_CONTENT = "BUILDTOOLS_CONTENT"
CONFIG_FILE_NAME = ".buildtools.yaml"

_CI_TYPES: dict[str, type[CI]] = {
    "azure": Azure,
    "buildkite": Buildkite,
    "gitlab": Gitlab,
    "github": Github,
    "teamcity": TeamCity,
}
# The order in which CI environments are tried when looking for the current one.
_CI_ORDER = ("azure", "buildkite", "gitlab", "teamcity", "github")
_CI_FIELDS = {
    "cicommit": "ci_commit",
    "cibuildname": "ci_build_name",
    "cibranchname": "ci_branch_name",
}
_REGISTRY_TYPES = {
    "dockerhub": "Dockerhub",
    "ecr": "ECR",
    "github": "Github",
    "gitlab": "Gitlab",
    "quay": "Quay",
    "gcr": "GCR",
}


class ConfigError(ValueError):
    """The configuration could not be parsed or is inconsistent."""


@dataclass
class Target:
    """A deployment target: a Kubernetes context and optional namespace."""

    context: str = ""
    namespace: str = ""
    kubeconfig: str = ""


@dataclass
class Git:
    """Identity used when committing to a Git repository."""

    name: str = ""
    email: str = ""
    key: str = ""


@dataclass
class Gitops:
    """Where promoted deployment descriptors are pushed."""

    url: str = ""
    path: str = ""


def _default_ci() -> dict[str, CI]:
    return {name: cls() for name, cls in _CI_TYPES.items()}


def _default_registries() -> dict[str, dict[str, str]]:
    return {name: {} for name in _REGISTRY_TYPES}


@dataclass
class Config:
    """The merged configuration for a build."""

    ci: dict[str, CI] = field(default_factory=_default_ci)
    image_name: str = ""
    registries: dict[str, dict[str, str]] = field(default_factory=_default_registries)
    targets: dict[str, Target] = field(default_factory=dict)
    git: Git = field(default_factory=Git)
    gitops: dict[str, Gitops] = field(default_factory=dict)
    vcs: VCS = field(default_factory=VCS)

    @property
    def available_ci(self) -> list[CI]:
        return [self.ci[name] for name in _CI_ORDER]

    def current_vcs(self) -> VCS:
        return self.vcs

    def current_ci(self) -> CI:
        """The first configured CI environment, or a :class:`NoCI` fallback."""
        for candidate in self.available_ci:
            if candidate.configured():
                candidate.vcs = self.vcs
                candidate.image_name = self.image_name
                return candidate
        return NoCI(vcs=self.vcs, image_name=self.image_name)

    def _current_registry(self) -> Optional[dict[str, str]]:
        for settings in self.registries.values():
            if _registry_configured(settings):
                return settings
        return None

    def current_target(self, target: str) -> Target:
        if target in self.targets:
            return dataclasses.replace(self.targets[target])
        raise ConfigError(f"no target matching {target} found")

    def current_gitops(self, target: str) -> Gitops:
        if target in self.gitops:
            return dataclasses.replace(self.gitops[target])
        raise ConfigError(f"no gitops matching {target} found")

    def dump(self) -> str:
        """A YAML summary of the current CI, VCS, registry and targets."""
        targets = {}
        for name, target in self.targets.items():
            entry = {"context": target.context}
            if target.namespace:
                entry["namespace"] = target.namespace
            if target.kubeconfig:
                entry["kubeconfig"] = target.kubeconfig
            targets[name] = entry
        summary = {
            "ci": self.current_ci().name(),
            "vcs": self.current_vcs().name(),
            "registry": dict(self._current_registry() or {}),
            "targets": targets,
        }
        return yaml.safe_dump(summary, sort_keys=False, default_flow_style=False, indent=4)


def init_empty_config(environ: Optional[Mapping[str, str]] = None) -> Config:
    """A configuration holding only what the environment variables provide."""
    env = os.environ if environ is None else environ
    return Config(
        ci={name: cls.from_env(env) for name, cls in _CI_TYPES.items()},
        image_name=env.get("IMAGE_NAME", ""),
    )


def _short_tag(tag: str) -> str:
    prefix = "tag:yaml.org,2002:"
    return "!!" + tag[len(prefix):] if tag.startswith(prefix) else tag


def _is_null(node: yaml.Node) -> bool:
    return isinstance(node, yaml.ScalarNode) and node.tag == "tag:yaml.org,2002:null"


_Decode = Callable[[yaml.Node], Any]


class _Decoder:
    """Strict decoding of a YAML node tree into plain dictionaries."""

    def __init__(self) -> None:
        self.errors: list[str] = []

    def _fail(self, node: yaml.Node, type_name: str) -> None:
        line = node.start_mark.line + 1
        kind = _short_tag(node.tag)
        if isinstance(node, yaml.ScalarNode):
            self.errors.append(f"line {line}: cannot unmarshal {kind} `{node.value}` into {type_name}")
        else:
            self.errors.append(f"line {line}: cannot unmarshal {kind} into {type_name}")

    def string(self, node: yaml.Node) -> Optional[str]:
        if _is_null(node):
            return None
        if isinstance(node, yaml.ScalarNode):
            return node.value
        self._fail(node, "string")
        return None

    def struct(self, node: yaml.Node, type_name: str, fields: Mapping[str, _Decode]) -> Optional[dict]:
        if _is_null(node):
            return None
        if not isinstance(node, yaml.MappingNode):
            self._fail(node, type_name)
            return None
        result = {}
        for key_node, value_node in node.value:
            key = key_node.value
            decode = fields.get(key)
            if decode is None:
                line = key_node.start_mark.line + 1
                self.errors.append(f"line {line}: field {key} not found in type {type_name}")
                continue
            value = decode(value_node)
            if value is not None:
                result[key] = value
        return result

    def mapping(self, node: yaml.Node, type_name: str, decode: _Decode) -> Optional[dict]:
        if _is_null(node):
            return None
        if not isinstance(node, yaml.MappingNode):
            self._fail(node, type_name)
            return None
        result = {}
        for key_node, value_node in node.value:
            if not isinstance(key_node, yaml.ScalarNode):
                self._fail(key_node, "string")
                continue
            value = decode(value_node)
            if value is not None:
                result[key_node.value] = value
        return result

    def _ci_entry(self, type_name: str) -> _Decode:
        return lambda node: self.struct(node, type_name, dict.fromkeys(_CI_FIELDS, self.string))

    def _registry_entry(self, type_name: str) -> _Decode:
        return lambda node: self.mapping(node, type_name, self.string)

    def config(self, node: yaml.Node) -> dict:
        ci_fields: dict[str, _Decode] = {
            key: self._ci_entry(f"ci.{cls.__name__}") for key, cls in _CI_TYPES.items()
        }
        ci_fields["imagename"] = self.string
        registry_fields = {
            key: self._registry_entry(f"registry.{name}") for key, name in _REGISTRY_TYPES.items()
        }

        def target(n: yaml.Node) -> Optional[dict]:
            return self.struct(n, "config.Target", dict.fromkeys(("context", "namespace", "kubeconfig"), self.string))

        def gitops(n: yaml.Node) -> Optional[dict]:
            return self.struct(n, "config.Gitops", dict.fromkeys(("url", "path"), self.string))

        top: dict[str, _Decode] = {
            "vcs": lambda n: self.struct(n, "config.VCSConfig", {}),
            "ci": lambda n: self.struct(n, "config.CIConfig", ci_fields),
            "registry": lambda n: self.struct(n, "config.RegistryConfig", registry_fields),
            "targets": lambda n: self.mapping(n, "map[string]config.Target", target),
            "git": lambda n: self.struct(n, "config.Git", dict.fromkeys(("name", "email", "key"), self.string)),
            "gitops": lambda n: self.mapping(n, "map[string]config.Gitops", gitops),
        }
        return self.struct(node, "config.Config", top) or {}


def unmarshal_strict(content: Union[str, bytes]) -> dict:
    """Parse configuration YAML, rejecting unknown fields and wrongly typed values."""
    try:
        node = next(iter(yaml.compose_all(content, Loader=yaml.SafeLoader)), None)
    except yaml.YAMLError as exc:
        raise ConfigError(f"yaml: {exc}") from exc
    if node is None:
        return {}
    decoder = _Decoder()
    data = decoder.config(node)
    if decoder.errors:
        raise ConfigError("yaml: unmarshal errors:\n  " + "\n  ".join(decoder.errors))
    return data


def _registry_configured(settings: Mapping[str, str]) -> bool:
    return any(settings.values())


def _merge(cfg: Config, data: Mapping[str, Any]) -> None:
    """Fill the values *cfg* does not have yet from *data*."""
    for name, values in data.get("ci", {}).items():
        if name == "imagename":
            if not cfg.image_name:
                cfg.image_name = values
            continue
        entry = cfg.ci[name]
        for key, attr in _CI_FIELDS.items():
            if key in values and not getattr(entry, attr):
                setattr(entry, attr, values[key])

    for name, settings in data.get("registry", {}).items():
        current = cfg.registries[name]
        for key, value in settings.items():
            if not current.get(key):
                current[key] = value

    for name, values in data.get("targets", {}).items():
        cfg.targets.setdefault(name, Target(**values))

    for key, value in data.get("git", {}).items():
        if not getattr(cfg.git, key):
            setattr(cfg.git, key, value)

    for name, values in data.get("gitops", {}).items():
        cfg.gitops.setdefault(name, Gitops(**values))


def _validate(cfg: Config) -> None:
    configured = [name for name, settings in cfg.registries.items() if _registry_configured(settings)]
    if len(configured) > 1:
        raise ConfigError("registry already defined, please check configuration")


def _parse_config(content: Union[str, bytes], cfg: Config) -> None:
    _merge(cfg, unmarshal_strict(content))
    _validate(cfg)


def _config_files(directory: str) -> list[str]:
    """Configuration files from *directory* up to the root, nearest first."""
    parent = os.path.abspath(directory)
    files = []
    while True:
        filename = os.path.join(parent, CONFIG_FILE_NAME)
        if os.path.exists(filename):
            files.append(filename)
        up = os.path.dirname(parent)
        if up == parent:
            return files
        parent = up


def load(directory: str, vcs: Optional[VCS] = None, environ: Optional[Mapping[str, str]] = None) -> Config:
    """Load the configuration for *directory*.

    The content of ``BUILDTOOLS_CONTENT`` (base64 or plain YAML) is used when set;
    otherwise every ``.buildtools.yaml`` from *directory* up to the root is merged,
    nearer files taking precedence.
    """
    env = os.environ if environ is None else environ
    cfg = init_empty_config(env)

    content = env.get(ENV_BUILDTOOLS_CONTENT)
    if content is not None:
        logger.debug("Parsing config from env: %s\n", ENV_BUILDTOOLS_CONTENT)
        try:
            decoded = base64.b64decode(content.replace("\r", "").replace("\n", ""), validate=True)
        except (binascii.Error, ValueError):
            logger.debug("Failed to decode BASE64, falling back to plaintext\n")
            decoded = content.encode("utf-8")
        _parse_config(decoded, cfg)
    else:
        for index, filename in enumerate(_config_files(directory)):
            if index == 0:
                logger.debug("Parsing config from file: <green>'%s'</green>\n", filename)
            else:
                logger.debug("Merging with config from file: <green>'%s'</green>\n", filename)
            _parse_config(Path(filename).read_bytes(), cfg)

    cfg.vcs = vcs if vcs is not None else VCS()
    return cfg