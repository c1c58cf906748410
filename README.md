# buildtools

A library of helpers for building and deploying container images from a CI
pipeline: it works out which CI system a build runs under, reads a layered
`.buildtools.yaml` configuration, applies Docker's rules for image tags,
picks the Kubernetes manifests and scripts meant for a deployment target and
applies them with `kubectl`.

Requires Python 3.10 or later and PyYAML.

## Modules

### `buildtools.ci`

- `Azure`, `Buildkite`, `Github`, `Gitlab` and `TeamCity` describe a CI
  environment. `CI.from_env(environ)` builds one from the environment
  variables that system sets (for example `CI_PROJECT_NAME`,
  `CI_COMMIT_SHA` and `CI_COMMIT_REF_NAME` for Gitlab).
- Each has `name()`, `build_name()` (lower case; the `image_name` field
  overrides it, and the current directory's name is the fallback),
  `branch()`, `commit()`, `branch_replace_slash()` and `configured()`.
  Branch and commit fall back to the attached `VCS` when the environment
  does not give them. `Github` strips `/home/runner/work/` from the build
  name and `refs/heads/` or `refs/tags/` from the branch.
- `NoCI` is used when no CI is configured; branch and commit come from the
  `VCS` alone.
- `VCS` is the base for version-control information; the base class
  answers `"none"` with an empty branch and commit.
- `branch_replace_slash("feature/first test")` gives `"feature_first_test"`;
  `is_valid(ci)` is true when a commit or a branch is known.

### `buildtools.config`

- `load(directory, vcs=None, environ=None)` returns a `Config`. When
  `BUILDTOOLS_CONTENT` is set, its content (base64, or plain YAML when it is
  not valid base64) is used; otherwise every `.buildtools.yaml` from
  `directory` up to the root is merged, the nearest file taking precedence.
  Values from the CI environment variables and `IMAGE_NAME` are read first.
- `unmarshal_strict(content)` parses configuration YAML and raises
  `ConfigError` for unknown keys and wrongly typed values. A configuration
  with more than one registry section filled in is also a `ConfigError`.
- `Config.current_ci()` returns the first configured CI (Azure, Buildkite,
  Gitlab, TeamCity, Github, in that order) or a `NoCI`.
  `Config.current_vcs()` returns the `VCS` passed to `load`.
  `Config.current_target(name)` and `Config.current_gitops(name)` return
  copies of a `Target` or `Gitops` entry, raising `ConfigError` when there is
  none. `Config.dump()` gives a YAML summary of the CI, VCS, registry and
  targets.
- `init_empty_config(environ)` builds a `Config` from environment variables
  alone.

### `buildtools.docker`

- `slugify_tag(tag)` removes characters Docker does not allow in tags and
  leading `.` and `-`, and truncates to 128 characters.
- `tag(registry, image, tag)` gives `registry/image:<slugified tag>`.
- `parse_dockerignore(directory, dockerfile)` returns `["k8s"]` followed by
  the non-empty lines of `.dockerignore`, leaving out the Dockerfile's name.
- `find_stages(content)` lists the names of `FROM ... AS name` stages.

### `buildtools.targetfiles`

- `find_files_for_target(directory, target)` returns the `.yaml` files to
  use: `name-<target>.yaml` replaces `name.yaml`, and files made for other
  targets are left out.
- `find_scripts_for_target(directory, target)` returns only the
  `name-<target>.sh` scripts.

### `buildtools.deploy`

- `deploy(directory, registry_url, build_name, timestamp, client, deploy_args)`
  substitutes `${COMMIT}`, `${TIMESTAMP}` and `${IMAGE}` in each selected
  manifest under `directory/k8s`, skips empty files, applies the rest through
  `client`, runs the target's scripts, and then, unless
  `deploy_args.no_wait` is set, waits for the rollout of `build_name`. A
  failed rollout logs the deployment and pod events and raises `DeployError`.
- `DeployArgs` holds `target`, `context`, `namespace`, `tag`, `timeout`
  (default `"2m"`) and `no_wait`.
- `KubectlClient(target)` runs `kubectl` with the target's kubeconfig,
  context and namespace. Any object with the same `apply`,
  `deployment_exists`, `rollout_status`, `deployment_events` and
  `pod_events` methods can stand in for it.
- `build_parser()` returns an `argparse` parser for the deploy options.

### `buildtools.args` and `buildtools.cli`

- `parse_args(directory, argv, info, parser)` adds `--version`,
  `-v/--verbose` and `--config` to an `argparse` parser and parses `argv`,
  sending help text to the log. It raises `Done` once `--help`, `--version`
  or `--config` has done its work. `VersionInfo` carries a command's name,
  description, version, commit and date.
- `render_markup(text)` turns tags such as `<green>...</green>` into
  terminal colours; `MarkupHandler` is a logging handler that writes
  rendered messages; `LogWriter` logs each line written to it;
  `is_verbose(logger)` tells whether debug messages get through.

## Example

```python
from buildtools.config import load
from buildtools.deploy import DeployArgs, KubectlClient, deploy

cfg = load(".")
ci = cfg.current_ci()
target = cfg.current_target("prod")

deploy(
    ".",
    "registry.example.com/team",
    ci.build_name(),
    "2024-01-01T00:00:00Z",
    KubectlClient(target),
    DeployArgs(target="prod", tag=ci.commit()),
)
```

## Configuration file

```yaml
registry:
  dockerhub:
    namespace: myteam
targets:
  local:
    context: docker-desktop
  prod:
    context: production
    namespace: web
gitops:
  prod:
    url: git@example.com:team/deployments.git
    path: web
```

## What it does not do

- There are no command-line programs; the functions are meant to be called
  from your own scripts. `deploy` does not choose the tag, context or
  registry URL itself: the caller passes them in.
- It does not inspect a Git repository. Branch and commit come from CI
  environment variables, or from a `VCS` object you pass to `load`.
- Registry sections are kept as plain settings: there is no registry login,
  image build or push, and no computing of registry URLs.
- Promoting descriptors to a GitOps repository is not provided; the
  `gitops` section is only read and returned.