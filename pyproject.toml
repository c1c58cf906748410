[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "buildtools"
version = "0.1.0"
description = "Build and deployment helpers: CI detection, layered .buildtools.yaml configuration, Docker tag rules and Kubernetes manifest deployment"
requires-python = ">=3.10"
dependencies = [
    "pyyaml",
]
keywords = [
    "ci",
    "docker",
    "kubernetes",
    "kubectl",
    "deploy",
    "build",
    "configuration",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Build Tools",
    "Topic :: System :: Software Distribution",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["buildtools"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
