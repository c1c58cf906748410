"""CI detection, layered configuration, Docker tag helpers and Kubernetes deployment."""

__version__ = "0.1.0"