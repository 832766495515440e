"""Configurations.

All controller-wide settings (registry hosts, feature flags, image names and
pinned versions) live in a single `ControllerConfig` value. It is created once
at startup and handed to the builder and the reconciler, nothing reads the
environment after that.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from runner_controller import errors

DEFAULT_KANIKO_IMAGE = "gcr.io/kaniko-project/executor:latest"
DEFAULT_GITHUB_API_URL = "https://api.github.com"


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() == "true"


def _required(name: str) -> str:
    value = os.environ.get(name, "").strip()
    if value == "":
        raise errors.ConfigurationError(message=f"The environment variable {name} has to be specified.")
    return value


@dataclass
class GitHubAppConfig:
    """Configuration values for the GitHub App used to mint installation tokens."""

    client_id: str = ""
    installation_id: str = ""
    private_key: str = field(default="", repr=False)
    api_url: str = DEFAULT_GITHUB_API_URL

    @property
    def enabled(self) -> bool:
        """Whether all values required to issue installation tokens are present."""
        return self.client_id != "" and self.installation_id != "" and self.private_key != ""

    @classmethod
    def from_env(cls) -> GitHubAppConfig:
        """Load config from environment values."""
        private_key = os.environ.get("GITHUB_APP_PRIVATE_KEY", "")
        if private_key != "" and "\n" not in private_key:
            # keys passed through a single line env var usually carry escaped newlines
            private_key = private_key.replace("\\n", "\n")
        api_url = os.environ.get("GITHUB_API_URL", DEFAULT_GITHUB_API_URL).rstrip("/")
        return cls(
            client_id=os.environ.get("GITHUB_APP_CLIENT_ID", ""),
            installation_id=os.environ.get("GITHUB_APP_INSTALLATION_ID", ""),
            private_key=private_key,
            api_url=api_url,
        )


@dataclass
class ImagesConfig:
    """Registries and images used in the generated workloads."""

    push_registry_host: str
    pull_registry_host: str
    kaniko_image: str = DEFAULT_KANIKO_IMAGE
    exporter_image: str = ""

    @classmethod
    def from_env(cls) -> ImagesConfig:
        """Load config from environment values."""
        return cls(
            push_registry_host=_required("PUSH_REGISTRY_HOST"),
            pull_registry_host=_required("PULL_REGISTRY_HOST"),
            kaniko_image=os.environ.get("KANIKO_IMAGE", DEFAULT_KANIKO_IMAGE),
            exporter_image=os.environ.get("EXPORTER_IMAGE", ""),
        )


@dataclass
class ControllerConfig:
    """Configuration of the runner controller."""

    images: ImagesConfig
    binary_version: str
    runner_version: str
    github_app: GitHubAppConfig = field(default_factory=GitHubAppConfig)
    enable_runner_metrics: bool = False
    disable_update: bool = False
    namespace: str | None = None

    def __post_init__(self) -> None:
        if self.enable_runner_metrics and self.images.exporter_image == "":
            raise errors.ConfigurationError(message="An exporter image is required when runner metrics are enabled.")

    @classmethod
    def from_env(cls) -> ControllerConfig:
        """Create a config from environment variables."""
        return cls(
            images=ImagesConfig.from_env(),
            binary_version=_required("BINARY_VERSION"),
            runner_version=_required("RUNNER_VERSION"),
            github_app=GitHubAppConfig.from_env(),
            enable_runner_metrics=_env_flag("ENABLE_RUNNER_METRICS"),
            disable_update=_env_flag("DISABLE_UPDATE"),
            namespace=os.environ.get("K8S_NAMESPACE") or None,
        )
