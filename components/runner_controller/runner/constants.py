"""Constant values used when reconciling runners."""

from datetime import timedelta
from typing import Final

EXPIRES_AT_ANNOTATION: Final[str] = "github-actions-runner.kaidotio.github.io/expiresAt"
RUNNER_LABEL: Final[str] = "github-actions-runner.kaidotio.github.io/runner"
"""Label carrying the name of the runner on every child, used to list the children of a runner."""
TOKEN_KEY: Final[str] = "GITHUB_TOKEN"

WORKSPACE_SUFFIX: Final[str] = "-workspace"
DEPLOYMENT_SUFFIX: Final[str] = "-runner"
DOCKERFILE_KEY: Final[str] = "Dockerfile"
WORKSPACE_VOLUME: Final[str] = "workspace"

BUILDER_CONTAINER: Final[str] = "kaniko"
RUNNER_CONTAINER: Final[str] = "runner"
EXPORTER_CONTAINER: Final[str] = "exporter"

RUNNER_UID: Final[int] = 60000
METRICS_PORT: Final[int] = 9090
EXPORTER_API_PORT: Final[int] = 8000
DEFAULT_BUILDER_MEMORY: Final[str] = "4Gi"

RENEWAL_MARGIN: Final[timedelta] = timedelta(minutes=1)
CONFLICT_REQUEUE: Final[timedelta] = timedelta(seconds=1)

RUNNER_RELEASE_URL: Final[str] = (
    "https://github.com/kaidotdev/github-actions-runner-controller/releases/download/"
    "v{version}/runner_{version}_linux_amd64"
)

# event reasons
REASON_CREATED: Final[str] = "SuccessfulCreated"
REASON_UPDATED: Final[str] = "SuccessfulUpdated"
REASON_DELETED: Final[str] = "SuccessfulDeleted"
REASON_FAILED: Final[str] = "FailedReconcile"
