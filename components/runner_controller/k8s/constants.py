"""Constant values for k8s."""

from __future__ import annotations

from typing import Final

from runner_controller.k8s.models import GVK

RUNNER_GROUP: Final[str] = "github-actions-runner.kaidotio.github.io"

RUNNER_GVK: Final[GVK] = GVK(group=RUNNER_GROUP, version="v1", kind="Runner")
SECRET_GVK: Final[GVK] = GVK(version="v1", kind="Secret")
CONFIG_MAP_GVK: Final[GVK] = GVK(version="v1", kind="ConfigMap")
DEPLOYMENT_GVK: Final[GVK] = GVK(group="apps", version="v1", kind="Deployment")
EVENT_GVK: Final[GVK] = GVK(version="v1", kind="Event")

CONTROLLER_COMPONENT: Final[str] = "runner-controller"
"""The name reported as the source of the events written by the controller."""
