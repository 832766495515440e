"""Models used while reconciling runners."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import StrEnum
from typing import Any

from runner_controller.k8s.models import K8sObject
from runner_controller.runner.crs import SecretKeyRef


@dataclass(frozen=True, kw_only=True)
class EffectiveRunnerSpec:
    """Values resolved for one reconcile pass without touching the runner itself.

    `token_secret_ref` is the secret key the runner reads its token from, either the one declared on the runner
    or the secret issued by the controller when `issue_token` is set.
    """

    token_secret_ref: SecretKeyRef | None
    issue_token: bool
    image_id: str


class ApplyAction(StrEnum):
    """What applying a desired object did."""

    created = "created"
    updated = "updated"
    unchanged = "unchanged"


@dataclass(frozen=True)
class ApplyResult:
    """The outcome of applying a desired object."""

    action: ApplyAction
    object: K8sObject

    @property
    def changed(self) -> bool:
        """Whether the object was written."""
        return self.action != ApplyAction.unchanged


@dataclass(frozen=True)
class ReconcileResult:
    """The result of a reconcile pass, `requeue_after` is None when no new pass is needed."""

    requeue_after: timedelta | None = None

    def merge(self, other: ReconcileResult) -> ReconcileResult:
        """Keep the earliest requested requeue of both results."""
        if self.requeue_after is None:
            return other
        if other.requeue_after is None:
            return self
        return ReconcileResult(requeue_after=min(self.requeue_after, other.requeue_after))


type Manifest = dict[str, Any]