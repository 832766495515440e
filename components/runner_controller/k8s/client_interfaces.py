"""Required interfaces for k8s clients."""

from __future__ import annotations

from collections.abc import AsyncIterable
from typing import Any, Protocol

from runner_controller.k8s.models import DeletePropagationPolicy, K8sObject, K8sObjectFilter, K8sObjectMeta


class K8sClient(Protocol):
    """Methods to manipulate resources on a Kubernetes cluster."""

    async def create(self, obj: K8sObject, refresh: bool) -> K8sObject:
        """Create the k8s object.

        Raises a `ConflictError` if the object already exists.
        """
        ...

    async def patch(self, meta: K8sObjectMeta, patch: dict[str, Any] | list[dict[str, Any]]) -> K8sObject:
        """Patch a k8s object.

        If the patch is a list we assume that we have a rfc6902 json patch like
        `[{ "op": "add", "path": "/a/b/c", "value": [ "foo", "bar" ] }]`.
        If the patch is a dictionary then it is considered to be a rfc7386 json merge patch.
        A patch that sets `/metadata/resourceVersion` to a stale value fails with an `UpdateConflictError`.
        """
        ...

    async def delete(
        self, meta: K8sObjectMeta, propagation_policy: DeletePropagationPolicy = DeletePropagationPolicy.background
    ) -> None:
        """Delete a k8s object."""
        ...

    async def get(self, meta: K8sObjectMeta) -> K8sObject | None:
        """Get a specific k8s object, None is returned if the object does not exist."""
        ...

    def list(self, _filter: K8sObjectFilter) -> AsyncIterable[K8sObject]:
        """List all k8s objects."""
        ...
