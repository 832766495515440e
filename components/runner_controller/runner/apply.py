"""Create or update the children of a runner.

Each applier compares only the fields that it manages. Everything else on the
observed object (status, resource version, fields defaulted by the API server)
is ignored. Updates are sent as JSON patches that also pin the resource
version that was read, so a concurrent write fails with an
`UpdateConflictError` instead of being overwritten. The runner label of every
child is kept in place as well, the garbage collector finds children by it.
"""

from __future__ import annotations

import base64
from abc import ABC, abstractmethod
from typing import Any, ClassVar

from runner_controller.app_config import logging
from runner_controller.k8s.client_interfaces import K8sClient
from runner_controller.k8s.constants import CONFIG_MAP_GVK, DEPLOYMENT_GVK, SECRET_GVK
from runner_controller.k8s.events import EventSink
from runner_controller.k8s.models import GVK, EventType, K8sObject, K8sObjectMeta, set_controller_reference
from runner_controller.runner import constants
from runner_controller.runner.crs import Runner
from runner_controller.runner.models import ApplyAction, ApplyResult, Manifest

logger = logging.getLogger(__name__)


def _is_empty(value: Any) -> bool:
    return value is None or value == {} or value == []


def prune(value: Any) -> Any:
    """Drop `None`, empty dicts and empty lists from mappings, recursively.

    The API server drops or fills in empty values on its own, they carry no meaning when comparing.
    """
    if isinstance(value, dict):
        pruned = {k: prune(v) for k, v in value.items()}
        return {k: v for k, v in pruned.items() if not _is_empty(v)}
    if isinstance(value, list):
        return [prune(v) for v in value]
    return value


def semantically_equal(observed: Any, desired: Any) -> bool:
    """Deep equality of two values ignoring empty values, at the top level too."""
    return bool(prune({"value": observed}) == prune({"value": desired}))


def encode_string_data(string_data: dict[str, str]) -> dict[str, str]:
    """Encode `stringData` the way the API server stores it in `data`."""
    return {k: base64.b64encode(v.encode()).decode() for k, v in string_data.items()}


def _labels(manifest: Manifest) -> dict[str, str]:
    return manifest.get("metadata", {}).get("labels") or {}


class ChildApplier(ABC):
    """Applies one kind of child object of a runner."""

    gvk: ClassVar[GVK]
    description: ClassVar[str]

    def __init__(self, client: K8sClient, events: EventSink) -> None:
        self.client = client
        self.events = events

    @abstractmethod
    def differs(self, observed: Manifest, desired: Manifest) -> bool:
        """Whether the managed fields of the observed object differ from the desired ones."""
        ...

    @abstractmethod
    def patch_operations(self, observed: Manifest, desired: Manifest) -> list[dict[str, Any]]:
        """The JSON patch operations replacing the managed fields of the observed object."""
        ...

    async def apply(self, runner: Runner, desired: Manifest) -> ApplyResult:
        """Create the object if it is missing or update it if its managed fields drifted."""
        name = desired["metadata"]["name"]
        meta = K8sObjectMeta(name=name, namespace=runner.metadata.namespace, gvk=self.gvk)
        owner = runner.owner_manifest()
        observed = await self.client.get(meta)

        if observed is None:
            obj = K8sObject.from_manifest(set_controller_reference(owner, desired), self.gvk)
            created = await self.client.create(obj, refresh=False)
            await self.events.record(
                owner, EventType.normal, constants.REASON_CREATED, f'Created {self.description}: "{name}"'
            )
            logger.debug(f"Created {self.gvk.kind} {meta.namespace}/{name}")
            return ApplyResult(ApplyAction.created, created)

        current = observed.manifest.to_dict()
        labels = _labels(current)
        relabel = any(labels.get(k) != v for k, v in _labels(desired).items())
        if not relabel and not self.differs(current, desired):
            return ApplyResult(ApplyAction.unchanged, observed)

        patch = [
            *self.patch_operations(current, desired),
            {"op": "add", "path": "/metadata/labels", "value": {**labels, **_labels(desired)}},
            {"op": "replace", "path": "/metadata/resourceVersion", "value": observed.resource_version},
        ]
        updated = await self.client.patch(meta, patch)
        await self.events.record(
            owner, EventType.normal, constants.REASON_UPDATED, f'Updated {self.description}: "{name}"'
        )
        logger.debug(f"Updated {self.gvk.kind} {meta.namespace}/{name}")
        return ApplyResult(ApplyAction.updated, updated)


class SecretApplier(ChildApplier):
    """Applies the token secret, managing its data and its controller annotations."""

    gvk = SECRET_GVK
    description = "token secret"

    @staticmethod
    def _desired_data(desired: Manifest) -> dict[str, str]:
        return {**(desired.get("data") or {}), **encode_string_data(desired.get("stringData") or {})}

    @staticmethod
    def _annotations(manifest: Manifest) -> dict[str, str]:
        return manifest.get("metadata", {}).get("annotations") or {}

    def differs(self, observed: Manifest, desired: Manifest) -> bool:
        """Compare the stored data and the annotations set by the controller."""
        desired_annotations = self._annotations(desired)
        observed_annotations = self._annotations(observed)
        managed = {k: observed_annotations.get(k) for k in desired_annotations}
        return not (
            semantically_equal(observed.get("data"), self._desired_data(desired)) and managed == desired_annotations
        )

    def patch_operations(self, observed: Manifest, desired: Manifest) -> list[dict[str, Any]]:
        """Replace the data and merge the managed annotations."""
        annotations = {**self._annotations(observed), **self._annotations(desired)}
        return [
            {"op": "add", "path": "/metadata/annotations", "value": annotations},
            {"op": "add", "path": "/data", "value": self._desired_data(desired)},
        ]


class ConfigMapApplier(ChildApplier):
    """Applies the workspace config map."""

    gvk = CONFIG_MAP_GVK
    description = "workspace config map"

    def differs(self, observed: Manifest, desired: Manifest) -> bool:
        """Compare the text and the binary payload."""
        return not (
            semantically_equal(observed.get("data"), desired.get("data"))
            and semantically_equal(observed.get("binaryData"), desired.get("binaryData"))
        )

    def patch_operations(self, observed: Manifest, desired: Manifest) -> list[dict[str, Any]]:
        """Replace both payloads, dropping a binary payload the desired object does not have."""
        ops: list[dict[str, Any]] = [{"op": "add", "path": "/data", "value": desired.get("data") or {}}]
        if desired.get("binaryData"):
            ops.append({"op": "add", "path": "/binaryData", "value": desired["binaryData"]})
        elif "binaryData" in observed:
            ops.append({"op": "remove", "path": "/binaryData"})
        return ops


class DeploymentApplier(ChildApplier):
    """Applies the runner deployment, replacing its pod template wholesale on drift."""

    gvk = DEPLOYMENT_GVK
    description = "deployment"

    def differs(self, observed: Manifest, desired: Manifest) -> bool:
        """Compare the pod templates."""
        return not semantically_equal(observed.get("spec", {}).get("template"), desired["spec"]["template"])

    def patch_operations(self, observed: Manifest, desired: Manifest) -> list[dict[str, Any]]:
        """Replace the pod template."""
        return [{"op": "add", "path": "/spec/template", "value": desired["spec"]["template"]}]
