from __future__ import annotations

import base64
import copy
import itertools
from collections.abc import AsyncIterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from box import Box

from runner_controller.errors import errors
from runner_controller.github.models import AccessToken
from runner_controller.k8s.models import (
    GVK,
    DeletePropagationPolicy,
    EventType,
    K8sObject,
    K8sObjectFilter,
    K8sObjectMeta,
)

type Key = tuple[GVK, str, str]


def _unescape(token: str) -> str:
    return token.replace("~1", "/").replace("~0", "~")


def apply_json_patch(document: dict[str, Any], patch: list[dict[str, Any]]) -> dict[str, Any]:
    """A small rfc6902 implementation supporting add, replace, remove and test on objects and lists."""
    doc = copy.deepcopy(document)
    for op in patch:
        *parents, last = [_unescape(t) for t in op["path"].lstrip("/").split("/")]
        target: Any = doc
        for token in parents:
            target = target[int(token)] if isinstance(target, list) else target[token]
        match op["op"], target:
            case "add", list():
                target.insert(len(target) if last == "-" else int(last), copy.deepcopy(op["value"]))
            case "add" | "replace", dict():
                if op["op"] == "replace" and last not in target:
                    raise errors.ValidationError(message=f"Cannot replace missing path {op['path']}")
                target[last] = copy.deepcopy(op["value"])
            case "replace", list():
                target[int(last)] = copy.deepcopy(op["value"])
            case "remove", list():
                del target[int(last)]
            case "remove", dict():
                del target[last]
            case "test", _:
                current = target[int(last)] if isinstance(target, list) else target.get(last)
                if current != op["value"]:
                    raise errors.ValidationError(message=f"Test of {op['path']} failed")
            case _:
                raise errors.ValidationError(message=f"Unsupported patch operation {op}")
    return doc


def _merge_patch(document: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    result = copy.deepcopy(document)
    for k, v in patch.items():
        if v is None:
            result.pop(k, None)
        elif isinstance(v, dict) and isinstance(result.get(k), dict):
            result[k] = _merge_patch(result[k], v)
        else:
            result[k] = copy.deepcopy(v)
    return result


@dataclass
class InMemoryK8sClient:
    """A K8sClient keeping objects in memory and behaving like the API server where the controller relies on it.

    Resource versions are increased on every write and a patch that sets `/metadata/resourceVersion` to an
    outdated value is rejected with an `UpdateConflictError`. Secrets have their `stringData` folded into `data`,
    and containers of pod templates get an empty `resources` the way the API server defaults them.
    """

    objects: dict[Key, dict[str, Any]] = field(default_factory=dict)
    calls: list[tuple[str, str, str]] = field(default_factory=list)
    concurrent_writes: int = 0
    failures: dict[str, errors.BaseError] = field(default_factory=dict)
    _versions: itertools.count = field(default_factory=lambda: itertools.count(1))

    def _key(self, meta: K8sObjectMeta) -> Key:
        return (meta.gvk, meta.namespace, meta.name)

    def _raise_injected(self, action: str) -> None:
        if (err := self.failures.pop(action, None)) is not None:
            raise err

    def _bump(self, manifest: dict[str, Any]) -> None:
        manifest.setdefault("metadata", {})["resourceVersion"] = str(next(self._versions))

    @staticmethod
    def _default(manifest: dict[str, Any]) -> dict[str, Any]:
        if manifest.get("kind") == "Secret":
            string_data = manifest.pop("stringData", None) or {}
            data = manifest.setdefault("data", {})
            data.update({k: base64.b64encode(v.encode()).decode() for k, v in string_data.items()})
            manifest.setdefault("type", "Opaque")
        pod_spec = manifest.get("spec", {}).get("template", {}).get("spec")
        if isinstance(pod_spec, dict):
            for container in [*pod_spec.get("initContainers", []), *pod_spec.get("containers", [])]:
                container.setdefault("resources", {})
            manifest["spec"]["template"].setdefault("metadata", {})["creationTimestamp"] = None
        return manifest

    def writes(self, kind: str | None = None) -> list[tuple[str, str, str]]:
        """The create, patch and delete calls, optionally restricted to one kind."""
        return [c for c in self.calls if c[0] != "get" and c[0] != "list" and (kind is None or c[1] == kind)]

    def seed(self, manifest: dict[str, Any], gvk: GVK) -> dict[str, Any]:
        """Store an object without recording a call."""
        obj = K8sObject.from_manifest(manifest, gvk)
        stored = self._default(copy.deepcopy(manifest))
        stored.setdefault("metadata", {}).setdefault("uid", f"uid-{obj.name}")
        stored["metadata"].setdefault("generation", 1)
        self._bump(stored)
        self.objects[self._key(obj)] = stored
        return stored

    def stored(self, gvk: GVK, namespace: str, name: str) -> dict[str, Any] | None:
        """The stored manifest of an object."""
        return self.objects.get((gvk, namespace, name))

    async def create(self, obj: K8sObject, refresh: bool) -> K8sObject:
        self.calls.append(("create", obj.gvk.kind, obj.name))
        self._raise_injected("create")
        key = self._key(obj)
        if key in self.objects:
            raise errors.ConflictError(message=f"{obj.gvk.kind} {obj.namespace}/{obj.name} already exists")
        manifest = self._default(obj.manifest.to_dict())
        manifest["metadata"].setdefault("uid", f"uid-{obj.name}")
        manifest["metadata"]["generation"] = 1
        manifest["metadata"]["creationTimestamp"] = datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
        self._bump(manifest)
        self.objects[key] = manifest
        return obj.with_manifest(copy.deepcopy(manifest))

    async def patch(self, meta: K8sObjectMeta, patch: dict[str, Any] | list[dict[str, Any]]) -> K8sObject:
        self.calls.append(("patch", meta.gvk.kind, meta.name))
        self._raise_injected("patch")
        key = self._key(meta)
        current = self.objects.get(key)
        if current is None:
            raise errors.MissingResourceError(message=f"{meta.gvk.kind} {meta.namespace}/{meta.name} not found")
        if self.concurrent_writes > 0:
            # another writer modified the object since it was read
            self.concurrent_writes -= 1
            self._bump(current)
        if isinstance(patch, list):
            patched = apply_json_patch(current, patch)
        else:
            patched = _merge_patch(current, patch)
        if patched["metadata"].get("resourceVersion") != current["metadata"]["resourceVersion"]:
            raise errors.UpdateConflictError(message=f"{meta.gvk.kind} {meta.namespace}/{meta.name} was modified")
        patched = self._default(patched)
        if patched.get("spec") != current.get("spec"):
            patched["metadata"]["generation"] = current["metadata"].get("generation", 1) + 1
        self._bump(patched)
        self.objects[key] = patched
        return meta.with_manifest(copy.deepcopy(patched))

    async def delete(
        self, meta: K8sObjectMeta, propagation_policy: DeletePropagationPolicy = DeletePropagationPolicy.background
    ) -> None:
        self.calls.append(("delete", meta.gvk.kind, meta.name))
        self._raise_injected("delete")
        self.objects.pop(self._key(meta), None)

    async def get(self, meta: K8sObjectMeta) -> K8sObject | None:
        self.calls.append(("get", meta.gvk.kind, meta.name))
        self._raise_injected("get")
        manifest = self.objects.get(self._key(meta))
        if manifest is None:
            return None
        return meta.with_manifest(copy.deepcopy(manifest))

    async def list(self, _filter: K8sObjectFilter) -> AsyncIterable[K8sObject]:
        self.calls.append(("list", _filter.gvk.kind, _filter.name or ""))
        self._raise_injected("list")
        for (gvk, namespace, name), manifest in list(self.objects.items()):
            if gvk != _filter.gvk:
                continue
            if _filter.namespace is not None and namespace != _filter.namespace:
                continue
            if _filter.name is not None and name != _filter.name:
                continue
            labels = manifest.get("metadata", {}).get("labels") or {}
            if _filter.label_selector and any(labels.get(k) != v for k, v in _filter.label_selector.items()):
                continue
            yield K8sObject(name=name, namespace=namespace, gvk=gvk, manifest=Box(copy.deepcopy(manifest)))


@dataclass
class RecordedEvent:
    involved: str
    event_type: EventType
    reason: str
    message: str


@dataclass
class RecordingEventSink:
    """Keeps the recorded events in memory."""

    events: list[RecordedEvent] = field(default_factory=list)

    async def record(self, involved: dict[str, Any], event_type: EventType, reason: str, message: str) -> None:
        self.events.append(RecordedEvent(involved["metadata"]["name"], event_type, reason, message))

    def reasons(self) -> list[str]:
        return [e.reason for e in self.events]


@dataclass
class StubTokenIssuer:
    """Issues predictable tokens relative to a fixed clock."""

    now: datetime
    expires_in: timedelta = timedelta(hours=1)
    error: errors.BaseError | None = None
    issued: list[str] = field(default_factory=list)

    async def issue(self, repository: str) -> AccessToken:
        if self.error is not None:
            raise self.error
        self.issued.append(repository)
        return AccessToken(token=f"ghs_token{len(self.issued)}", expires_at=self.now + self.expires_in)
