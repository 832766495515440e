"""Models for k8s objects handled by the controller."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Final, Self

from box import Box
from kr8s._api import Api
from kr8s.asyncio.objects import APIObject

from runner_controller.errors import errors


class K8sObjectMeta:
    """Metadata about a k8s object."""

    def __init__(self, name: str, namespace: str, gvk: GVK) -> None:
        if len(namespace) == 0:
            raise errors.ValidationError(message="Cannot have a namespaced K8s object with a namespace set to ''")
        self.name = name
        self.namespace = namespace
        self.gvk = gvk

    def with_manifest(self, manifest: dict[str, Any]) -> K8sObject:
        """Convert to a full k8s object."""
        return K8sObject(name=self.name, namespace=self.namespace, gvk=self.gvk, manifest=Box(manifest))

    def to_filter(self) -> K8sObjectFilter:
        """Convert the metadata to a filter used when listing resources."""
        return K8sObjectFilter(gvk=self.gvk, namespace=self.namespace, name=self.name)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name}, namespace={self.namespace}, gvk={self.gvk})"


class K8sObject(K8sObjectMeta):
    """Represents a namespaced object in k8s."""

    def __init__(self, name: str, namespace: str, gvk: GVK, manifest: Box) -> None:
        super().__init__(name, namespace, gvk)
        self.manifest = manifest

    @property
    def meta(self) -> K8sObjectMeta:
        """The metadata of the object without the manifest."""
        return K8sObjectMeta(name=self.name, namespace=self.namespace, gvk=self.gvk)

    @property
    def resource_version(self) -> str | None:
        """The resource version the object was read at."""
        return self.manifest.get("metadata", {}).get("resourceVersion")

    def to_api_object(self, api: Api) -> APIObject:
        """Convert a regular k8s object to an api object for kr8s."""
        return _convert_to_api_object(api, self)

    @classmethod
    def from_manifest(cls, manifest: dict[str, Any], gvk: GVK) -> Self:
        """Create an object from a full manifest, taking name and namespace from its metadata."""
        metadata = manifest.get("metadata") or {}
        name, namespace = metadata.get("name"), metadata.get("namespace")
        if not name or not namespace:
            raise errors.ValidationError(message=f"The {gvk.kind} manifest needs a name and a namespace.")
        return cls(name=name, namespace=namespace, gvk=gvk, manifest=Box(manifest))


def _convert_to_api_object(api: Api, obj: K8sObject) -> APIObject:
    """Convert a regular k8s object to an api object for kr8s."""
    _singular = obj.gvk.kind.lower()
    _plural = f"{_singular}s" if _singular[-1] != "s" else f"{_singular}es"
    _endpoint = _plural

    class _APIObj(APIObject):
        kind = obj.gvk.kind
        version = obj.gvk.group_version
        singular = _singular
        plural = _plural
        endpoint = _endpoint
        namespaced = True

    return _APIObj(resource=obj.manifest.to_dict(), namespace=obj.namespace, api=api)


@dataclass
class K8sObjectFilter:
    """Parameters used when listing resources."""

    gvk: GVK
    name: str | None = None
    namespace: str | None = None
    label_selector: dict[str, str] | None = None


GVK_CORE_GROUP: Final[str] = "core"


@dataclass(kw_only=True, frozen=True)
class GVK:
    """The information about the group, version and kind of a K8s object."""

    kind: str
    version: str
    group: str | None = None

    @property
    def group_version(self) -> str:
        """Get the group and version joined by '/'."""
        if self.group is None or self.group.lower() == GVK_CORE_GROUP:
            return self.version
        return f"{self.group}/{self.version}"

    @property
    def kr8s_kind(self) -> str:
        """Returns the fully qualified kind string for this filter for kr8s.

        Note: This exists because kr8s has some methods where it only allows you to specify 'kind' and then has
        weird logic to split that. This method is essentially the reverse of the kr8s logic so we can hand it a
        string it will accept.
        """
        if self.group is None or self.group.lower() == GVK_CORE_GROUP:
            # e.g. pod/v1
            return f"{self.kind.lower()}/{self.version}"
        # e.g. deployment.apps/v1
        return f"{self.kind.lower()}.{self.group_version}"


class DeletePropagationPolicy(StrEnum):
    """Propagation policy when deleting objects in K8s."""

    foreground = "Foreground"
    background = "Background"


class EventType(StrEnum):
    """Type of a kubernetes event."""

    normal = "Normal"
    warning = "Warning"


def owner_reference(owner: dict[str, Any], controller: bool = True) -> dict[str, Any]:
    """Build an owner reference pointing at the given owner manifest.

    With `controller` set this is the strict controller attribution used by the kubernetes garbage
    collector and by `controller_owner_name`.
    """
    metadata = owner.get("metadata") or {}
    uid = metadata.get("uid")
    if not uid:
        raise errors.ProgrammingError(
            message=f"Cannot reference the owner {metadata.get('name')} because it has no uid."
        )
    return {
        "apiVersion": owner["apiVersion"],
        "kind": owner["kind"],
        "name": metadata["name"],
        "uid": uid,
        "controller": controller,
        "blockOwnerDeletion": True,
    }


def set_controller_reference(owner: dict[str, Any], obj: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of `obj` controlled by `owner`.

    Raises if the object is already controlled by a different owner.
    """
    ref = owner_reference(owner)
    metadata = dict(obj.get("metadata") or {})
    refs = [dict(r) for r in metadata.get("ownerReferences") or []]
    for existing in refs:
        if existing.get("controller") and existing.get("uid") != ref["uid"]:
            raise errors.ConflictError(
                message=f"The object {metadata.get('name')} is already controlled by "
                f"{existing.get('kind')} {existing.get('name')}."
            )
    refs = [r for r in refs if r.get("uid") != ref["uid"]]
    refs.append(ref)
    metadata["ownerReferences"] = refs
    return {**obj, "metadata": metadata}


def controller_owner_name(manifest: dict[str, Any], owner_kind: str) -> str | None:
    """Index function returning the name of the controlling owner if it is of the given kind."""
    metadata = manifest.get("metadata") or {}
    for ref in metadata.get("ownerReferences") or []:
        if ref.get("controller"):
            return ref.get("name") if ref.get("kind") == owner_kind else None
    return None
