"""Different implementations of k8s clients."""

from __future__ import annotations

import contextlib
from collections.abc import AsyncIterable
from typing import Any

import httpx
import kr8s
from box import Box
from kr8s.asyncio.objects import APIObject

from runner_controller.app_config import logging
from runner_controller.errors import errors
from runner_controller.k8s.client_interfaces import K8sClient
from runner_controller.k8s.models import (
    DeletePropagationPolicy,
    K8sObject,
    K8sObjectFilter,
    K8sObjectMeta,
)

logger = logging.getLogger(__name__)

# kr8s only wraps HTTP status errors, connection and timeout failures surface as raw httpx errors
_TRANSPORT_ERRORS = (httpx.TransportError, kr8s.APITimeoutError)


def _status_code(err: kr8s.ServerError) -> int | None:
    response = getattr(err, "response", None)
    return response.status_code if response is not None else None


def _store_error(err: kr8s.ServerError, action: str, meta: K8sObjectMeta) -> errors.BaseError:
    """Map a kubernetes API failure to one of our typed errors based on the status code only."""
    status = _status_code(err)
    message = f"Failed to {action} {meta.gvk.kind} {meta.namespace}/{meta.name}: {err}"
    match status, action:
        case 404, _:
            return errors.MissingResourceError(message=message)
        case 409, "update":
            return errors.UpdateConflictError(message=message)
        case 409, _:
            return errors.ConflictError(message=message)
        case _:
            return errors.TransientStoreError(message=message, detail=f"status code: {status}")


def _transport_error(err: Exception, action: str, meta: K8sObjectMeta) -> errors.TransientStoreError:
    return errors.TransientStoreError(
        message=f"Failed to {action} {meta.gvk.kind} {meta.namespace}/{meta.name}: {err!r}",
        detail=type(err).__name__,
    )


class K8sClusterClient(K8sClient):
    """A wrapper around a kr8s k8s client, acts on all resources of a cluster."""

    def __init__(self, api: kr8s.asyncio.Api) -> None:
        self.__api = api

    @property
    def api(self) -> kr8s.asyncio.Api:
        """The kr8s api used by this client."""
        return self.__api

    def _api_object(self, meta: K8sObjectMeta) -> APIObject:
        return meta.with_manifest({"metadata": {"name": meta.name, "namespace": meta.namespace}}).to_api_object(
            self.__api
        )

    async def __list(self, _filter: K8sObjectFilter) -> AsyncIterable[APIObject]:
        names = [_filter.name] if _filter.name is not None else []
        try:
            res = self.__api.async_get(
                _filter.gvk.kr8s_kind,
                *names,
                label_selector=_filter.label_selector,
                namespace=_filter.namespace,
            )
            async for r in res:
                yield r
        except kr8s.NotFoundError:
            return
        except (kr8s.ServerError, *_TRANSPORT_ERRORS) as e:
            raise errors.TransientStoreError(
                message=f"Failed to list {_filter.gvk.kind} in namespace {_filter.namespace}: {e!r}"
            ) from e

    async def create(self, obj: K8sObject, refresh: bool) -> K8sObject:
        """Create the k8s object."""
        api_obj = obj.to_api_object(self.__api)
        try:
            await api_obj.create()
            # if refresh isn't called, status and timestamp will be blank
            if refresh:
                await api_obj.refresh()
        except kr8s.ServerError as e:
            raise _store_error(e, "create", obj) from e
        except _TRANSPORT_ERRORS as e:
            raise _transport_error(e, "create", obj) from e
        return obj.with_manifest(api_obj.to_dict())

    async def patch(self, meta: K8sObjectMeta, patch: dict[str, Any] | list[dict[str, Any]]) -> K8sObject:
        """Patch a k8s object.

        If the patch is a list we assume that we have a rfc6902 json patch like
        `[{ "op": "add", "path": "/a/b/c", "value": [ "foo", "bar" ] }]`.
        If the patch is a dictionary then it is considered to be a rfc7386 json merge patch.
        """
        api_obj = self._api_object(meta)
        patch_type = "json" if isinstance(patch, list) else None
        try:
            await api_obj.patch(patch, type=patch_type)
        except kr8s.NotFoundError as e:
            raise errors.MissingResourceError(
                message=f"The k8s resource with metadata {meta} cannot be found."
            ) from e
        except kr8s.ServerError as e:
            raise _store_error(e, "update", meta) from e
        except _TRANSPORT_ERRORS as e:
            raise _transport_error(e, "update", meta) from e
        return meta.with_manifest(api_obj.to_dict())

    async def delete(
        self, meta: K8sObjectMeta, propagation_policy: DeletePropagationPolicy = DeletePropagationPolicy.background
    ) -> None:
        """Delete a k8s object."""
        api_obj = self._api_object(meta)
        try:
            with contextlib.suppress(kr8s.NotFoundError):
                await api_obj.delete(propagation_policy=propagation_policy.value)
        except kr8s.ServerError as e:
            if _status_code(e) == 404:
                return
            raise _store_error(e, "delete", meta) from e
        except _TRANSPORT_ERRORS as e:
            raise _transport_error(e, "delete", meta) from e

    async def get(self, meta: K8sObjectMeta) -> K8sObject | None:
        """Get a specific k8s object, None is returned if the object does not exist."""
        obj = await anext(aiter(self.__list(meta.to_filter())), None)
        if obj is None:
            return None
        return meta.with_manifest(obj.to_dict())

    async def list(self, _filter: K8sObjectFilter) -> AsyncIterable[K8sObject]:
        """List all k8s objects."""
        async for r in self.__list(_filter):
            yield K8sObject(name=r.name, namespace=r.namespace, gvk=_filter.gvk, manifest=Box(r.to_dict()))
