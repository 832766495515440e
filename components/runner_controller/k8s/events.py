"""Record kubernetes events attached to the objects reconciled by the controller."""

from __future__ import annotations

import time
from datetime import UTC, datetime
from typing import Any, Protocol

from runner_controller.app_config import logging
from runner_controller.errors import errors
from runner_controller.k8s.client_interfaces import K8sClient
from runner_controller.k8s.constants import CONTROLLER_COMPONENT, EVENT_GVK
from runner_controller.k8s.models import EventType, K8sObject

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    """Something that can record events about an object."""

    async def record(self, involved: dict[str, Any], event_type: EventType, reason: str, message: str) -> None:
        """Record an event about the object described by the `involved` manifest."""
        ...


class EventRecorder(EventSink):
    """Writes core/v1 events through the k8s client.

    Failing to record an event never fails the operation that triggered it, the error is only logged.
    """

    def __init__(self, client: K8sClient, component: str = CONTROLLER_COMPONENT) -> None:
        self.client = client
        self.component = component

    def _event(self, involved: dict[str, Any], event_type: EventType, reason: str, message: str) -> K8sObject:
        metadata = involved["metadata"]
        now = datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
        name = f"{metadata['name']}.{time.time_ns():x}"
        manifest = {
            "apiVersion": EVENT_GVK.group_version,
            "kind": EVENT_GVK.kind,
            "metadata": {"name": name, "namespace": metadata["namespace"]},
            "involvedObject": {
                "apiVersion": involved.get("apiVersion"),
                "kind": involved.get("kind"),
                "name": metadata["name"],
                "namespace": metadata["namespace"],
                "uid": metadata.get("uid"),
                "resourceVersion": metadata.get("resourceVersion"),
            },
            "reason": reason,
            "message": message,
            "type": event_type.value,
            "source": {"component": self.component},
            "firstTimestamp": now,
            "lastTimestamp": now,
            "count": 1,
        }
        return K8sObject.from_manifest(manifest, EVENT_GVK)

    async def record(self, involved: dict[str, Any], event_type: EventType, reason: str, message: str) -> None:
        """Record an event about the object described by the `involved` manifest."""
        event = self._event(involved, event_type, reason, message)
        try:
            await self.client.create(event, refresh=False)
        except errors.BaseError as e:
            logger.warning(f"Failed to record event {reason} for {event.namespace}/{involved['metadata']['name']}: {e}")
