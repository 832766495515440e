"""Delete children of a runner that do not carry their canonical name anymore."""

from __future__ import annotations

from dataclasses import dataclass

from runner_controller.app_config import logging
from runner_controller.k8s.client_interfaces import K8sClient
from runner_controller.k8s.constants import CONFIG_MAP_GVK, DEPLOYMENT_GVK, SECRET_GVK
from runner_controller.k8s.events import EventSink
from runner_controller.k8s.models import GVK, EventType, K8sObjectFilter, K8sObjectMeta, controller_owner_name
from runner_controller.runner import constants
from runner_controller.runner.builders import deployment_name, owned_labels, token_secret_name, workspace_name
from runner_controller.runner.crs import Runner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _OwnedKind:
    gvk: GVK
    description: str


_SECRETS = _OwnedKind(SECRET_GVK, "secret")
_CONFIG_MAPS = _OwnedKind(CONFIG_MAP_GVK, "config map")
_DEPLOYMENTS = _OwnedKind(DEPLOYMENT_GVK, "deployment")


class OwnedResourceCollector:
    """Garbage collects the orphaned children of a runner."""

    def __init__(self, client: K8sClient, events: EventSink) -> None:
        self.client = client
        self.events = events

    async def collect(self, runner: Runner) -> list[K8sObjectMeta]:
        """Delete every child controlled by the runner whose name differs from the expected one.

        Returns the deleted objects.
        """
        canonical = {
            _SECRETS: token_secret_name(runner),
            _CONFIG_MAPS: workspace_name(runner),
            _DEPLOYMENTS: deployment_name(runner),
        }
        owner = runner.owner_manifest()
        deleted: list[K8sObjectMeta] = []
        for kind, expected in canonical.items():
            _filter = K8sObjectFilter(
                gvk=kind.gvk, namespace=runner.metadata.namespace, label_selector=owned_labels(runner)
            )
            orphans = [
                obj.meta
                async for obj in self.client.list(_filter)
                if controller_owner_name(obj.manifest, runner.kind) == runner.metadata.name and obj.name != expected
            ]
            for meta in orphans:
                await self.client.delete(meta)
                await self.events.record(
                    owner, EventType.normal, constants.REASON_DELETED, f'Deleted {kind.description}: "{meta.name}"'
                )
                logger.debug(f"Deleted orphaned {meta.gvk.kind} {meta.namespace}/{meta.name}")
                deleted.append(meta)
        return deleted
