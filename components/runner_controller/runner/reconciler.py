"""Reconcile a runner into its token secret, workspace config map and deployment."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

from pydantic import ValidationError as PydanticValidationError

from runner_controller.app_config import logging
from runner_controller.errors import errors
from runner_controller.k8s.client_interfaces import K8sClient
from runner_controller.k8s.constants import RUNNER_GVK
from runner_controller.k8s.events import EventSink
from runner_controller.k8s.models import EventType, K8sObjectMeta
from runner_controller.runner import constants
from runner_controller.runner.apply import ConfigMapApplier, DeploymentApplier, SecretApplier
from runner_controller.runner.builders import DesiredStateBuilder
from runner_controller.runner.credentials import CredentialManager, TokenCache, TokenIssuer
from runner_controller.runner.crs import Runner
from runner_controller.runner.gc import OwnedResourceCollector
from runner_controller.runner.models import ReconcileResult

logger = logging.getLogger(__name__)


class RunnerReconciler:
    """Converges a runner and its children.

    A pass collects orphaned children first, then keeps the token secret issued when the controller mints
    tokens, and finally applies the workspace config map and the deployment. The pass asks to be run again at
    the earliest time any of these steps requested. A stale write is retried after a second, every other error
    is recorded as a warning event on the runner and raised.
    """

    def __init__(
        self,
        client: K8sClient,
        events: EventSink,
        builder: DesiredStateBuilder,
        issuer: TokenIssuer,
        token_cache: TokenCache | None = None,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.client = client
        self.events = events
        self.builder = builder
        self.token_cache = token_cache if token_cache is not None else TokenCache()
        self.collector = OwnedResourceCollector(client, events)
        self.credentials = CredentialManager(
            issuer, builder, SecretApplier(client, events), cache=self.token_cache, now=now
        )
        self.config_maps = ConfigMapApplier(client, events)
        self.deployments = DeploymentApplier(client, events)

    async def get_runner(self, namespace: str, name: str) -> Runner | None:
        """Read the runner, None is returned if it does not exist."""
        obj = await self.client.get(K8sObjectMeta(name=name, namespace=namespace, gvk=RUNNER_GVK))
        if obj is None:
            return None
        try:
            return Runner.model_validate(obj.manifest.to_dict())
        except PydanticValidationError as e:
            raise errors.ValidationError(message=f"The runner {namespace}/{name} is invalid.", detail=str(e)) from e

    async def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """Run one reconcile pass for the runner `namespace/name`."""
        runner = await self.get_runner(namespace, name)
        if runner is None:
            logger.debug(f"The runner {namespace}/{name} does not exist anymore")
            self.token_cache.evict(namespace, name)
            return ReconcileResult()

        log = logging.with_runner(logger, runner.key)
        try:
            result = await self._reconcile(runner)
        except errors.UpdateConflictError as e:
            log.info(f"Stale write, retrying in {constants.CONFLICT_REQUEUE}: {e.message}")
            return ReconcileResult(requeue_after=constants.CONFLICT_REQUEUE)
        except errors.BaseError as e:
            log.error(f"Reconciling failed: {e}")
            await self.events.record(runner.owner_manifest(), EventType.warning, constants.REASON_FAILED, str(e))
            raise
        log.debug(f"Reconciled, requeue after {result.requeue_after}")
        return result

    async def _reconcile(self, runner: Runner) -> ReconcileResult:
        result = ReconcileResult()
        await self.collector.collect(runner)

        effective = self.builder.effective_spec(runner)
        if effective.issue_token:
            result = result.merge(await self.credentials.reconcile(runner))

        await self.config_maps.apply(runner, self.builder.workspace_config_map(runner))
        await self.deployments.apply(runner, self.builder.deployment(runner, effective))
        return result
