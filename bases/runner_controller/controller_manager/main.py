"""The entrypoint for the runner controller."""

import asyncio
from datetime import timedelta

from runner_controller.app_config import logging
from runner_controller.controller_manager.dependencies import DependencyManager
from runner_controller.k8s.clients import K8sClusterClient
from runner_controller.k8s.config import KubeConfigEnv
from runner_controller.k8s.constants import CONFIG_MAP_GVK, DEPLOYMENT_GVK, RUNNER_GVK, SECRET_GVK
from runner_controller.k8s.queue import ObjectKey, WorkQueue, run_worker
from runner_controller.k8s.watcher import K8sWatcher, enqueue_handler, stop_task

logger = logging.getLogger(__name__)


async def main() -> None:
    """Runner controller entrypoint."""
    logging.configure_logging()
    dm = DependencyManager.from_env()
    api = await KubeConfigEnv().api()
    reconciler = dm.reconciler(K8sClusterClient(api))

    async def reconcile(key: ObjectKey) -> timedelta | None:
        result = await reconciler.reconcile(key.namespace, key.name)
        return result.requeue_after

    queue = WorkQueue()
    kinds = [RUNNER_GVK, SECRET_GVK, CONFIG_MAP_GVK, DEPLOYMENT_GVK]
    logger.info(f"Resources: {kinds}")
    watcher = K8sWatcher(
        handler=enqueue_handler(queue, RUNNER_GVK),
        api=api,
        kinds=kinds,
        namespace=dm.config.namespace,
    )
    await watcher.start()
    # a single worker, reconcile passes never run concurrently
    worker = asyncio.create_task(run_worker(queue, reconcile))
    logger.info("started watching resources")
    # create file for liveness probe
    with open("/tmp/controller_ready", "w") as f:  # nosec B108
        f.write("ready")
    try:
        await asyncio.gather(watcher.wait(), worker)
    finally:
        await watcher.stop()
        await stop_task(worker, timedelta(seconds=10))


def run() -> None:
    """Run the controller until it is stopped."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
