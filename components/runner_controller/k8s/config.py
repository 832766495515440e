"""Base config for k8s."""

import os
from collections.abc import Awaitable

import kr8s


class KubeConfig:
    """Wrapper around kube config to get a kr8s api."""

    def __init__(
        self,
        kubeconfig: str | None = None,
        current_context_name: str | None = None,
        ns: str | None = None,
        sa: str | None = None,
        url: str | None = None,
    ) -> None:
        self._kubeconfig = kubeconfig
        self._ns = ns
        self._current_context_name = current_context_name
        self._sa = sa
        self._url = url

    def api(self) -> Awaitable[kr8s.asyncio.Api]:
        """Instantiate the async Kr8s Api object based on the configuration.

        Kr8s cannot return an async Api from sync code, the returned awaitable has to be awaited in the event loop
        that will use the client.
        """
        return kr8s.asyncio.api(
            url=self._url,
            kubeconfig=self._kubeconfig,
            serviceaccount=self._sa,
            namespace=self._ns,
            context=self._current_context_name,
        )


class KubeConfigEnv(KubeConfig):
    """Get a kube config from the environment.

    `KUBECONFIG` and `KUBE_CONTEXT` select an explicit config file and context, otherwise kr8s falls back to the
    in-cluster service account.
    """

    def __init__(self) -> None:
        super().__init__(
            kubeconfig=os.environ.get("KUBECONFIG") or None,
            current_context_name=os.environ.get("KUBE_CONTEXT") or None,
            ns=os.environ.get("K8S_NAMESPACE") or None,
        )
