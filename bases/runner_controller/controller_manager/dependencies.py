"""Dependency management for the runner controller."""

from dataclasses import dataclass, field

from runner_controller.app_config.config import ControllerConfig
from runner_controller.github.app_token import GitHubAppTokenIssuer
from runner_controller.k8s.client_interfaces import K8sClient
from runner_controller.k8s.events import EventRecorder
from runner_controller.runner.builders import DesiredStateBuilder
from runner_controller.runner.credentials import TokenCache
from runner_controller.runner.reconciler import RunnerReconciler


@dataclass
class DependencyManager:
    """Runner controller dependencies."""

    config: ControllerConfig

    _builder: DesiredStateBuilder | None = field(default=None, repr=False, init=False)
    _issuer: GitHubAppTokenIssuer | None = field(default=None, repr=False, init=False)
    _token_cache: TokenCache | None = field(default=None, repr=False, init=False)

    def builder(self) -> DesiredStateBuilder:
        """The builder of the desired children of a runner."""
        if self._builder is None:
            self._builder = DesiredStateBuilder(self.config)
        return self._builder

    def issuer(self) -> GitHubAppTokenIssuer:
        """The client issuing GitHub App installation tokens."""
        if self._issuer is None:
            self._issuer = GitHubAppTokenIssuer(self.config.github_app)
        return self._issuer

    def token_cache(self) -> TokenCache:
        """The in memory cache of issued tokens."""
        if self._token_cache is None:
            self._token_cache = TokenCache()
        return self._token_cache

    def reconciler(self, client: K8sClient) -> RunnerReconciler:
        """The reconciler acting on the cluster through the given client."""
        return RunnerReconciler(
            client=client,
            events=EventRecorder(client),
            builder=self.builder(),
            issuer=self.issuer(),
            token_cache=self.token_cache(),
        )

    @classmethod
    def from_env(cls) -> "DependencyManager":
        """Create a config from environment variables."""
        config = ControllerConfig.from_env()
        return cls(
            config=config,
        )
