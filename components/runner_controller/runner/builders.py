"""Build the desired child objects of a runner.

Everything here is a pure function of the runner and the controller config, no
I/O happens and the runner passed in is never modified. Fields the API server
would default are set explicitly so that observed and desired pod templates
compare equal once the deployment exists.
"""

from __future__ import annotations

from datetime import UTC
from typing import Any

from kubernetes import client
from kubernetes.utils import parse_quantity

from runner_controller.app_config.config import ControllerConfig
from runner_controller.github.models import AccessToken
from runner_controller.runner import constants
from runner_controller.runner.crs import ContainerSpec, Runner, SecretKeyRef
from runner_controller.runner.models import EffectiveRunnerSpec, Manifest
from runner_controller.utils.package_reference import repository_name

_sanitize_for_serialization = client.ApiClient().sanitize_for_serialization

_TERMINATION_MESSAGE_PATH = "/dev/termination-log"
_TERMINATION_MESSAGE_POLICY = "File"
_SECCOMP_RUNTIME_DEFAULT = {"type": "RuntimeDefault"}
_CONFIG_MAP_DEFAULT_MODE = 0o644

DOCKERFILE_TEMPLATE = """
FROM {image}
USER root
ENV DEBIAN_FRONTEND=noninteractive
RUN (command -v apt && apt update && apt install -y ca-certificates iputils-ping tar sudo git) || \\
      (command -v apt-get && apt-get update && apt-get install -y --no-install-recommends ca-certificates iputils-ping tar sudo git) || \\
      (command -v dnf && dnf install -y ca-certificates iputils tar sudo git) || \\
      (command -v yum && yum install -y ca-certificates iputils tar sudo git) || \\
      (command -v zypper && zypper install -n ca-certificates iputils tar sudo git-core) || \\
      (echo "Unknown OS version" && exit 1)

ADD {release_url} /usr/local/bin/runner
RUN chmod +x /usr/local/bin/runner

RUN echo 'runner::{uid}:{uid}::/home/runner:/bin/sh' >> /etc/passwd
RUN echo 'runner::{uid}:' >> /etc/group
RUN mkdir -p /home/runner && chown -R runner:runner /home/runner

RUN echo "runner:!:0:0:99999:7:::" >> /etc/shadow
RUN echo "runner ALL=(ALL) NOPASSWD: ALL" | sudo EDITOR='tee -a' visudo

WORKDIR /home/runner

RUN /usr/local/bin/runner --only-install --runner-version {runner_version}

USER {uid}

ENTRYPOINT ["/usr/local/bin/runner"]
"""


def owned_labels(runner: Runner) -> dict[str, str]:
    """Labels set on every child of the runner."""
    return {constants.RUNNER_LABEL: runner.metadata.name}


def token_secret_name(runner: Runner) -> str:
    """Name of the secret holding the issued token."""
    return runner.metadata.name


def workspace_name(runner: Runner) -> str:
    """Name of the config map holding the build context."""
    return f"{runner.metadata.name}{constants.WORKSPACE_SUFFIX}"


def deployment_name(runner: Runner) -> str:
    """Name of the deployment running the runner."""
    return f"{runner.metadata.name}{constants.DEPLOYMENT_SUFFIX}"


def format_expiry(token: AccessToken) -> str:
    """Format the expiry of a token as an RFC 3339 timestamp in UTC."""
    return token.expires_at.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def builder_resources(spec: ContainerSpec) -> dict[str, Any]:
    """Resources of the image builder, with a default memory limit when none or zero is declared."""
    resources = dict(spec.resources)
    limits = dict(resources.get("limits") or {})
    memory = limits.get("memory")
    if memory is None or parse_quantity(memory) == 0:
        limits["memory"] = constants.DEFAULT_BUILDER_MEMORY
    resources["limits"] = limits
    return resources


class DesiredStateBuilder:
    """Computes the desired secret, config map and deployment of a runner."""

    def __init__(self, config: ControllerConfig) -> None:
        self.config = config

    def image_id(self, runner: Runner) -> str:
        """Name of the image built for the runner, shared by the push and the pull reference."""
        return repository_name(runner.spec.image, self.config.binary_version, self.config.runner_version)

    def effective_spec(self, runner: Runner) -> EffectiveRunnerSpec:
        """Resolve where the runner reads its token from.

        A token is only issued when the runner declares no token secret and the GitHub App is fully configured.
        """
        declared = runner.spec.tokenSecretKeyRef
        issue_token = declared is None and self.config.github_app.enabled
        token_ref = (
            SecretKeyRef(name=token_secret_name(runner), key=constants.TOKEN_KEY) if issue_token else declared
        )
        return EffectiveRunnerSpec(token_secret_ref=token_ref, issue_token=issue_token, image_id=self.image_id(runner))

    def token_secret(self, runner: Runner, token: AccessToken) -> Manifest:
        """The secret holding an issued token and its expiry."""
        secret = client.V1Secret(
            api_version="v1",
            kind="Secret",
            metadata=client.V1ObjectMeta(
                name=token_secret_name(runner),
                namespace=runner.metadata.namespace,
                labels=owned_labels(runner),
                annotations={constants.EXPIRES_AT_ANNOTATION: format_expiry(token)},
            ),
            string_data={constants.TOKEN_KEY: token.token},
        )
        return _sanitize_for_serialization(secret)

    def dockerfile(self, runner: Runner) -> str:
        """The provisioning script building the runner image on top of the declared image."""
        return DOCKERFILE_TEMPLATE.format(
            image=runner.spec.image,
            release_url=constants.RUNNER_RELEASE_URL.format(version=self.config.binary_version),
            uid=constants.RUNNER_UID,
            runner_version=self.config.runner_version,
        )

    def workspace_config_map(self, runner: Runner) -> Manifest:
        """The config map with the build context of the runner image."""
        config_map = client.V1ConfigMap(
            api_version="v1",
            kind="ConfigMap",
            metadata=client.V1ObjectMeta(
                name=workspace_name(runner), namespace=runner.metadata.namespace, labels=owned_labels(runner)
            ),
            data={constants.DOCKERFILE_KEY: self.dockerfile(runner)},
        )
        return _sanitize_for_serialization(config_map)

    def builder_container(self, runner: Runner, effective: EffectiveRunnerSpec) -> client.V1Container:
        """The init container building and pushing the runner image."""
        spec = runner.spec.builderContainerSpec
        return client.V1Container(
            name=constants.BUILDER_CONTAINER,
            image=self.config.images.kaniko_image,
            image_pull_policy="IfNotPresent",
            args=[
                f"--dockerfile={constants.DOCKERFILE_KEY}",
                "--context=dir:///workspace",
                "--cache=true",
                "--compressed-caching=false",
                f"--destination={self.config.images.push_registry_host}/{effective.image_id}",
            ],
            env_from=list(spec.envFrom) or None,
            env=list(spec.env) or None,
            volume_mounts=[
                client.V1VolumeMount(
                    name=constants.WORKSPACE_VOLUME,
                    mount_path=f"/workspace/{constants.DOCKERFILE_KEY}",
                    sub_path=constants.DOCKERFILE_KEY,
                    read_only=True,
                ),
                *spec.volumeMounts,
            ],
            resources=builder_resources(spec),
            termination_message_path=_TERMINATION_MESSAGE_PATH,
            termination_message_policy=_TERMINATION_MESSAGE_POLICY,
        )

    def runner_container(self, runner: Runner, effective: EffectiveRunnerSpec) -> client.V1Container:
        """The container registering and running the self-hosted runner."""
        spec = runner.spec.runnerContainerSpec
        args = ["--without-install", "--repository=$(REPOSITORY)", "--hostname=$(HOSTNAME)"]
        env: list[Any] = [
            *spec.env,
            client.V1EnvVar(name="REPOSITORY", value=runner.spec.repository),
            client.V1EnvVar(
                name="HOSTNAME",
                value_from=client.V1EnvVarSource(
                    field_ref=client.V1ObjectFieldSelector(api_version="v1", field_path="metadata.name")
                ),
            ),
        ]
        env_from: list[Any] = list(spec.envFrom)
        if effective.token_secret_ref is not None:
            args.append("--token=$(TOKEN)")
            env.append(self._token_env(effective.token_secret_ref))
        if runner.spec.appSecretRef is not None:
            args.extend(
                [
                    "--github-app-id=$(github_app_id)",
                    "--github-app-installation-id=$(github_app_installation_id)",
                    "--github-app-private-key=$(github_app_private_key)",
                ]
            )
            env_from.append(client.V1EnvFromSource(secret_ref={"name": runner.spec.appSecretRef.name}))
        if self.config.disable_update:
            args.append("--disableupdate")
        return client.V1Container(
            name=constants.RUNNER_CONTAINER,
            security_context={
                "privileged": False,
                "allowPrivilegeEscalation": False,
                "readOnlyRootFilesystem": False,
                "runAsUser": constants.RUNNER_UID,
                "runAsNonRoot": True,
                "seccompProfile": _SECCOMP_RUNTIME_DEFAULT,
            },
            image=f"{self.config.images.pull_registry_host}/{effective.image_id}",
            image_pull_policy="Always",
            args=args,
            env_from=env_from or None,
            env=env,
            resources=dict(spec.resources) or None,
            volume_mounts=list(spec.volumeMounts) or None,
            termination_message_path=_TERMINATION_MESSAGE_PATH,
            termination_message_policy=_TERMINATION_MESSAGE_POLICY,
        )

    def exporter_container(self, runner: Runner, effective: EffectiveRunnerSpec) -> client.V1Container:
        """The sidecar exposing runner metrics."""
        env: list[client.V1EnvVar] = [client.V1EnvVar(name="REPOSITORY", value=runner.spec.repository)]
        if effective.token_secret_ref is not None:
            env.append(self._token_env(effective.token_secret_ref))
        return client.V1Container(
            name=constants.EXPORTER_CONTAINER,
            image=self.config.images.exporter_image,
            image_pull_policy="Always",
            args=[
                "server",
                f"--api-address=0.0.0.0:{constants.EXPORTER_API_PORT}",
                f"--monitor-address=0.0.0.0:{constants.METRICS_PORT}",
                "--repository=$(REPOSITORY)",
                "--token=$(TOKEN)",
            ],
            env=env,
            ports=[client.V1ContainerPort(container_port=constants.METRICS_PORT, protocol="TCP")],
            termination_message_path=_TERMINATION_MESSAGE_PATH,
            termination_message_policy=_TERMINATION_MESSAGE_POLICY,
        )

    @staticmethod
    def _token_env(ref: SecretKeyRef) -> client.V1EnvVar:
        return client.V1EnvVar(
            name="TOKEN",
            value_from=client.V1EnvVarSource(secret_key_ref=client.V1SecretKeySelector(name=ref.name, key=ref.key)),
        )

    def pod_template(self, runner: Runner, effective: EffectiveRunnerSpec) -> client.V1PodTemplateSpec:
        """The pod template of the runner deployment."""
        app_label = deployment_name(runner)
        labels = {"app": app_label, **runner.spec.template.metadata.labels}
        annotations = {"image": runner.spec.image, **runner.spec.template.metadata.annotations}
        containers = [self.runner_container(runner, effective)]
        if self.config.enable_runner_metrics:
            containers.append(self.exporter_container(runner, effective))
        return client.V1PodTemplateSpec(
            metadata=client.V1ObjectMeta(labels=labels, annotations=annotations),
            spec=client.V1PodSpec(
                affinity=client.V1Affinity(
                    pod_anti_affinity=client.V1PodAntiAffinity(
                        preferred_during_scheduling_ignored_during_execution=[
                            client.V1WeightedPodAffinityTerm(
                                weight=100,
                                pod_affinity_term=client.V1PodAffinityTerm(
                                    label_selector=client.V1LabelSelector(match_labels={"app": app_label}),
                                    topology_key="kubernetes.io/hostname",
                                ),
                            )
                        ]
                    )
                ),
                init_containers=[self.builder_container(runner, effective)],
                containers=containers,
                volumes=[
                    client.V1Volume(
                        name=constants.WORKSPACE_VOLUME,
                        config_map=client.V1ConfigMapVolumeSource(
                            name=workspace_name(runner), default_mode=_CONFIG_MAP_DEFAULT_MODE
                        ),
                    ),
                    *runner.spec.template.spec.volumes,
                ],
                restart_policy="Always",
                termination_grace_period_seconds=30,
                dns_policy="ClusterFirst",
                security_context={"seccompProfile": _SECCOMP_RUNTIME_DEFAULT},
                scheduler_name="default-scheduler",
            ),
        )

    def deployment(self, runner: Runner, effective: EffectiveRunnerSpec) -> Manifest:
        """The deployment running the runner."""
        app_label = deployment_name(runner)
        deployment = client.V1Deployment(
            api_version="apps/v1",
            kind="Deployment",
            metadata=client.V1ObjectMeta(
                name=deployment_name(runner), namespace=runner.metadata.namespace, labels=owned_labels(runner)
            ),
            spec=client.V1DeploymentSpec(
                selector=client.V1LabelSelector(match_labels={"app": app_label}),
                replicas=1,
                strategy=client.V1DeploymentStrategy(
                    type="RollingUpdate",
                    rolling_update=client.V1RollingUpdateDeployment(max_surge="25%", max_unavailable=1),
                ),
                template=self.pod_template(runner, effective),
            ),
        )
        return _sanitize_for_serialization(deployment)
