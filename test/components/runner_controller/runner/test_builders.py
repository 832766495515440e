import copy
from datetime import timedelta

import pytest

from runner_controller.app_config.config import ControllerConfig, GitHubAppConfig
from runner_controller.github.models import AccessToken
from runner_controller.runner.builders import DesiredStateBuilder, builder_resources
from runner_controller.runner.crs import ContainerSpec, Runner
from runner_controller.utils.package_reference import repository_name
from test.constants import NOW, runner_manifest

OWNED = {"github-actions-runner.kaidotio.github.io/runner": "example"}


def _containers(deployment: dict) -> dict[str, dict]:
    spec = deployment["spec"]["template"]["spec"]
    return {c["name"]: c for c in [*spec["initContainers"], *spec["containers"]]}


def _env(container: dict) -> dict[str, dict]:
    return {e["name"]: e for e in container.get("env", [])}


def test_effective_spec_issues_token_when_app_is_configured(builder: DesiredStateBuilder, runner: Runner):
    effective = builder.effective_spec(runner)
    assert effective.issue_token
    assert effective.token_secret_ref is not None
    assert effective.token_secret_ref.name == "example"
    assert effective.token_secret_ref.key == "GITHUB_TOKEN"
    assert effective.image_id == repository_name("ubuntu:22.04", "0.1.2", "2.311.0")
    # the runner itself is not touched
    assert runner.spec.tokenSecretKeyRef is None


def test_effective_spec_keeps_declared_token(builder: DesiredStateBuilder):
    runner = Runner.model_validate(runner_manifest(tokenSecretKeyRef={"name": "static", "key": "token"}))
    effective = builder.effective_spec(runner)
    assert not effective.issue_token
    assert effective.token_secret_ref is not None
    assert effective.token_secret_ref.name == "static"


def test_effective_spec_without_app(controller_config: ControllerConfig, runner: Runner):
    controller_config.github_app = GitHubAppConfig(client_id="Iv1.abc", installation_id="1")
    effective = DesiredStateBuilder(controller_config).effective_spec(runner)
    assert not effective.issue_token
    assert effective.token_secret_ref is None


def test_token_secret(builder: DesiredStateBuilder, runner: Runner):
    token = AccessToken(token="ghs_abc", expires_at=NOW + timedelta(hours=1))
    secret = builder.token_secret(runner, token)
    assert secret["apiVersion"] == "v1"
    assert secret["kind"] == "Secret"
    assert secret["metadata"] == {
        "name": "example",
        "namespace": "ci",
        "labels": OWNED,
        "annotations": {"github-actions-runner.kaidotio.github.io/expiresAt": "2024-05-01T13:00:00Z"},
    }
    assert secret["stringData"] == {"GITHUB_TOKEN": "ghs_abc"}


def test_workspace_config_map(builder: DesiredStateBuilder, runner: Runner):
    config_map = builder.workspace_config_map(runner)
    assert config_map["metadata"] == {"name": "example-workspace", "namespace": "ci", "labels": OWNED}
    assert list(config_map["data"]) == ["Dockerfile"]
    dockerfile = config_map["data"]["Dockerfile"]
    assert "\nFROM ubuntu:22.04\n" in dockerfile
    managers = [dockerfile.index(f"command -v {m} ") for m in ["apt", "apt-get", "dnf", "yum", "zypper"]]
    assert managers == sorted(managers)
    assert '(echo "Unknown OS version" && exit 1)' in dockerfile
    assert (
        "ADD https://github.com/kaidotdev/github-actions-runner-controller/releases/download/v0.1.2/"
        "runner_0.1.2_linux_amd64 /usr/local/bin/runner" in dockerfile
    )
    assert "runner::60000:60000::/home/runner:/bin/sh" in dockerfile
    assert "NOPASSWD: ALL" in dockerfile
    assert "RUN /usr/local/bin/runner --only-install --runner-version 2.311.0" in dockerfile
    assert dockerfile.rstrip().endswith('ENTRYPOINT ["/usr/local/bin/runner"]')
    assert "apt-get install -y --no-install-recommends ca-certificates iputils-ping tar sudo git) || \\\n" in dockerfile


def test_deployment(builder: DesiredStateBuilder, runner: Runner):
    effective = builder.effective_spec(runner)
    deployment = builder.deployment(runner, effective)
    image_id = effective.image_id

    assert deployment["metadata"] == {"name": "example-runner", "namespace": "ci", "labels": OWNED}
    spec = deployment["spec"]
    assert spec["replicas"] == 1
    assert spec["selector"] == {"matchLabels": {"app": "example-runner"}}
    assert spec["strategy"] == {"type": "RollingUpdate", "rollingUpdate": {"maxSurge": "25%", "maxUnavailable": 1}}
    template = spec["template"]
    assert template["metadata"] == {"labels": {"app": "example-runner"}, "annotations": {"image": "ubuntu:22.04"}}
    pod = template["spec"]
    assert pod["affinity"]["podAntiAffinity"]["preferredDuringSchedulingIgnoredDuringExecution"] == [
        {
            "weight": 100,
            "podAffinityTerm": {
                "labelSelector": {"matchLabels": {"app": "example-runner"}},
                "topologyKey": "kubernetes.io/hostname",
            },
        }
    ]
    assert pod["volumes"] == [{"name": "workspace", "configMap": {"name": "example-workspace", "defaultMode": 420}}]
    assert pod["restartPolicy"] == "Always"
    assert pod["terminationGracePeriodSeconds"] == 30
    assert pod["dnsPolicy"] == "ClusterFirst"
    assert pod["schedulerName"] == "default-scheduler"
    assert pod["securityContext"] == {"seccompProfile": {"type": "RuntimeDefault"}}

    containers = _containers(deployment)
    assert list(containers) == ["kaniko", "runner"]

    kaniko = containers["kaniko"]
    assert kaniko["image"] == "gcr.io/kaniko-project/executor:latest"
    assert kaniko["imagePullPolicy"] == "IfNotPresent"
    assert kaniko["args"][-1] == f"--destination=registry.example.com:5000/{image_id}"
    assert kaniko["volumeMounts"] == [
        {"name": "workspace", "mountPath": "/workspace/Dockerfile", "subPath": "Dockerfile", "readOnly": True}
    ]
    assert kaniko["resources"] == {"limits": {"memory": "4Gi"}}
    assert kaniko["terminationMessagePath"] == "/dev/termination-log"
    assert kaniko["terminationMessagePolicy"] == "File"

    main = containers["runner"]
    assert main["image"] == f"localhost:5000/{image_id}"
    assert main["imagePullPolicy"] == "Always"
    assert main["args"] == [
        "--without-install",
        "--repository=$(REPOSITORY)",
        "--hostname=$(HOSTNAME)",
        "--token=$(TOKEN)",
    ]
    env = _env(main)
    assert env["REPOSITORY"] == {"name": "REPOSITORY", "value": "org/repo"}
    assert env["HOSTNAME"]["valueFrom"] == {"fieldRef": {"apiVersion": "v1", "fieldPath": "metadata.name"}}
    assert env["TOKEN"]["valueFrom"] == {"secretKeyRef": {"name": "example", "key": "GITHUB_TOKEN"}}
    assert main["securityContext"] == {
        "privileged": False,
        "allowPrivilegeEscalation": False,
        "readOnlyRootFilesystem": False,
        "runAsUser": 60000,
        "runAsNonRoot": True,
        "seccompProfile": {"type": "RuntimeDefault"},
    }


def test_push_and_pull_images_share_the_id(builder: DesiredStateBuilder, runner: Runner):
    deployment = builder.deployment(runner, builder.effective_spec(runner))
    containers = _containers(deployment)
    pushed = containers["kaniko"]["args"][-1].rsplit("/", 1)[-1]
    pulled = containers["runner"]["image"].rsplit("/", 1)[-1]
    assert pushed == pulled


def test_deployment_with_overrides(controller_config: ControllerConfig):
    controller_config.enable_runner_metrics = True
    controller_config.disable_update = True
    builder = DesiredStateBuilder(controller_config)
    manifest = runner_manifest(
        appSecretRef={"name": "app-credentials"},
        builderContainerSpec={
            "env": [{"name": "HTTP_PROXY", "value": "http://proxy:3128"}],
            "volumeMounts": [{"name": "cache", "mountPath": "/cache"}],
            "resources": {"limits": {"memory": "8Gi", "cpu": "2"}},
        },
        runnerContainerSpec={
            "envFrom": [{"configMapRef": {"name": "runner-env"}}],
            "resources": {"requests": {"cpu": "500m"}},
        },
        template={
            "metadata": {"labels": {"team": "ci", "app": "custom"}, "annotations": {"owner": "me"}},
            "spec": {"volumes": [{"name": "cache", "emptyDir": {}}]},
        },
    )
    runner = Runner.model_validate(manifest)
    before = copy.deepcopy(runner.model_dump())

    deployment = builder.deployment(runner, builder.effective_spec(runner))

    assert runner.model_dump() == before
    template = deployment["spec"]["template"]
    assert template["metadata"]["labels"] == {"app": "custom", "team": "ci"}
    assert template["metadata"]["annotations"] == {"image": "ubuntu:22.04", "owner": "me"}
    assert template["spec"]["volumes"][1] == {"name": "cache", "emptyDir": {}}
    assert deployment["spec"]["selector"] == {"matchLabels": {"app": "example-runner"}}

    containers = _containers(deployment)
    assert list(containers) == ["kaniko", "runner", "exporter"]
    kaniko = containers["kaniko"]
    assert kaniko["env"] == [{"name": "HTTP_PROXY", "value": "http://proxy:3128"}]
    assert kaniko["volumeMounts"][1] == {"name": "cache", "mountPath": "/cache"}
    assert kaniko["resources"] == {"limits": {"memory": "8Gi", "cpu": "2"}}

    main = containers["runner"]
    assert main["args"][-4:] == [
        "--github-app-id=$(github_app_id)",
        "--github-app-installation-id=$(github_app_installation_id)",
        "--github-app-private-key=$(github_app_private_key)",
        "--disableupdate",
    ]
    assert main["envFrom"] == [{"configMapRef": {"name": "runner-env"}}, {"secretRef": {"name": "app-credentials"}}]
    assert main["resources"] == {"requests": {"cpu": "500m"}}

    exporter = containers["exporter"]
    assert exporter["image"] == "ghcr.io/example/exporter:1.0.0"
    assert exporter["ports"] == [{"containerPort": 9090, "protocol": "TCP"}]
    assert exporter["args"] == [
        "server",
        "--api-address=0.0.0.0:8000",
        "--monitor-address=0.0.0.0:9090",
        "--repository=$(REPOSITORY)",
        "--token=$(TOKEN)",
    ]
    assert _env(exporter)["TOKEN"]["valueFrom"] == {"secretKeyRef": {"name": "example", "key": "GITHUB_TOKEN"}}


def test_runner_without_token(controller_config: ControllerConfig, runner: Runner):
    controller_config.github_app = GitHubAppConfig()
    builder = DesiredStateBuilder(controller_config)
    deployment = builder.deployment(runner, builder.effective_spec(runner))
    main = _containers(deployment)["runner"]
    assert "--token=$(TOKEN)" not in main["args"]
    assert "TOKEN" not in _env(main)


@pytest.mark.parametrize(
    "resources,expected",
    [
        ({}, {"limits": {"memory": "4Gi"}}),
        ({"limits": {"memory": "0"}}, {"limits": {"memory": "4Gi"}}),
        ({"limits": {"cpu": "1"}}, {"limits": {"cpu": "1", "memory": "4Gi"}}),
        (
            {"limits": {"memory": "512Mi"}, "requests": {"cpu": "1"}},
            {"limits": {"memory": "512Mi"}, "requests": {"cpu": "1"}},
        ),
    ],
)
def test_builder_resources(resources: dict, expected: dict):
    spec = ContainerSpec(resources=resources)
    assert builder_resources(spec) == expected
    assert spec.resources == resources
