"""Fixtures for testing."""

import logging as ll
import os
from datetime import datetime

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from hypothesis import settings

from runner_controller.app_config import logging
from runner_controller.app_config.config import ControllerConfig, GitHubAppConfig, ImagesConfig
from runner_controller.k8s.constants import RUNNER_GVK
from runner_controller.runner.builders import DesiredStateBuilder
from runner_controller.runner.crs import Runner
from test.constants import NOW, runner_manifest
from test.utils import InMemoryK8sClient, RecordingEventSink, StubTokenIssuer


def __make_logging_config() -> logging.Config:
    def_cfg = logging.Config(
        root_level=ll.ERROR,
        app_level=ll.ERROR,
        format_style=logging.LogFormatStyle.plain,
        override_levels={ll.ERROR: ["kr8s", "httpx"]},
    )
    env_cfg = logging.Config.from_env()
    def_cfg.update_override_levels(env_cfg.override_levels)

    test_cfg = logging.Config.from_env(prefix="TEST_")
    def_cfg.update_override_levels(test_cfg.override_levels)
    return def_cfg


logging.configure_logging(__make_logging_config())


logger = logging.getLogger(__name__)

settings.register_profile("ci", deadline=400, max_examples=50)
settings.register_profile("dev", deadline=200, max_examples=20)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "dev"))


@pytest.fixture(scope="session")
def private_key_pem() -> str:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def github_app_config(private_key_pem: str) -> GitHubAppConfig:
    return GitHubAppConfig(
        client_id="Iv1.0123456789abcdef",
        installation_id="4242",
        private_key=private_key_pem,
        api_url="https://github.test",
    )


@pytest.fixture
def controller_config(github_app_config: GitHubAppConfig) -> ControllerConfig:
    return ControllerConfig(
        images=ImagesConfig(
            push_registry_host="registry.example.com:5000",
            pull_registry_host="localhost:5000",
            exporter_image="ghcr.io/example/exporter:1.0.0",
        ),
        binary_version="0.1.2",
        runner_version="2.311.0",
        github_app=github_app_config,
    )


@pytest.fixture
def builder(controller_config: ControllerConfig) -> DesiredStateBuilder:
    return DesiredStateBuilder(controller_config)


@pytest.fixture
def k8s_client() -> InMemoryK8sClient:
    return InMemoryK8sClient()


@pytest.fixture
def events() -> RecordingEventSink:
    return RecordingEventSink()


@pytest.fixture
def issuer(now: datetime) -> StubTokenIssuer:
    return StubTokenIssuer(now=now)


@pytest.fixture
def runner() -> Runner:
    return Runner.model_validate(runner_manifest())


@pytest.fixture
def stored_runner(k8s_client: InMemoryK8sClient) -> Runner:
    manifest = k8s_client.seed(runner_manifest(), RUNNER_GVK)
    return Runner.model_validate(manifest)
