"""Custom Resources for runners."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class BaseCRD(BaseModel):
    """Base CRD specification."""

    model_config = ConfigDict(extra="allow")


class Metadata(BaseCRD):
    """Basic k8s metadata spec."""

    name: str
    namespace: str
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    uid: str | None = None
    resourceVersion: str | None = None
    generation: int | None = None
    creationTimestamp: datetime | None = None
    deletionTimestamp: datetime | None = None


class SecretKeyRef(BaseCRD):
    """A reference to a key of a secret."""

    name: str
    key: str


class SecretRef(BaseCRD):
    """A reference to a whole secret."""

    name: str


class ContainerSpec(BaseCRD):
    """Overrides applied to one of the generated containers."""

    env: list[dict[str, Any]] = Field(default_factory=list)
    envFrom: list[dict[str, Any]] = Field(default_factory=list)
    volumeMounts: list[dict[str, Any]] = Field(default_factory=list)
    resources: dict[str, Any] = Field(default_factory=dict)


class TemplateMetadata(BaseCRD):
    """Labels and annotations added to the pods of the runner."""

    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class TemplatePodSpec(BaseCRD):
    """Pod spec fragments merged into the generated pods."""

    volumes: list[dict[str, Any]] = Field(default_factory=list)


class PodTemplate(BaseCRD):
    """Fragments of the pod template of the runner deployment."""

    metadata: TemplateMetadata = Field(default_factory=TemplateMetadata)
    spec: TemplatePodSpec = Field(default_factory=TemplatePodSpec)


class RunnerSpec(BaseCRD):
    """The desired state of a runner."""

    repository: str
    image: str
    builderContainerSpec: ContainerSpec = Field(default_factory=ContainerSpec)
    runnerContainerSpec: ContainerSpec = Field(default_factory=ContainerSpec)
    template: PodTemplate = Field(default_factory=PodTemplate)
    tokenSecretKeyRef: SecretKeyRef | None = None
    appSecretRef: SecretRef | None = None


class Runner(BaseCRD):
    """A GitHub Actions self-hosted runner for one repository."""

    kind: str = "Runner"
    apiVersion: str = "github-actions-runner.kaidotio.github.io/v1"
    metadata: Metadata
    spec: RunnerSpec

    @property
    def key(self) -> str:
        """The `namespace/name` of the runner."""
        return f"{self.metadata.namespace}/{self.metadata.name}"

    def owner_manifest(self) -> dict[str, Any]:
        """The parts of the manifest needed to reference the runner as an owner or event target."""
        return {
            "apiVersion": self.apiVersion,
            "kind": self.kind,
            "metadata": {
                "name": self.metadata.name,
                "namespace": self.metadata.namespace,
                "uid": self.metadata.uid,
                "resourceVersion": self.metadata.resourceVersion,
            },
        }
