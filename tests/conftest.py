"""Pytest configuration and fixtures for reconciler tests."""

import copy
from typing import Optional
from unittest.mock import MagicMock

import pytest
from kubernetes import client

from kube_reconciler import (
    ApiError,
    ConfigMapSpec,
    DeploymentSpec,
    EnvBinding,
    PodStatus,
    Reference,
    ResourceKey,
    ResourceKind,
    ResourceSpec,
    ResourceState,
    SecretSpec,
)
from kube_reconciler.manifests import to_body


class FakeClusterApi:
    """In-memory cluster that records every call."""

    def __init__(self):
        self.objects: dict[ResourceKey, dict] = {}
        self.pods: dict[tuple[str, str], list[PodStatus]] = {}
        self.fail_on: dict[ResourceKey, ApiError] = {}
        self.calls: list[tuple[str, ResourceKey]] = []
        self._version = 0

    def _store(self, spec: ResourceSpec) -> None:
        self._version += 1
        body = to_body(spec)
        body["metadata"].update(
            {
                "uid": f"uid-{spec.name}",
                "resourceVersion": str(self._version),
                "creationTimestamp": "2024-01-01T00:00:00Z",
            }
        )
        body["status"] = {}
        self.objects[spec.key] = body

    def get(
        self, kind: ResourceKind, namespace: Optional[str], name: str
    ) -> Optional[ResourceState]:
        key = ResourceKey(kind, namespace, name)
        self.calls.append(("get", key))
        body = self.objects.get(key)
        if body is None:
            return None
        return ResourceState(
            kind=kind, namespace=namespace, name=name, body=copy.deepcopy(body)
        )

    def create(self, spec: ResourceSpec) -> None:
        self.calls.append(("create", spec.key))
        if spec.key in self.fail_on:
            raise self.fail_on[spec.key]
        self._store(spec)

    def update(self, spec: ResourceSpec) -> None:
        self.calls.append(("update", spec.key))
        if spec.key in self.fail_on:
            raise self.fail_on[spec.key]
        self._store(spec)

    def list_pods_for_deployment(self, name: str, namespace: str) -> list[PodStatus]:
        self.calls.append(("pods", ResourceKey(ResourceKind.DEPLOYMENT, namespace, name)))
        return self.pods.get((namespace, name), [])

    def touched(self, key: ResourceKey) -> bool:
        return any(k == key for _, k in self.calls)


@pytest.fixture
def fake_cluster():
    """In-memory cluster API."""
    return FakeClusterApi()


@pytest.fixture
def mock_cluster_connection():
    """Mock cluster connection for testing."""
    mock_conn = MagicMock()
    mock_conn.core_v1 = MagicMock(spec=client.CoreV1Api)
    mock_conn.apps_v1 = MagicMock(spec=client.AppsV1Api)
    return mock_conn


@pytest.fixture
def db_config():
    return ConfigMapSpec(name="db-config", data={"host": "mysql", "dbName": "shop"})


@pytest.fixture
def mysql_secrets():
    return SecretSpec(
        name="mysql-secrets",
        string_data={"username": "root", "password": "s3cr3t-value"},
    )


@pytest.fixture
def app_deployment():
    """Deployment bound to db-config and mysql-secrets."""
    return DeploymentSpec(
        name="app",
        image="shop/app:1.0",
        replicas=2,
        ports=[8080],
        env={"LOG_LEVEL": "info"},
        env_bindings=[
            EnvBinding(
                name="DB_HOST",
                ref=Reference(kind=ResourceKind.CONFIG_MAP, name="db-config", key="host"),
            ),
            EnvBinding(
                name="DB_NAME",
                ref=Reference(kind=ResourceKind.CONFIG_MAP, name="db-config", key="dbName"),
            ),
            EnvBinding(
                name="DB_USER",
                ref=Reference(kind=ResourceKind.SECRET, name="mysql-secrets", key="username"),
            ),
            EnvBinding(
                name="DB_PASSWORD",
                ref=Reference(kind=ResourceKind.SECRET, name="mysql-secrets", key="password"),
            ),
        ],
    )


@pytest.fixture
def app_resources(db_config, mysql_secrets, app_deployment):
    """The ConfigMap/Secret/Deployment set, deliberately out of order."""
    return [app_deployment, mysql_secrets, db_config]


@pytest.fixture
def ready_pods():
    def _make(count: int, ready: int) -> list[PodStatus]:
        return [PodStatus(name=f"pod-{i}", phase="Running", ready=i < ready) for i in range(count)]

    return _make
